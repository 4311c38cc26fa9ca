"""Exact quantity/price fingerprints for coincidence-based matching."""
from __future__ import annotations

from collections import deque
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Deque, Dict, Iterable, Optional

from .models import LineItem

_FOUR_PLACES = Decimal("0.0001")


def _fixed4(value: Decimal) -> str:
    if value.is_zero():
        # -0 and 0 compare equal and must share a key.
        value = abs(value)
    return str(value.quantize(_FOUR_PLACES, rounding=ROUND_HALF_EVEN))


def fingerprint(item: LineItem) -> str:
    """Return the ``quantity-unitprice`` key, both rounded to 4 decimals."""

    return f"{_fixed4(item.quantity)}-{_fixed4(item.unit_price)}"


class FingerprintIndex:
    """Multi-map from fingerprint to line items in insertion order.

    Candidates are handed out by :meth:`take`, which removes them, so one
    index instance never returns the same item twice.
    """

    def __init__(self) -> None:
        self._buckets: Dict[str, Deque[LineItem]] = {}

    @classmethod
    def build(cls, items: Iterable[LineItem]) -> "FingerprintIndex":
        index = cls()
        for item in items:
            index.add(item)
        return index

    def add(self, item: LineItem) -> None:
        self._buckets.setdefault(fingerprint(item), deque()).append(item)

    def candidates(self, key: str) -> list[LineItem]:
        return list(self._buckets.get(key, ()))

    def take(self, key: str) -> Optional[LineItem]:
        bucket = self._buckets.get(key)
        if not bucket:
            return None
        return bucket.popleft()

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._buckets.values())

    def __contains__(self, key: object) -> bool:
        return bool(self._buckets.get(key))  # type: ignore[arg-type]
