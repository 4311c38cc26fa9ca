"""Data models used by the reconciliation workflow."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Tuple


def as_decimal(value: Any) -> Decimal:
    """Convert JSON/CSV numbers to Decimal without float noise."""

    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError(f"Expected a number, got {value!r}")
    if isinstance(value, (int, float, str)):
        number = Decimal(str(value).strip())
        if not number.is_finite():
            raise ValueError(f"Expected a finite number, got {value!r}")
        return number
    raise TypeError(f"Expected a number, got {value!r}")


def format_number(value: Decimal) -> str:
    """Render a Decimal the way a person would type it (10, 5.5, 0.25)."""

    if value == value.to_integral_value():
        return str(value.quantize(Decimal(1)))
    return format(value.normalize(), "f")


class ComparisonStatus(str, Enum):
    MATCHED = "Matched"
    DISCREPANCY = "Discrepancy"
    SUPPLIER_ONLY = "SupplierOnly"
    SYSTEM_ONLY = "SystemOnly"
    PROCESSING = "Processing"


@dataclass(frozen=True, slots=True)
class LineItem:
    name: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal

    def as_json(self) -> dict[str, object]:
        return {
            "name": self.name,
            "quantity": float(self.quantity),
            "unitPrice": float(self.unit_price),
            "totalPrice": float(self.total_price),
        }


@dataclass(frozen=True, slots=True)
class DocumentRecord:
    """A supplier document or one ledger row."""

    id: str
    description: str
    amount: Decimal
    date: Optional[date] = None
    items: Tuple[LineItem, ...] = ()

    def line_items(self) -> Tuple[LineItem, ...]:
        if self.items:
            return self.items
        # A record without detail lines counts as a single line.
        return (
            LineItem(
                name=self.description,
                quantity=Decimal(1),
                unit_price=self.amount,
                total_price=self.amount,
            ),
        )


@dataclass(frozen=True, slots=True)
class StoredMapping:
    """Confirmed correspondence between supplier and system product names."""

    supplier_item_name: str
    system_item_name: str
    supplier_entity_name: str

    def as_json(self) -> dict[str, str]:
        return {
            "supplierItemName": self.supplier_item_name,
            "systemItemName": self.system_item_name,
            "supplierEntityName": self.supplier_entity_name,
        }


@dataclass(frozen=True, slots=True)
class MappingProposal:
    supplier_item: LineItem
    system_item: LineItem

    def to_mapping(self, supplier_entity_name: str) -> StoredMapping:
        return StoredMapping(
            supplier_item_name=self.supplier_item.name,
            system_item_name=self.system_item.name,
            supplier_entity_name=supplier_entity_name,
        )


@dataclass(slots=True)
class ComparedItem:
    status: ComparisonStatus
    supplier_item: Optional[LineItem]
    system_item: Optional[LineItem]
    details: str = ""

    def as_json(self) -> dict[str, object]:
        return {
            "status": self.status.value,
            "supplierItem": self.supplier_item.as_json() if self.supplier_item else None,
            "systemItem": self.system_item.as_json() if self.system_item else None,
            "details": self.details,
        }


@dataclass(slots=True)
class ReconciliationResult:
    summary: str
    total_supplier_amount: Decimal
    total_system_amount: Decimal
    difference: Decimal
    compared_items: list[ComparedItem] = field(default_factory=list)

    @classmethod
    def empty(cls, summary: str) -> "ReconciliationResult":
        zero = Decimal(0)
        return cls(
            summary=summary,
            total_supplier_amount=zero,
            total_system_amount=zero,
            difference=zero,
        )

    def as_json(self) -> dict[str, object]:
        return {
            "summary": self.summary,
            "totalSupplierAmount": float(self.total_supplier_amount),
            "totalSystemAmount": float(self.total_system_amount),
            "difference": float(self.difference),
            "comparedItems": [item.as_json() for item in self.compared_items],
        }


@dataclass(slots=True)
class PreprocessResult:
    """Output of the mapping-assisted pass."""

    compared_items: list[ComparedItem]
    residual_supplier_items: list[LineItem]
    residual_system_items: list[LineItem]

    @property
    def has_residual(self) -> bool:
        return bool(self.residual_supplier_items or self.residual_system_items)
