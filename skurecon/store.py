"""Mapping store and ledger source collaborators."""
from __future__ import annotations

import asyncio
import csv
from dataclasses import dataclass, field
from datetime import date
import json
import logging
from pathlib import Path
import threading
from typing import List, Protocol, Sequence, Tuple

from .errors import LedgerFetchFailure, MappingSaveFailure, MappingStoreError
from .models import DocumentRecord, MappingProposal, StoredMapping
from .normalization import NormalizationError, load_ledger_file

LOGGER = logging.getLogger(__name__)


class MappingStore(Protocol):
    def query(self, supplier_entity_name: str) -> List[StoredMapping]:
        ...

    def create(self, mapping: StoredMapping) -> None:
        ...


class LedgerSource(Protocol):
    def fetch(self, supplier: str, start: date, end: date) -> List[DocumentRecord]:
        ...


class JsonMappingStore:
    """Mappings kept as a JSON array on disk."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    def _read(self) -> list[dict]:
        if not self._path.exists():
            return []
        try:
            with self._path.open(encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise MappingStoreError(f"Could not read mappings from {self._path}: {exc}") from exc
        if not isinstance(payload, list):
            raise MappingStoreError(f"Mapping file {self._path} must contain a JSON array")
        return payload

    def query(self, supplier_entity_name: str) -> List[StoredMapping]:
        with self._lock:
            rows = self._read()
        mappings = []
        for row in rows:
            try:
                mapping = StoredMapping(
                    supplier_item_name=row["supplierItemName"],
                    system_item_name=row["systemItemName"],
                    supplier_entity_name=row["supplierEntityName"],
                )
            except (KeyError, TypeError) as exc:
                raise MappingStoreError(f"Malformed mapping entry in {self._path}: {row!r}") from exc
            if mapping.supplier_entity_name == supplier_entity_name:
                mappings.append(mapping)
        return mappings

    def create(self, mapping: StoredMapping) -> None:
        if not mapping.supplier_item_name or not mapping.system_item_name:
            raise MappingStoreError("Mapping needs both a supplier and a system product name")
        with self._lock:
            rows = self._read()
            rows.append(mapping.as_json())
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("w", encoding="utf-8") as handle:
                    json.dump(rows, handle, indent=2, ensure_ascii=False)
            except OSError as exc:
                raise MappingStoreError(f"Could not write {self._path}: {exc}") from exc


class CsvLedgerSource:
    """Ledger rows read from a CSV export, filtered by supplier and date."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def fetch(self, supplier: str, start: date, end: date) -> List[DocumentRecord]:
        try:
            rows = load_ledger_file(self._path)
        except (OSError, UnicodeDecodeError, csv.Error, NormalizationError) as exc:
            raise LedgerFetchFailure(f"Could not load ledger data: {exc}") from exc
        # Rows without a usable date cannot be placed in the window.
        return [
            record
            for name, record in rows
            if name == supplier and record.date is not None and start <= record.date <= end
        ]


@dataclass(slots=True)
class MappingSaveReport:
    succeeded: int = 0
    saved: List[StoredMapping] = field(default_factory=list)
    failures: List[Tuple[StoredMapping, str]] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def failed_reasons(self) -> List[str]:
        return [f"{mapping.supplier_item_name} -> {mapping.system_item_name}: {reason}" for mapping, reason in self.failures]

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        if self.failures:
            raise MappingSaveFailure(self.succeeded, self.failed_count, self.failed_reasons)


async def save_proposals_async(
    store: MappingStore, proposals: Sequence[MappingProposal], supplier_entity_name: str
) -> MappingSaveReport:
    """Persist each proposal independently and collect every outcome."""

    mappings = [proposal.to_mapping(supplier_entity_name) for proposal in proposals]
    outcomes = await asyncio.gather(
        *(asyncio.to_thread(store.create, mapping) for mapping in mappings),
        return_exceptions=True,
    )

    report = MappingSaveReport()
    for mapping, outcome in zip(mappings, outcomes):
        if isinstance(outcome, Exception):
            LOGGER.warning("Saving mapping %r failed: %s", mapping.supplier_item_name, outcome)
            report.failures.append((mapping, str(outcome)))
        else:
            report.succeeded += 1
            report.saved.append(mapping)
    return report


def save_proposals(
    store: MappingStore, proposals: Sequence[MappingProposal], supplier_entity_name: str
) -> MappingSaveReport:
    return asyncio.run(save_proposals_async(store, proposals, supplier_entity_name))
