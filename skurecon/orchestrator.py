"""Delegate unresolved lines to the AI classifier and merge the results."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .errors import ClassificationFailure
from .llm import Classifier, decode_classification
from .matching import preprocess_with_mappings
from .models import (
    ComparedItem,
    ComparisonStatus,
    LineItem,
    PreprocessResult,
    ReconciliationResult,
    StoredMapping,
)

LOGGER = logging.getLogger(__name__)

NOTHING_TO_CLASSIFY = "Nothing left for AI classification."
INTERIM_SUMMARY = "Processing... preliminary result from saved mappings, waiting for AI classification."
AWAITING_CLASSIFICATION = "Waiting for AI classification..."
NOT_CLASSIFIED = "Not classified by the AI service."

InterimCallback = Callable[[ReconciliationResult], None]


@dataclass(slots=True)
class ReconciliationOutcome:
    """Final result of a run plus the interim result published before delegation."""

    result: ReconciliationResult
    interim: ReconciliationResult
    error: Optional[ClassificationFailure] = None

    @property
    def degraded(self) -> bool:
        return self.error is not None


def _supplier_total(items: Iterable[LineItem]) -> Decimal:
    return sum((item.total_price for item in items), Decimal(0))


def _system_total(rows: Iterable[ComparedItem]) -> Decimal:
    return sum((row.system_item.total_price for row in rows if row.system_item), Decimal(0))


def _assemble(summary: str, all_supplier_items: Sequence[LineItem], rows: List[ComparedItem]) -> ReconciliationResult:
    supplier_total = _supplier_total(all_supplier_items)
    system_total = _system_total(rows)
    return ReconciliationResult(
        summary=summary,
        total_supplier_amount=supplier_total,
        total_system_amount=system_total,
        difference=supplier_total - system_total,
        compared_items=rows,
    )


def _placeholders(items: Iterable[LineItem], details: str) -> List[ComparedItem]:
    return [ComparedItem(ComparisonStatus.PROCESSING, item, None, details) for item in items]


def build_interim_result(all_supplier_items: Sequence[LineItem], pre: PreprocessResult) -> ReconciliationResult:
    rows = list(pre.compared_items) + _placeholders(pre.residual_supplier_items, AWAITING_CLASSIFICATION)
    return _assemble(INTERIM_SUMMARY, all_supplier_items, rows)


def delegate_residual(pre: PreprocessResult, classifier: Classifier) -> ReconciliationResult:
    """Classify the residual lines; raises ClassificationFailure subclasses."""

    if not pre.has_residual:
        return ReconciliationResult.empty(NOTHING_TO_CLASSIFY)

    LOGGER.info(
        "Delegating %d supplier and %d ledger lines to the classifier",
        len(pre.residual_supplier_items),
        len(pre.residual_system_items),
    )
    raw = classifier.classify(pre.residual_supplier_items, pre.residual_system_items)
    return decode_classification(raw)


def _name_key(item: LineItem) -> str:
    return item.name.strip().casefold()


def _same_numbers(left: LineItem, right: LineItem) -> bool:
    return left.quantity == right.quantity and left.unit_price == right.unit_price


def align_with_residual(
    residual_supplier_items: Sequence[LineItem], rows: Iterable[ComparedItem]
) -> List[ComparedItem]:
    """Make every residual supplier line appear exactly once.

    The classifier may skip lines, repeat them or invent new ones. Rows are
    bound to residual lines of the same name, exact quantity/price matches
    first; unbound rows are dropped and uncovered lines become SupplierOnly.
    """

    rows = list(rows)
    pending: Dict[str, List[int]] = {}
    for index, item in enumerate(residual_supplier_items):
        pending.setdefault(_name_key(item), []).append(index)

    bound: Dict[int, int] = {}
    for exact in (True, False):
        for position, row in enumerate(rows):
            if row.supplier_item is None or position in bound:
                continue
            slots = pending.get(_name_key(row.supplier_item), [])
            for slot, index in enumerate(slots):
                if not exact or _same_numbers(residual_supplier_items[index], row.supplier_item):
                    bound[position] = slots.pop(slot)
                    break

    aligned: List[ComparedItem] = []
    for position, row in enumerate(rows):
        if row.supplier_item is None:
            aligned.append(row)
        elif position in bound:
            original = residual_supplier_items[bound[position]]
            aligned.append(ComparedItem(row.status, original, row.system_item, row.details))
        else:
            LOGGER.warning("Dropping classifier row for unknown or repeated supplier line %r", row.supplier_item.name)

    leftovers = sorted(index for slots in pending.values() for index in slots)
    if leftovers:
        LOGGER.warning("Classifier skipped %d supplier lines", len(leftovers))
    aligned.extend(
        ComparedItem(ComparisonStatus.SUPPLIER_ONLY, residual_supplier_items[index], None, NOT_CLASSIFIED)
        for index in leftovers
    )
    return aligned


def merge_results(
    all_supplier_items: Sequence[LineItem],
    pre: PreprocessResult,
    delegate: ReconciliationResult,
) -> ReconciliationResult:
    """Deterministic rows first, then the classifier's; aggregates recomputed."""

    rows = list(pre.compared_items) + align_with_residual(pre.residual_supplier_items, delegate.compared_items)
    parts = []
    if pre.compared_items:
        parts.append(f"Auto-resolved {len(pre.compared_items)} items via saved mappings.")
    if delegate.summary:
        parts.append(delegate.summary)
    return _assemble(" ".join(parts).strip(), all_supplier_items, rows)


def degrade(interim: ReconciliationResult, error: ClassificationFailure) -> ReconciliationResult:
    rows = [
        ComparedItem(row.status, row.supplier_item, row.system_item, f"AI classification failed: {error}")
        if row.status is ComparisonStatus.PROCESSING
        else row
        for row in interim.compared_items
    ]
    return ReconciliationResult(
        summary=f"Only saved-mapping results are available. AI classification failed: {error}",
        total_supplier_amount=interim.total_supplier_amount,
        total_system_amount=interim.total_system_amount,
        difference=interim.difference,
        compared_items=rows,
    )


def reconcile(
    supplier_items: Sequence[LineItem],
    system_items: Sequence[LineItem],
    mappings: Iterable[StoredMapping],
    classifier: Classifier,
    *,
    on_interim: InterimCallback | None = None,
) -> ReconciliationOutcome:
    pre = preprocess_with_mappings(supplier_items, system_items, mappings)
    interim = build_interim_result(supplier_items, pre)
    LOGGER.info(
        "Saved mappings resolved %d lines; %d supplier lines left for classification",
        len(pre.compared_items),
        len(pre.residual_supplier_items),
    )
    if on_interim is not None:
        on_interim(interim)

    try:
        delegate = delegate_residual(pre, classifier)
    except ClassificationFailure as exc:
        LOGGER.warning("Classification stage failed; keeping deterministic results: %s", exc)
        return ReconciliationOutcome(result=degrade(interim, exc), interim=interim, error=exc)

    return ReconciliationOutcome(
        result=merge_results(supplier_items, pre, delegate),
        interim=interim,
    )
