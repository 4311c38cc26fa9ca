"""Deterministic matching of supplier items through saved SKU mappings."""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from .models import ComparedItem, ComparisonStatus, LineItem, PreprocessResult, StoredMapping, format_number

MAPPED_BUT_ABSENT = "Mapped product is absent from this period's ledger data."


def build_mapping_lookup(mappings: Iterable[StoredMapping]) -> Dict[str, str]:
    """Lower-cased supplier name -> system name. Later entries win."""

    lookup: Dict[str, str] = {}
    for mapping in mappings:
        lookup[mapping.supplier_item_name.lower()] = mapping.system_item_name
    return lookup


def compare_items(supplier_item: LineItem, system_item: LineItem) -> ComparedItem:
    if (
        supplier_item.quantity == system_item.quantity
        and supplier_item.unit_price == system_item.unit_price
    ):
        return ComparedItem(ComparisonStatus.MATCHED, supplier_item, system_item, "")
    details = (
        "Quantity/price mismatch. Supplier: {sq} @ {sp}, system: {yq} @ {yp}".format(
            sq=format_number(supplier_item.quantity),
            sp=format_number(supplier_item.unit_price),
            yq=format_number(system_item.quantity),
            yp=format_number(system_item.unit_price),
        )
    )
    return ComparedItem(ComparisonStatus.DISCREPANCY, supplier_item, system_item, details)


def _take_first_named(
    name: str, system_items: Sequence[LineItem], available: List[int]
) -> Optional[int]:
    for position, index in enumerate(available):
        if system_items[index].name == name:
            del available[position]
            return index
    return None


def preprocess_with_mappings(
    supplier_items: Sequence[LineItem],
    system_items: Sequence[LineItem],
    mappings: Iterable[StoredMapping],
) -> PreprocessResult:
    lookup = build_mapping_lookup(mappings)
    # Indices of system items not yet claimed, kept in ledger order.
    available = list(range(len(system_items)))

    compared: List[ComparedItem] = []
    residual_supplier: List[LineItem] = []

    for supplier_item in supplier_items:
        system_name = lookup.get(supplier_item.name.lower())
        if system_name is None:
            residual_supplier.append(supplier_item)
            continue

        index = _take_first_named(system_name, system_items, available)
        if index is None:
            compared.append(
                ComparedItem(ComparisonStatus.SUPPLIER_ONLY, supplier_item, None, MAPPED_BUT_ABSENT)
            )
        else:
            compared.append(compare_items(supplier_item, system_items[index]))

    residual_system = [system_items[index] for index in available]
    return PreprocessResult(
        compared_items=compared,
        residual_supplier_items=residual_supplier,
        residual_system_items=residual_system,
    )
