"""Propose new SKU mappings from exact quantity/price coincidences."""
from __future__ import annotations

import logging
from typing import Iterable, List, Sequence

from .fingerprint import FingerprintIndex, fingerprint
from .models import LineItem, MappingProposal, StoredMapping

LOGGER = logging.getLogger(__name__)


def pair_by_fingerprint(
    supplier_items: Sequence[LineItem], system_items: Sequence[LineItem]
) -> List[MappingProposal]:
    """Greedy, order-dependent pairing: first available candidate wins."""

    index = FingerprintIndex.build(system_items)
    proposals: List[MappingProposal] = []
    for supplier_item in supplier_items:
        match = index.take(fingerprint(supplier_item))
        if match is not None:
            proposals.append(MappingProposal(supplier_item=supplier_item, system_item=match))
    return proposals


def discover_new_mappings(
    supplier_items: Sequence[LineItem],
    system_items: Sequence[LineItem],
    mappings: Iterable[StoredMapping],
) -> List[MappingProposal]:
    known = {(m.system_item_name, m.supplier_item_name) for m in mappings}
    proposals = [
        proposal
        for proposal in pair_by_fingerprint(supplier_items, system_items)
        if (proposal.system_item.name, proposal.supplier_item.name) not in known
    ]
    LOGGER.info("Discovered %d new mapping candidates", len(proposals))
    return proposals
