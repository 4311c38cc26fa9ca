"""High-level orchestration of a reconciliation or mapping-discovery run."""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import time
from typing import List, Optional, Sequence

from .discovery import discover_new_mappings
from .errors import ExtractionFailure, LedgerFetchFailure, MappingStoreError, ReconError
from .extraction import Extractor, JsonDocumentExtractor, extract_documents
from .llm import Classifier, default_classifier
from .models import DocumentRecord, LineItem, MappingProposal, ReconciliationResult, StoredMapping
from .normalization import DateWindow, flatten_items, ledger_window
from .orchestrator import ReconciliationOutcome, reconcile
from .report import generate_markdown_summary, write_json, write_text
from .store import LedgerSource, MappingSaveReport, MappingStore, save_proposals

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class LoadedInputs:
    supplier_items: List[LineItem]
    system_items: List[LineItem]
    mappings: List[StoredMapping]
    window: DateWindow
    extraction_failures: List[ExtractionFailure] = field(default_factory=list)


@dataclass(slots=True)
class RunSummary:
    outcome: ReconciliationOutcome
    window: DateWindow
    extraction_failures: List[ExtractionFailure] = field(default_factory=list)
    elapsed_seconds: float = 0.0


@dataclass(slots=True)
class DiscoverySummary:
    proposals: List[MappingProposal]
    window: DateWindow
    extraction_failures: List[ExtractionFailure] = field(default_factory=list)
    save_report: Optional[MappingSaveReport] = None


def _fetch_mappings(store: MappingStore, supplier_name: str) -> List[StoredMapping]:
    try:
        return store.query(supplier_name)
    except MappingStoreError as exc:
        LOGGER.warning("Could not load saved mappings for %s; continuing without them: %s", supplier_name, exc)
        return []


def load_inputs(
    *,
    supplier_docs: Sequence[Path],
    ledger: LedgerSource,
    mapping_store: MappingStore,
    supplier_name: str,
    window_days: int = 10,
    extractor: Extractor | None = None,
) -> LoadedInputs:
    batch = extract_documents(supplier_docs, extractor or JsonDocumentExtractor())
    if not batch.records:
        reasons = "; ".join(str(failure) for failure in batch.failures) or "no documents given"
        raise ReconError(f"No supplier records could be extracted ({reasons})")

    records: List[DocumentRecord] = batch.records
    window = ledger_window(records, days=window_days)
    if window is None:
        raise LedgerFetchFailure("Supplier documents carry no usable date; cannot choose a ledger window")

    LOGGER.info("Fetching ledger lines for %s between %s and %s", supplier_name, window.start, window.end)
    ledger_records = ledger.fetch(supplier_name, window.start, window.end)

    return LoadedInputs(
        supplier_items=flatten_items(records),
        system_items=flatten_items(ledger_records),
        mappings=_fetch_mappings(mapping_store, supplier_name),
        window=window,
        extraction_failures=list(batch.failures),
    )


def run_reconciliation(
    *,
    supplier_docs: Sequence[Path],
    ledger: LedgerSource,
    mapping_store: MappingStore,
    supplier_name: str,
    out_dir: Path,
    window_days: int = 10,
    extractor: Extractor | None = None,
    classifier: Classifier | None = None,
) -> RunSummary:
    started = time.perf_counter()
    inputs = load_inputs(
        supplier_docs=supplier_docs,
        ledger=ledger,
        mapping_store=mapping_store,
        supplier_name=supplier_name,
        window_days=window_days,
        extractor=extractor,
    )

    out_dir.mkdir(parents=True, exist_ok=True)

    def publish_interim(interim: ReconciliationResult) -> None:
        write_json(out_dir / "recon_interim.json", interim)

    outcome = reconcile(
        inputs.supplier_items,
        inputs.system_items,
        inputs.mappings,
        classifier or default_classifier(),
        on_interim=publish_interim,
    )
    elapsed = time.perf_counter() - started

    write_json(out_dir / "recon_result.json", outcome.result)
    markdown = generate_markdown_summary(outcome.result, supplier_name=supplier_name, elapsed_seconds=elapsed)
    write_text(out_dir / "recon_report.md", markdown)
    if outcome.error is not None and outcome.error.raw_response:
        # Keep the untouched model output for manual diagnosis.
        write_text(out_dir / "classifier_raw_response.txt", outcome.error.raw_response)

    return RunSummary(
        outcome=outcome,
        window=inputs.window,
        extraction_failures=inputs.extraction_failures,
        elapsed_seconds=elapsed,
    )


def run_discovery(
    *,
    supplier_docs: Sequence[Path],
    ledger: LedgerSource,
    mapping_store: MappingStore,
    supplier_name: str,
    window_days: int = 10,
    extractor: Extractor | None = None,
    save: bool = False,
) -> DiscoverySummary:
    inputs = load_inputs(
        supplier_docs=supplier_docs,
        ledger=ledger,
        mapping_store=mapping_store,
        supplier_name=supplier_name,
        window_days=window_days,
        extractor=extractor,
    )
    proposals = discover_new_mappings(inputs.supplier_items, inputs.system_items, inputs.mappings)
    save_report = None
    if save and proposals:
        save_report = save_proposals(mapping_store, proposals, supplier_name)
    return DiscoverySummary(
        proposals=proposals,
        window=inputs.window,
        extraction_failures=inputs.extraction_failures,
        save_report=save_report,
    )
