from __future__ import annotations

import argparse
import logging
from pathlib import Path

from .errors import ReconError
from .pipeline import run_discovery, run_reconciliation
from .store import CsvLedgerSource, JsonMappingStore


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--supplier",
        required=True,
        help="Supplier entity name as used in the ledger and the mapping store.",
    )
    parser.add_argument(
        "--supplier-docs",
        type=Path,
        nargs="+",
        required=True,
        help="Extractor output files (JSON records, fenced or plain).",
    )
    parser.add_argument(
        "--ledger-file",
        type=Path,
        default=Path("data/ledger.csv"),
        help="Ledger export CSV with supplier,name,quantity,unit_price,date columns.",
    )
    parser.add_argument(
        "--mappings-file",
        type=Path,
        default=Path("data/sku_mappings.json"),
        help="JSON file holding the saved SKU mappings.",
    )
    parser.add_argument(
        "--window-days",
        type=int,
        default=10,
        help="Days either side of the latest document date to search the ledger.",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Supplier statement vs ledger line-item reconciliation")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", help="Reconcile supplier documents against the ledger")
    _add_common_arguments(run_parser)
    run_parser.add_argument(
        "--out-dir",
        type=Path,
        default=Path("out"),
        help="Directory that will receive the reconciliation artefacts.",
    )

    discover_parser = subparsers.add_parser(
        "discover", help="Propose new SKU mappings from exact quantity/price matches")
    _add_common_arguments(discover_parser)
    discover_parser.add_argument(
        "--save",
        action="store_true",
        help="Persist every proposal to the mapping store.",
    )

    return parser


def _report_extraction_failures(failures) -> None:
    for failure in failures:
        print(f"warning: {failure}")


def _run(args: argparse.Namespace) -> int:
    summary = run_reconciliation(
        supplier_docs=args.supplier_docs,
        ledger=CsvLedgerSource(args.ledger_file),
        mapping_store=JsonMappingStore(args.mappings_file),
        supplier_name=args.supplier,
        out_dir=args.out_dir,
        window_days=args.window_days,
    )
    _report_extraction_failures(summary.extraction_failures)
    result = summary.outcome.result
    print(result.summary)
    print(
        f"Supplier {result.total_supplier_amount:,.2f} / ledger {result.total_system_amount:,.2f} "
        f"/ difference {result.difference:,.2f}"
    )
    if summary.outcome.degraded:
        print(f"error: {summary.outcome.error}")
        return 1
    return 0


def _discover(args: argparse.Namespace) -> int:
    summary = run_discovery(
        supplier_docs=args.supplier_docs,
        ledger=CsvLedgerSource(args.ledger_file),
        mapping_store=JsonMappingStore(args.mappings_file),
        supplier_name=args.supplier,
        window_days=args.window_days,
        save=args.save,
    )
    _report_extraction_failures(summary.extraction_failures)
    if not summary.proposals:
        print("No new mappings to confirm; matching pairs may already be saved.")
        return 0

    for proposal in summary.proposals:
        print(f"{proposal.supplier_item.name}  ->  {proposal.system_item.name}")

    report = summary.save_report
    if report is None:
        return 0
    print(f"Saved {report.succeeded}/{len(summary.proposals)} mappings.")
    for reason in report.failed_reasons:
        print(f"error: {reason}")
    return 0 if report.ok else 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(levelname)s %(name)s: %(message)s")

    try:
        if args.command == "run":
            return _run(args)
        if args.command == "discover":
            return _discover(args)
    except ReconError as exc:
        print(f"error: {exc}")
        return 2

    parser.error("Unknown command")
    return 1


if __name__ == "__main__":  # pragma: no cover - exercised via CLI entry point
    raise SystemExit(main())
