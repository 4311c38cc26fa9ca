"""Rendering utilities for machine-readable and human-readable outputs."""
from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Optional

from .models import LineItem, ReconciliationResult, format_number


def write_json(path: Path, result: ReconciliationResult) -> None:
    import json

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(result.as_json(), handle, indent=2, ensure_ascii=False)


def _money(amount: Decimal) -> str:
    return f"{amount:,.2f}"


def _cell(text: str) -> str:
    return text.replace("|", "\\|")


def _item_cells(item: Optional[LineItem]) -> tuple[str, str, str, str]:
    if item is None:
        return ("", "", "", "")
    return (
        _cell(item.name),
        format_number(item.quantity),
        _money(item.unit_price),
        _money(item.total_price),
    )


def generate_markdown_summary(
    result: ReconciliationResult,
    *,
    supplier_name: str,
    elapsed_seconds: float | None = None,
) -> str:
    statuses = Counter(row.status.value for row in result.compared_items)
    # Ledger-only rows are counted above but not listed line by line.
    supplier_rows = [row for row in result.compared_items if row.supplier_item is not None]

    lines = [f"# Supplier Reconciliation Report: {supplier_name}", ""]
    lines.append(f"Generated: {datetime.now(timezone.utc).isoformat()}")
    if elapsed_seconds is not None:
        lines.append(f"Elapsed: {elapsed_seconds:.2f}s")
    lines.append("")
    lines.append("## Overview")
    lines.append("")
    lines.append(f"- Supplier total: **{_money(result.total_supplier_amount)}**")
    lines.append(f"- Ledger total: **{_money(result.total_system_amount)}**")
    lines.append(f"- Difference: **{_money(result.difference)}**")
    lines.append("")
    lines.append(result.summary)
    lines.append("")

    if statuses:
        lines.append("## Lines by status")
        lines.append("")
        for status, count in sorted(statuses.items()):
            lines.append(f"- {status}: {count}")
        lines.append("")

    if supplier_rows:
        lines.append(f"## Details ({len(supplier_rows)} lines)")
        lines.append("")
        lines.append(
            "| Status | Supplier item | Qty | Unit price | Total | Ledger item | Qty | Unit price | Total | Details |"
        )
        lines.append("| --- | --- | --- | --- | --- | --- | --- | --- | --- | --- |")
        for row in supplier_rows:
            cells = (
                row.status.value,
                *_item_cells(row.supplier_item),
                *_item_cells(row.system_item),
                _cell(row.details),
            )
            lines.append("| " + " | ".join(cells) + " |")
        lines.append("")
    else:
        lines.append("No supplier lines to display.")

    return "\n".join(lines)


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        handle.write(content)
