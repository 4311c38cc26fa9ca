"""Utilities for reading and normalising supplier and ledger data."""
from __future__ import annotations

import csv
import logging
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, List, Mapping, NamedTuple, Optional

from .models import DocumentRecord, LineItem, as_decimal

DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d.%m.%Y")

LEDGER_COLUMNS = {"supplier", "name", "quantity", "unit_price", "date"}

LOGGER = logging.getLogger(__name__)

_KEY_ALIASES = {
    "unitPrice": "unit_price",
    "totalPrice": "total_price",
}


class NormalizationError(RuntimeError):
    """Raised when a record cannot be normalised."""


class DateWindow(NamedTuple):
    anchor: date
    start: date
    end: date


def parse_date(raw: str) -> date:
    # ISO timestamps ("2024-05-01T08:00:00Z") only need their date part.
    candidate = raw.strip().split("T", 1)[0]
    for pattern in DATE_FORMATS:
        try:
            return datetime.strptime(candidate, pattern).date()
        except ValueError:
            continue
    raise NormalizationError(f"Unrecognised date format: {raw}")


def parse_amount(raw: Any) -> Decimal:
    if isinstance(raw, str):
        raw = raw.replace(",", "").strip()
    try:
        return as_decimal(raw)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise NormalizationError(f"Invalid amount: {raw!r}") from exc


def _lenient_date(raw: Any, *, context: str) -> Optional[date]:
    """Unparsable dates become None so the record stays usable."""

    if raw is None or not str(raw).strip():
        return None
    try:
        return parse_date(str(raw))
    except NormalizationError:
        LOGGER.warning("Ignoring unrecognised date %r in %s", raw, context)
        return None


def _lenient_amount(raw: str | None) -> Decimal:
    """Ledger exports leave blanks and junk in numeric columns; read them as 0."""

    if raw is None or not raw.strip():
        return Decimal(0)
    try:
        return parse_amount(raw)
    except NormalizationError:
        return Decimal(0)


def _canonical_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    return {_KEY_ALIASES.get(key, key): value for key, value in data.items()}


def item_from_dict(data: Mapping[str, Any]) -> LineItem:
    fields = _canonical_keys(data)
    try:
        name = fields["name"]
        quantity = parse_amount(fields["quantity"])
        unit_price = parse_amount(fields["unit_price"])
    except KeyError as exc:
        raise NormalizationError(f"Line item is missing field {exc.args[0]!r}") from exc
    if not isinstance(name, str):
        raise NormalizationError(f"Line item name must be a string, got {name!r}")
    raw_total = fields.get("total_price")
    total = parse_amount(raw_total) if raw_total is not None else quantity * unit_price
    return LineItem(name=name, quantity=quantity, unit_price=unit_price, total_price=total)


def record_from_dict(data: Mapping[str, Any]) -> DocumentRecord:
    if not isinstance(data, Mapping):
        raise NormalizationError(f"Expected a record object, got {type(data).__name__}")
    raw_items = data.get("items") or []
    if not isinstance(raw_items, list):
        raise NormalizationError("Record items must be a list")
    try:
        amount = parse_amount(data["amount"])
    except KeyError as exc:
        raise NormalizationError("Record is missing field 'amount'") from exc
    return DocumentRecord(
        id=str(data.get("id") or uuid.uuid4()),
        description=str(data.get("description") or ""),
        amount=amount,
        date=_lenient_date(data.get("date"), context=f"record {data.get('id') or 'without id'}"),
        items=tuple(item_from_dict(item) for item in raw_items),
    )


def flatten_items(records: Iterable[DocumentRecord]) -> List[LineItem]:
    return [item for record in records for item in record.line_items()]


def ledger_window(records: Iterable[DocumentRecord], *, days: int = 10) -> Optional[DateWindow]:
    """Ledger search window centred on the latest supplier document date."""

    dates = [record.date for record in records if record.date is not None]
    if not dates:
        return None
    anchor = max(dates)
    span = timedelta(days=days)
    return DateWindow(anchor=anchor, start=anchor - span, end=anchor + span)


def _sniff_delimiter(sample: str) -> str:
    """Detect a CSV delimiter, defaulting to comma when uncertain."""

    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",;")
        return dialect.delimiter
    except csv.Error:
        return ";" if sample.count(";") > sample.count(",") else ","


def normalise_ledger_row(row: Mapping[str, str]) -> DocumentRecord:
    name = (row.get("name") or "").strip() or "N/A"
    quantity = _lenient_amount(row.get("quantity"))
    unit_price = _lenient_amount(row.get("unit_price"))
    total = quantity * unit_price
    return DocumentRecord(
        id=(row.get("id") or "").strip() or str(uuid.uuid4()),
        description=name,
        amount=total,
        date=_lenient_date(row.get("date"), context=f"ledger row {name!r}"),
        items=(LineItem(name=name, quantity=quantity, unit_price=unit_price, total_price=total),),
    )


def load_ledger_file(path: Path) -> List[tuple[str, DocumentRecord]]:
    """Read a ledger export into ``(supplier, record)`` pairs."""

    if not path.exists():
        raise FileNotFoundError(path)

    with path.open(newline="", encoding="utf-8-sig") as handle:
        sample = handle.read(1024)
        handle.seek(0)
        reader = csv.DictReader(handle, delimiter=_sniff_delimiter(sample))

        if reader.fieldnames is None or not LEDGER_COLUMNS.issubset(reader.fieldnames):
            raise NormalizationError(f"Missing expected columns in {path}")

        rows = [((row.get("supplier") or "").strip(), normalise_ledger_row(row)) for row in reader]
    return rows
