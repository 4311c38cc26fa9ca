from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from skurecon import normalization
from skurecon.models import DocumentRecord, LineItem


def test_parse_date_handles_multiple_formats():
    assert normalization.parse_date("2024-03-29").isoformat() == "2024-03-29"
    assert normalization.parse_date("29/03/2024").isoformat() == "2024-03-29"
    assert normalization.parse_date("2024-03-29T08:15:00Z").isoformat() == "2024-03-29"


def test_parse_date_rejects_garbage():
    with pytest.raises(normalization.NormalizationError):
        normalization.parse_date("next tuesday")


def test_parse_amount_keeps_exact_decimal():
    assert normalization.parse_amount("1,234.567") == Decimal("1234.567")
    assert normalization.parse_amount(0.1) == Decimal("0.1")
    with pytest.raises(normalization.NormalizationError):
        normalization.parse_amount(True)


def test_record_without_items_counts_as_single_line():
    record = normalization.record_from_dict({"id": "PNK001", "description": "Freight", "amount": 150000})

    assert normalization.flatten_items([record]) == [
        LineItem(name="Freight", quantity=Decimal(1), unit_price=Decimal(150000), total_price=Decimal(150000))
    ]


def test_record_from_dict_reads_camel_case_items():
    record = normalization.record_from_dict(
        {
            "id": "HD-123",
            "date": "2024-05-02",
            "description": "Invoice",
            "amount": 55,
            "items": [
                {"name": "Bulong inox 304 6x30", "quantity": 10, "unitPrice": 5, "totalPrice": 50},
                {"name": "Washer", "quantity": 1, "unit_price": 5},
            ],
        }
    )

    assert record.date == date(2024, 5, 2)
    assert [item.name for item in record.items] == ["Bulong inox 304 6x30", "Washer"]
    assert record.items[1].total_price == Decimal(5)
    assert normalization.flatten_items([record]) == list(record.items)


def test_record_from_dict_requires_amount():
    with pytest.raises(normalization.NormalizationError):
        normalization.record_from_dict({"id": "X", "description": "no amount"})


def test_ledger_window_centres_on_latest_date():
    records = [
        DocumentRecord(id="1", description="a", amount=Decimal(1), date=date(2024, 5, 2)),
        DocumentRecord(id="2", description="b", amount=Decimal(1), date=date(2024, 5, 20)),
        DocumentRecord(id="3", description="c", amount=Decimal(1)),
    ]

    window = normalization.ledger_window(records, days=10)

    assert window == normalization.DateWindow(date(2024, 5, 20), date(2024, 5, 10), date(2024, 5, 30))


def test_ledger_window_without_dates_is_none():
    assert normalization.ledger_window([DocumentRecord(id="1", description="a", amount=Decimal(1))]) is None


def test_load_ledger_file_builds_single_line_records(tmp_path: Path):
    content = (
        "supplier;name;quantity;unit_price;date\n"
        "Hoang Long Co.;Bu Long A-01;10;5;2024-05-01T00:00:00Z\n"
        "Hoang Long Co.;;abc;5;02.05.2024\n"
    )
    path = tmp_path / "ledger.csv"
    path.write_text("\ufeff" + content, encoding="utf-8")

    rows = normalization.load_ledger_file(path)

    assert [supplier for supplier, _ in rows] == ["Hoang Long Co.", "Hoang Long Co."]
    first = rows[0][1]
    assert first.date == date(2024, 5, 1)
    assert first.items[0] == LineItem("Bu Long A-01", Decimal(10), Decimal(5), Decimal(50))
    second = rows[1][1]
    assert second.items[0].name == "N/A"
    assert second.items[0].quantity == Decimal(0)
    assert second.amount == Decimal(0)


def test_load_ledger_file_requires_expected_columns(tmp_path: Path):
    path = tmp_path / "bad.csv"
    path.write_text("name,quantity\nBolt,1\n")

    with pytest.raises(normalization.NormalizationError):
        normalization.load_ledger_file(path)


@pytest.mark.parametrize("raw", ["Infinity", "-inf", "NaN", float("inf")])
def test_parse_amount_rejects_non_finite_values(raw):
    with pytest.raises(normalization.NormalizationError):
        normalization.parse_amount(raw)


def test_unparsable_record_date_is_dropped_not_fatal(caplog):
    record = normalization.record_from_dict({"id": "D", "description": "x", "amount": 1, "date": "May 2nd"})

    assert record.date is None
    assert "May 2nd" in caplog.text


def test_load_ledger_file_tolerates_short_and_undated_rows(tmp_path: Path):
    path = tmp_path / "ledger.csv"
    path.write_text(
        "supplier,name,quantity,unit_price,date\n"
        "Acme,Bolt,2,3,2024-05-01\n"
        "Acme,Nut,1\n"
        "Acme,Washer,1,1,\n",
        encoding="utf-8",
    )

    rows = normalization.load_ledger_file(path)

    assert [record.description for _, record in rows] == ["Bolt", "Nut", "Washer"]
    assert rows[1][1].items[0].unit_price == Decimal(0)
    assert rows[1][1].date is None
    assert rows[2][1].date is None
