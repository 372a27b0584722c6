from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from backend.app.leaks.csv_upload import parse_transaction_csv, row_id


def test_parses_rows_after_header():
    text = "date,description,amount\n2024-01-10,Spotify,9.99\n2024-02-10,Spotify,-9.99\n"

    txns = parse_transaction_csv(text)

    assert [(t.date, t.amount, t.merchant_name) for t in txns] == [
        (date(2024, 1, 10), Decimal("9.99"), "Spotify"),
        (date(2024, 2, 10), Decimal("9.99"), "Spotify"),
    ]
    assert txns[0].id == row_id(date(2024, 1, 10), "Spotify", Decimal("9.99"), 1)
    assert all(t.categories == () for t in txns)


def test_skips_incomplete_rows_and_strips_currency_formatting():
    text = 'date,description,amount\n2024-01-10,Datadog,"$1,250.00"\n2024-01-11,,5\n\n2024-01-12,Zoom\n'

    (txn,) = parse_transaction_csv(text)

    assert txn.amount == Decimal("1250.00")
    assert txn.merchant_name == "Datadog"


def test_bad_values_report_line_number():
    with pytest.raises(ValueError, match="line 3"):
        parse_transaction_csv("date,description,amount\n2024-01-10,A,1\n01/11/2024,B,2\n")
    with pytest.raises(ValueError, match="line 2"):
        parse_transaction_csv("date,description,amount\n2024-01-10,A,abc\n")


def test_empty_or_header_only_input():
    assert parse_transaction_csv("") == []
    assert parse_transaction_csv("date,description,amount\n") == []


def test_row_ids_follow_content_not_position():
    first = parse_transaction_csv("date,description,amount\n2024-01-10,Slack,8.75\n2024-02-10,Slack,8.75\n")
    second = parse_transaction_csv("date,description,amount\n2024-01-10,Notion,10\n2024-02-10,Notion,10\n")
    reordered = parse_transaction_csv("date,description,amount\n2024-02-10,Slack,8.75\n2024-01-10,Slack,8.75\n")

    assert not {t.id for t in first} & {t.id for t in second}
    assert {t.id for t in first} == {t.id for t in reordered}
    assert all(t.id.startswith("csv-") for t in first)


def test_identical_rows_get_distinct_ids():
    txns = parse_transaction_csv("date,description,amount\n2024-01-10,Coffee,4.50\n2024-01-10,Coffee,4.50\n")

    assert len({t.id for t in txns}) == 2
    assert txns[1].id.endswith("-2")
