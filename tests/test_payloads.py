from __future__ import annotations

from decimal import Decimal

import pytest

from apps.pos.app.payloads import (
    build_commit_payload,
    format_amount,
    line_item_from_api,
    parse_amount,
)
from apps.pos.app.pricing import AllocationResult, allocate_from_order_discount


def test_format_amount_rounds_and_clamps():
    assert format_amount(Decimal("181818")) == "181818.00"
    assert format_amount(Decimal("2.5")) == "3.00"
    assert format_amount(Decimal("2.4")) == "2.00"
    assert format_amount(Decimal("-4")) == "0.00"


def test_parse_amount():
    assert parse_amount("45000.00") == Decimal("45000")
    assert parse_amount(None) == 0
    assert parse_amount("") == 0
    assert parse_amount(12) == 12
    with pytest.raises(ValueError):
        parse_amount("abc")


def test_commit_payload_shape(two_lines, exclusive):
    res = allocate_from_order_discount(two_lines, 30_000, exclusive)
    body = build_commit_payload(two_lines, res).to_api()

    assert body["order"] == {
        "subtotal": "170000.00",
        "tax": "0.00",
        "discount": "30000.00",
        "total": "170000.00",
    }
    assert body["items"][1] == {
        "id": 12,
        "productId": 2,
        "productName": "Tra da",
        "quantity": "2",
        "unitPrice": "50000.00",
        "discount": "15000.00",
        "tax": "0.00",
        "priceBeforeTax": "85000.00",
        "total": "85000.00",
    }


def test_commit_payload_needs_matching_result(two_lines):
    with pytest.raises(ValueError):
        build_commit_payload(two_lines, AllocationResult())


def test_line_item_from_order_api_row():
    raw = {
        "id": 5,
        "productId": "3",
        "productName": "Pho bo",
        "quantity": "2",
        "unitPrice": "45000.00",
        "discount": "5000.00",
        "product": {"taxRate": "8.00"},
    }
    it = line_item_from_api(raw)
    assert it.item_id == 5
    assert it.product_id == 3
    assert it.name == "Pho bo"
    assert it.quantity == 2
    assert it.unit_price == 45_000
    assert it.existing_discount == 5_000
    assert it.tax_rate_percent == 8

    # an explicit catalog rate wins; a missing discount means none
    raw.pop("discount")
    it = line_item_from_api(raw, tax_rate_percent="10")
    assert it.tax_rate_percent == 10
    assert it.existing_discount == 0
