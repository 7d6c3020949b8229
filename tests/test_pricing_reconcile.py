from __future__ import annotations

from decimal import Decimal

import pytest

from apps.pos.app.pricing import (
    AllocationResult,
    InvalidDiscountError,
    LineItem,
    apply_discounts,
    discount_from_percent,
    needs_reconciliation,
    percent_from_discount,
    reconcile,
    recompute_order_from_items,
    scale_discount,
)


def _with_discounts(items, *discounts):
    return [it.model_copy(update={"existing_discount": Decimal(d)}) for it, d in zip(items, discounts)]


def test_recompute_takes_item_discounts_as_given(two_lines, exclusive):
    items = _with_discounts(two_lines, 20_000, 10_000)
    res = recompute_order_from_items(items, exclusive)

    assert [a.discount for a in res.per_item] == [20_000, 10_000]
    assert res.order_discount == 30_000
    assert res.order_subtotal == 170_000


def test_recompute_rejects_item_discount_above_line_value(two_lines, exclusive):
    items = _with_discounts(two_lines, 0, 100_001)
    with pytest.raises(InvalidDiscountError) as exc:
        recompute_order_from_items(items, exclusive)
    assert exc.value.product_id == 2
    assert "product 2" in str(exc.value)


def test_small_drift_does_not_trigger_reallocation(two_lines):
    items = _with_discounts(two_lines, 50, 50)
    assert not needs_reconciliation(items, Decimal("100.005"))
    assert needs_reconciliation(items, Decimal("100.01"))
    assert needs_reconciliation(items, 0)


def test_reconcile_keeps_matching_item_discounts(two_lines, exclusive):
    items = _with_discounts(two_lines, 20_000, 10_000)
    res = reconcile(items, 30_000, exclusive)
    assert [a.discount for a in res.per_item] == [20_000, 10_000]


def test_reconcile_reallocates_on_divergence(two_lines, exclusive):
    items = _with_discounts(two_lines, 20_000, 10_000)
    res = reconcile(items, 40_000, exclusive)
    assert [a.discount for a in res.per_item] == [20_000, 20_000]
    assert res.order_discount == 40_000


def test_apply_discounts_writes_back_allocation(two_lines, exclusive):
    res = reconcile(two_lines, 30_000, exclusive)
    updated = apply_discounts(two_lines, res)
    assert [it.existing_discount for it in updated] == [15_000, 15_000]
    # inputs stay untouched
    assert [it.existing_discount for it in two_lines] == [0, 0]
    assert not needs_reconciliation(updated, 30_000)


def test_apply_discounts_refuses_foreign_result(two_lines):
    with pytest.raises(ValueError):
        apply_discounts(two_lines, AllocationResult())


def test_percent_helpers():
    assert discount_from_percent(200_000, 15) == 30_000
    assert discount_from_percent(999, 10) == 99
    assert discount_from_percent(999, 150) == 999
    assert discount_from_percent(999, -5) == 0
    assert percent_from_discount(30_000, 200_000) == 15
    assert percent_from_discount(1, 3) == 33
    assert percent_from_discount(10, 0) == 0


def test_scale_discount_follows_quantity():
    assert scale_discount(15_000, 2, 1) == 7_500
    assert scale_discount(1_000, 3, 2) == 667
    assert scale_discount(5, 2, 1) == 3
    assert scale_discount(5_000, 0, 1) == 0


def test_line_item_rejects_negative_values():
    with pytest.raises(ValueError):
        LineItem(product_id=1, quantity=-1, unit_price=Decimal(1))
    with pytest.raises(ValueError):
        LineItem(product_id=1, unit_price=Decimal(-1))
