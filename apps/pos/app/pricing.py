"""
Order pricing allocator.

Distributes an order-level discount over the order's line items and splits
every line into price-before-tax and tax, honouring the store's
"price includes tax" policy. Everything here is pure: the same inputs always
give the same AllocationResult, and no input is mutated.

Two entry points, one per direction of authority:

- allocate_from_order_discount: the order discount was edited; it is spread
  top-down over the items.
- recompute_order_from_items: an item discount was edited; item discounts are
  taken as-is and the order discount becomes their sum.

The rounding rules mirror what cashiers see on the till:
proportional shares are floored, the last line of the order takes whatever
is left (so the discounts always sum exactly), pre-tax prices and taxes are
rounded half-up.
"""
from __future__ import annotations

import logging
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

log = logging.getLogger("comanda.pricing")

ZERO = Decimal(0)
_ONE = Decimal(1)
_HUNDRED = Decimal(100)
# Order discount vs. sum of item discounts may drift by less than this
# without triggering a reallocation.
RECONCILE_EPSILON = Decimal("0.01")


class InvalidDiscountError(ValueError):
    """
    A discount was negative or larger than the amount it applies to.

    Callers are expected to reset the offending discount to 0 and tell the
    cashier; the allocator never applies such a discount partially.
    """

    def __init__(self, amount: Decimal, limit: Decimal, product_id: Optional[int] = None):
        self.amount = amount
        self.limit = limit
        self.product_id = product_id
        if amount < 0:
            msg = f"discount {amount} must not be negative"
        else:
            msg = f"discount {amount} exceeds {limit}"
        if product_id is not None:
            msg += f" for product {product_id}"
        super().__init__(msg)


class TaxPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    price_includes_tax: bool = False


class LineItem(BaseModel):
    """
    One product line of an order. Persisted lines carry their order item id,
    lines still in the cart have item_id None; the arithmetic treats both alike.
    """

    model_config = ConfigDict(frozen=True)

    product_id: int
    quantity: int = Field(default=1, ge=0)
    unit_price: Decimal = Field(default=ZERO, ge=0)
    tax_rate_percent: Decimal = Field(default=ZERO, ge=0)
    existing_discount: Decimal = Field(default=ZERO, ge=0)
    name: Optional[str] = None
    item_id: Optional[int] = None

    @property
    def base_amount(self) -> Decimal:
        """Line value before any discount."""
        return self.unit_price * self.quantity


class ItemAllocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: int
    discount: Decimal
    gross_with_tax: Decimal
    price_before_tax: Decimal
    tax: Decimal
    total: Decimal


class AllocationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    per_item: List[ItemAllocation] = Field(default_factory=list)
    order_discount: Decimal = ZERO
    order_subtotal: Decimal = ZERO
    order_tax: Decimal = ZERO
    order_total: Decimal = ZERO

    @property
    def discount_sum(self) -> Decimal:
        return sum((a.discount for a in self.per_item), ZERO)


def round_half_up(value: Decimal) -> Decimal:
    return value.quantize(_ONE, rounding=ROUND_HALF_UP)


def floor_amount(value: Decimal) -> Decimal:
    return value.quantize(_ONE, rounding=ROUND_FLOOR)


def total_before_discount(items: Iterable[LineItem]) -> Decimal:
    return sum((it.base_amount for it in items), ZERO)


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps floats like 0.1 from dragging binary noise in
    return Decimal(str(value))


def split_line(item: LineItem, discount: Decimal, policy: TaxPolicy) -> ItemAllocation:
    """Price-before-tax / tax decomposition of one line after its discount."""
    # (unit_price - discount / qty) * qty, without the inexact division
    gross = max(ZERO, item.base_amount - discount) if item.quantity > 0 else ZERO
    rate = item.tax_rate_percent

    if policy.price_includes_tax and rate > 0:
        price_before_tax = round_half_up(gross / (_ONE + rate / _HUNDRED))
        # remainder, so price_before_tax + tax == gross exactly
        tax = gross - price_before_tax
    else:
        price_before_tax = gross
        tax = round_half_up(price_before_tax * rate / _HUNDRED) if rate > 0 else ZERO

    return ItemAllocation(
        product_id=item.product_id,
        discount=discount,
        gross_with_tax=gross,
        price_before_tax=price_before_tax,
        tax=tax,
        total=price_before_tax + tax,
    )


def _summarize(per_item: List[ItemAllocation], order_discount: Decimal) -> AllocationResult:
    subtotal = sum((round_half_up(a.price_before_tax) for a in per_item), ZERO)
    tax = sum((round_half_up(a.tax) for a in per_item), ZERO)
    return AllocationResult(
        per_item=per_item,
        order_discount=order_discount,
        order_subtotal=subtotal,
        order_tax=tax,
        order_total=max(ZERO, subtotal + tax),
    )


def proportional_shares(items: Sequence[LineItem], order_discount: Decimal) -> List[Decimal]:
    """
    Split order_discount over items by their share of the pre-discount total.

    Every line but the last gets its floored share; the last line gets the
    remainder. The remainder therefore always lands on whichever line is last
    in the sequence, not on the largest one. Lines worth nothing (zero
    quantity or price) get no share, so "last" is the last line with a
    positive value.
    """
    if not items:
        return []
    base_total = total_before_discount(items)
    if order_discount <= 0 or base_total <= 0:
        return [ZERO] * len(items)
    shares: List[Decimal] = []
    allocated = ZERO
    last = max(idx for idx, it in enumerate(items) if it.base_amount > 0)
    for idx, it in enumerate(items):
        if idx == last:
            share = max(ZERO, order_discount - allocated)
        else:
            share = floor_amount(order_discount * it.base_amount / base_total)
            allocated += share
        shares.append(share)
    return shares


def validate_order_discount(items: Sequence[LineItem], order_discount) -> Decimal:
    amount = _as_decimal(order_discount)
    limit = total_before_discount(items)
    if amount < 0 or amount > limit:
        raise InvalidDiscountError(amount, limit)
    return amount


def validate_item_discount(item: LineItem, discount=None) -> Decimal:
    amount = item.existing_discount if discount is None else _as_decimal(discount)
    limit = item.base_amount
    if amount < 0 or amount > limit:
        raise InvalidDiscountError(amount, limit, product_id=item.product_id)
    return amount


def allocate_from_order_discount(
    items: Sequence[LineItem],
    order_discount,
    tax_policy: TaxPolicy,
) -> AllocationResult:
    """
    Spread an order-level discount over the items and price every line.

    Raises InvalidDiscountError when the discount is negative or larger than
    the order's pre-discount total; nothing is computed in that case.
    """
    amount = validate_order_discount(items, order_discount)
    shares = proportional_shares(items, amount)
    per_item = [split_line(it, share, tax_policy) for it, share in zip(items, shares)]
    log.debug(
        "allocated order discount",
        extra={"order_discount": str(amount), "lines": len(per_item)},
    )
    return _summarize(per_item, amount)


def recompute_order_from_items(items: Sequence[LineItem], tax_policy: TaxPolicy) -> AllocationResult:
    """
    Price every line with the discount it already carries.

    The order discount of the result is the sum of the item discounts.
    """
    per_item: List[ItemAllocation] = []
    for it in items:
        discount = validate_item_discount(it)
        per_item.append(split_line(it, discount, tax_policy))
    order_discount = sum((a.discount for a in per_item), ZERO)
    log.debug(
        "recomputed order from items",
        extra={"order_discount": str(order_discount), "lines": len(per_item)},
    )
    return _summarize(per_item, order_discount)


def needs_reconciliation(items: Iterable[LineItem], order_discount) -> bool:
    item_sum = sum((it.existing_discount for it in items), ZERO)
    return abs(_as_decimal(order_discount) - item_sum) >= RECONCILE_EPSILON


def reconcile(items: Sequence[LineItem], order_discount, tax_policy: TaxPolicy) -> AllocationResult:
    """
    Bring order and item discounts back in line before totals are shown or
    an order is committed.
    """
    if needs_reconciliation(items, order_discount):
        return allocate_from_order_discount(items, order_discount, tax_policy)
    return recompute_order_from_items(items, tax_policy)


def apply_discounts(items: Sequence[LineItem], result: AllocationResult) -> List[LineItem]:
    """Copy the allocated discounts back onto the items they came from."""
    if len(items) != len(result.per_item):
        raise ValueError("result does not belong to these items")
    return [
        it.model_copy(update={"existing_discount": alloc.discount})
        for it, alloc in zip(items, result.per_item)
    ]


def discount_from_percent(base, percent) -> Decimal:
    """Percent input as the cashier types it: clamped to 0..100, floored."""
    pct = min(_HUNDRED, max(ZERO, _as_decimal(percent)))
    return floor_amount(_as_decimal(base) * pct / _HUNDRED)


def percent_from_discount(discount, base) -> Decimal:
    base_dec = _as_decimal(base)
    if base_dec <= 0:
        return ZERO
    return floor_amount(_as_decimal(discount) / base_dec * _HUNDRED)


def scale_discount(old_discount, old_quantity: int, new_quantity: int) -> Decimal:
    """Discount of a persisted line after its quantity changed."""
    if old_quantity <= 0:
        return ZERO
    return round_half_up(_as_decimal(old_discount) * new_quantity / old_quantity)
