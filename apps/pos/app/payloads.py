from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .pricing import AllocationResult, LineItem, ZERO, round_half_up


def format_amount(value: Decimal) -> str:
    """Money as the order API stores it: rounded, non-negative, two decimals."""
    return f"{max(ZERO, round_half_up(value)):.2f}"


def parse_amount(raw: Any) -> Decimal:
    # The order API sends numeric strings; missing/blank means 0.
    if raw is None or raw == "":
        return ZERO
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        raise ValueError(f"not a decimal amount: {raw!r}") from None


class OrderItemPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_id: Optional[int] = Field(default=None, alias="id")
    product_id: int = Field(alias="productId")
    product_name: Optional[str] = Field(default=None, alias="productName")
    quantity: str
    unit_price: str = Field(alias="unitPrice")
    discount: str
    tax: str
    price_before_tax: str = Field(alias="priceBeforeTax")
    total: str


class OrderTotalsPayload(BaseModel):
    subtotal: str
    tax: str
    discount: str
    total: str


class CommitPayload(BaseModel):
    order: OrderTotalsPayload
    items: List[OrderItemPayload]

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def build_commit_payload(items: Sequence[LineItem], result: AllocationResult) -> CommitPayload:
    if len(items) != len(result.per_item):
        raise ValueError("result does not belong to these items")
    lines = []
    for it, alloc in zip(items, result.per_item):
        lines.append(
            OrderItemPayload(
                item_id=it.item_id,
                product_id=it.product_id,
                product_name=it.name,
                quantity=str(it.quantity),
                unit_price=format_amount(it.unit_price),
                discount=format_amount(alloc.discount),
                tax=format_amount(alloc.tax),
                price_before_tax=format_amount(alloc.price_before_tax),
                total=format_amount(alloc.total),
            )
        )
    totals = OrderTotalsPayload(
        subtotal=format_amount(result.order_subtotal),
        tax=format_amount(result.order_tax),
        discount=format_amount(result.order_discount),
        total=format_amount(result.order_total),
    )
    return CommitPayload(order=totals, items=lines)


def line_item_from_api(raw: Mapping[str, Any], tax_rate_percent: Any = None) -> LineItem:
    """
    LineItem from an order item as the order API returns it.

    The order item does not carry the product's tax rate; pass it in from the
    catalog, otherwise a nested `product.taxRate` is used when present.
    """
    if tax_rate_percent is None:
        product = raw.get("product") or {}
        tax_rate_percent = product.get("taxRate")
    return LineItem(
        item_id=raw.get("id"),
        product_id=int(raw["productId"]),
        name=raw.get("productName"),
        quantity=int(parse_amount(raw.get("quantity"))),
        unit_price=parse_amount(raw.get("unitPrice")),
        tax_rate_percent=parse_amount(tax_rate_percent),
        existing_discount=parse_amount(raw.get("discount")),
    )
