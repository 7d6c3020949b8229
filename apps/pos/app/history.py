"""
Before/after deltas of an edited order, shaped like the records the
order change-history log stores.
"""
from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from .pricing import LineItem

UPDATE_QUANTITY = "update_quantity"
REDUCE_QUANTITY = "reduce_quantity"
UPDATE_DISCOUNT = "update_discount"
UPDATE_UNIT_PRICE = "update_unit_price"
DELETE_ITEM = "delete_item"
ADD_ITEM = "add_item"

_NOTES = {
    UPDATE_QUANTITY: "Updated product quantity",
    REDUCE_QUANTITY: "Reduced product quantity",
    UPDATE_DISCOUNT: "Updated product discount",
    UPDATE_UNIT_PRICE: "Updated product unit price",
    DELETE_ITEM: "Removed product from order",
    ADD_ITEM: "Added product to order",
}


class ChangeRecord(BaseModel):
    action: str
    product_id: int
    detail: Dict[str, Any] = Field(default_factory=dict)


def _num(value: Decimal) -> Any:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def _name(item: LineItem) -> str:
    return item.name or f"#{item.product_id}"


def diff_items(original: Sequence[LineItem], current: Sequence[LineItem]) -> List[ChangeRecord]:
    """
    Compare persisted lines by item id. Lines without an item id in
    `current` are new and reported as additions.
    """
    records: List[ChangeRecord] = []
    by_id = {it.item_id: it for it in current if it.item_id is not None}

    for old in original:
        if old.item_id is None:
            continue
        new = by_id.get(old.item_id)
        if new is None:
            records.append(
                ChangeRecord(
                    action=DELETE_ITEM,
                    product_id=old.product_id,
                    detail={
                        "productName": _name(old),
                        "quantity": old.quantity,
                        "unitPrice": _num(old.unit_price),
                        "discount": _num(old.existing_discount),
                    },
                )
            )
            continue
        if new.quantity != old.quantity:
            records.append(
                ChangeRecord(
                    action=REDUCE_QUANTITY if new.quantity < old.quantity else UPDATE_QUANTITY,
                    product_id=new.product_id,
                    detail={
                        "productName": _name(new),
                        "oldQuantity": old.quantity,
                        "newQuantity": new.quantity,
                        "unitPrice": _num(new.unit_price),
                    },
                )
            )
        if new.existing_discount != old.existing_discount:
            records.append(
                ChangeRecord(
                    action=UPDATE_DISCOUNT,
                    product_id=new.product_id,
                    detail={
                        "productName": _name(new),
                        "oldDiscount": _num(old.existing_discount),
                        "newDiscount": _num(new.existing_discount),
                        "quantity": new.quantity,
                        "unitPrice": _num(new.unit_price),
                    },
                )
            )
        if new.unit_price != old.unit_price:
            records.append(
                ChangeRecord(
                    action=UPDATE_UNIT_PRICE,
                    product_id=new.product_id,
                    detail={
                        "productName": _name(new),
                        "oldUnitPrice": _num(old.unit_price),
                        "newUnitPrice": _num(new.unit_price),
                        "quantity": new.quantity,
                    },
                )
            )

    for it in current:
        if it.item_id is None:
            records.append(
                ChangeRecord(
                    action=ADD_ITEM,
                    product_id=it.product_id,
                    detail={
                        "productName": _name(it),
                        "quantity": it.quantity,
                        "unitPrice": _num(it.unit_price),
                    },
                )
            )
    return records


def build_history_entry(
    order_id: int,
    order_number: str,
    record: ChangeRecord,
    user_name: str = "staff",
    ip_address: str = "unknown",
    store_code: Optional[str] = None,
) -> Dict[str, Any]:
    """Request body for the change-history API."""
    detail = dict(record.detail)
    detail.setdefault("note", _NOTES.get(record.action, record.action))
    return {
        "orderId": order_id,
        "orderNumber": order_number,
        "ipAddress": ip_address,
        "userName": user_name,
        "action": record.action,
        "detailedDescription": json.dumps(detail, ensure_ascii=False),
        "storeCode": store_code,
    }
