from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from .history import ChangeRecord, diff_items
from .payloads import CommitPayload, build_commit_payload
from .pricing import (
    ZERO,
    AllocationResult,
    InvalidDiscountError,
    LineItem,
    TaxPolicy,
    allocate_from_order_discount,
    apply_discounts,
    discount_from_percent,
    reconcile,
    recompute_order_from_items,
    scale_discount,
    total_before_discount,
    validate_item_discount,
    validate_order_discount,
)

log = logging.getLogger("comanda.editor")


class Authority(str, Enum):
    """Which side of the discount was edited last and therefore wins."""

    ORDER = "order"
    ITEMS = "items"


class OrderEditor:
    """
    State of one order while a cashier builds or edits it.

    Persisted lines come first, lines added in this session (the cart)
    follow; that combined order decides which line receives the discount
    remainder. Every mutation recomputes pricing immediately, so `result()`
    always reflects the current state.
    """

    def __init__(
        self,
        tax_policy: Optional[TaxPolicy] = None,
        existing_items: Iterable[LineItem] = (),
        order_discount=ZERO,
    ):
        self.tax_policy = tax_policy or TaxPolicy()
        self.existing: List[LineItem] = list(existing_items)
        self.cart: List[LineItem] = []
        self.order_discount = Decimal(str(order_discount))
        self.authority = Authority.ORDER
        self._original: Tuple[LineItem, ...] = tuple(self.existing)
        self._result: Optional[AllocationResult] = None

    @property
    def items(self) -> List[LineItem]:
        return self.existing + self.cart

    def _locate(self, product_id: int) -> Tuple[List[LineItem], int]:
        # cart lines shadow persisted lines of the same product
        for lines in (self.cart, self.existing):
            for idx, it in enumerate(lines):
                if it.product_id == product_id:
                    return lines, idx
        raise KeyError(product_id)

    def _store(self, items: List[LineItem]) -> None:
        n = len(self.existing)
        self.existing = items[:n]
        self.cart = items[n:]

    def _refresh(self, redistribute: bool = False) -> AllocationResult:
        items = self.items
        try:
            if self.authority is Authority.ITEMS:
                result = recompute_order_from_items(items, self.tax_policy)
            elif redistribute:
                result = allocate_from_order_discount(items, self.order_discount, self.tax_policy)
            else:
                result = reconcile(items, self.order_discount, self.tax_policy)
        except InvalidDiscountError as e:
            if self.authority is Authority.ITEMS:
                raise
            # the order shrank below its discount
            log.warning("order discount no longer valid, reset to 0: %s", e)
            self.order_discount = ZERO
            result = allocate_from_order_discount(items, ZERO, self.tax_policy)
            self._store(apply_discounts(items, result))
            self._result = result
            raise
        self.order_discount = result.order_discount
        self._store(apply_discounts(items, result))
        self._result = result
        return result

    def result(self) -> AllocationResult:
        """Reconciled pricing of the current state."""
        return self._refresh()

    def commit_payload(self) -> CommitPayload:
        result = self._refresh()
        return build_commit_payload(self.items, result)

    def history(self) -> List[ChangeRecord]:
        return diff_items(self._original, self.items)

    def set_tax_policy(self, policy: TaxPolicy) -> AllocationResult:
        self.tax_policy = policy
        return self._refresh()

    def add_product(
        self,
        product_id: int,
        unit_price,
        tax_rate_percent=ZERO,
        name: Optional[str] = None,
        quantity: int = 1,
    ) -> AllocationResult:
        for idx, it in enumerate(self.cart):
            if it.product_id == product_id:
                self.cart[idx] = it.model_copy(update={"quantity": it.quantity + quantity})
                return self._refresh()
        # A new line starts undiscounted; if the order discount is not fully
        # allocated yet, reconciliation spreads it over the new line too.
        self.cart.append(
            LineItem(
                product_id=product_id,
                quantity=quantity,
                unit_price=unit_price,
                tax_rate_percent=tax_rate_percent,
                name=name,
            )
        )
        return self._refresh()

    def set_quantity(self, product_id: int, quantity: int) -> AllocationResult:
        lines, idx = self._locate(product_id)
        line = lines[idx]
        new_qty = max(0, quantity)
        redistribute = False
        if lines is self.existing or self.authority is Authority.ITEMS:
            # the line keeps its discount per unit; the order discount follows
            new_discount = scale_discount(line.existing_discount, line.quantity, new_qty)
            self.order_discount = max(ZERO, self.order_discount - (line.existing_discount - new_discount))
        else:
            new_discount = line.existing_discount
            redistribute = True
        if new_qty == 0:
            del lines[idx]
        else:
            lines[idx] = line.model_copy(update={"quantity": new_qty, "existing_discount": new_discount})
        log.info(
            "quantity changed",
            extra={"product_id": product_id, "old_quantity": line.quantity, "new_quantity": new_qty},
        )
        return self._refresh(redistribute=redistribute)

    def reduce_product(self, product_id: int) -> AllocationResult:
        lines, idx = self._locate(product_id)
        return self.set_quantity(product_id, lines[idx].quantity - 1)

    def set_unit_price(self, product_id: int, unit_price) -> AllocationResult:
        lines, idx = self._locate(product_id)
        line = lines[idx].model_copy(update={"unit_price": Decimal(str(unit_price))})
        if line.unit_price < 0:
            raise ValueError("unit price must not be negative")
        if self.authority is Authority.ITEMS and line.existing_discount > line.base_amount:
            log.warning(
                "item discount exceeds new line value, reset to 0",
                extra={"product_id": product_id},
            )
            line = line.model_copy(update={"existing_discount": ZERO})
        lines[idx] = line
        return self._refresh(redistribute=self.authority is Authority.ORDER)

    def set_order_discount(self, amount) -> AllocationResult:
        """
        Order-level edit: the amount is spread over all lines.

        An invalid amount resets the order discount to 0, leaves the lines as
        they were and re-raises so the caller can tell the cashier.
        """
        self.authority = Authority.ORDER
        try:
            value = validate_order_discount(self.items, amount)
        except InvalidDiscountError as e:
            log.warning("rejected order discount: %s", e)
            self.order_discount = ZERO
            self._result = None
            raise
        self.order_discount = value
        return self._refresh(redistribute=True)

    def set_order_discount_percent(self, percent) -> AllocationResult:
        amount = discount_from_percent(total_before_discount(self.items), percent)
        return self.set_order_discount(amount)

    def set_item_discount(self, product_id: int, amount) -> AllocationResult:
        """
        Item-level edit: the line's discount is taken as given and the order
        discount becomes the sum over all lines.
        """
        lines, idx = self._locate(product_id)
        line = lines[idx]
        self.authority = Authority.ITEMS
        try:
            value = validate_item_discount(line, amount)
        except InvalidDiscountError as e:
            log.warning("rejected item discount: %s", e)
            lines[idx] = line.model_copy(update={"existing_discount": ZERO})
            self._refresh()
            raise
        lines[idx] = line.model_copy(update={"existing_discount": value})
        return self._refresh()

    def set_item_discount_percent(self, product_id: int, percent) -> AllocationResult:
        lines, idx = self._locate(product_id)
        amount = discount_from_percent(lines[idx].base_amount, percent)
        return self.set_item_discount(product_id, amount)
