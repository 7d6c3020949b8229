import logging
import os
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from comanda_shared import RequestIDMiddleware, configure_cors, add_standard_health, setup_json_logging

from . import upstream
from .history import build_history_entry, diff_items
from .payloads import build_commit_payload, line_item_from_api
from .pricing import (
    AllocationResult,
    InvalidDiscountError,
    LineItem,
    TaxPolicy,
    allocate_from_order_discount,
    apply_discounts,
    needs_reconciliation,
    reconcile,
    recompute_order_from_items,
)

log = logging.getLogger("comanda.api")


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    upstream.close_client()


app = FastAPI(title="Comanda POS Pricing", version="0.1.0", lifespan=_lifespan)
setup_json_logging(service="comanda-pos-pricing")
app.add_middleware(RequestIDMiddleware)
configure_cors(app, os.getenv("ALLOWED_ORIGINS", ""))
# without a settings service prices default to tax-exclusive, so only the
# order API is required
add_standard_health(app, checks={"orders_configured": lambda: bool(upstream.ORDERS_BASE)})
router = APIRouter()


class AllocateReq(BaseModel):
    items: List[LineItem] = Field(default_factory=list)
    order_discount: Decimal = Decimal(0)
    # None: use the store setting
    price_includes_tax: Optional[bool] = None


class RecomputeReq(BaseModel):
    items: List[LineItem] = Field(default_factory=list)
    price_includes_tax: Optional[bool] = None


class ReconcileOut(BaseModel):
    reallocated: bool
    result: AllocationResult


class TaxPolicyOut(BaseModel):
    price_includes_tax: bool


class OrderOut(BaseModel):
    order_id: int
    items: List[LineItem]
    result: AllocationResult


class CommitReq(AllocateReq):
    order_number: str = ""
    user_name: str = "staff"
    store_code: Optional[str] = None


class CommitOut(BaseModel):
    order_id: Optional[int] = None
    reallocated: bool
    result: AllocationResult
    history: List[str] = Field(default_factory=list)
    upstream: Any = None


def _policy(flag: Optional[bool]) -> TaxPolicy:
    if flag is not None:
        return TaxPolicy(price_includes_tax=flag)
    try:
        return upstream.cached_tax_policy()
    except upstream.UpstreamError as e:
        raise HTTPException(status_code=502, detail=str(e))


def _invalid_discount(e: InvalidDiscountError) -> HTTPException:
    log.warning("invalid discount: %s", e)
    detail = {
        "error": "invalid_discount",
        "message": str(e),
        "reset_discount": "0",
    }
    if e.product_id is not None:
        detail["product_id"] = e.product_id
    return HTTPException(status_code=400, detail=detail)


def _upstream_failed(e: upstream.UpstreamError) -> HTTPException:
    log.warning("upstream call failed: %s", e, extra={"upstream_service": e.service})
    return HTTPException(status_code=502, detail=str(e))


def _load_items(order_id: int) -> List[LineItem]:
    try:
        raw = upstream.fetch_order_items(order_id)
    except upstream.UpstreamError as e:
        raise _upstream_failed(e)
    try:
        return [line_item_from_api(r) for r in raw]
    except (KeyError, ValueError) as e:
        log.warning("malformed order items: %s", e, extra={"order_id": order_id})
        raise HTTPException(status_code=502, detail=f"malformed order items for order {order_id}")


@router.get("/tax-policy", response_model=TaxPolicyOut)
def get_tax_policy():
    return TaxPolicyOut(price_includes_tax=_policy(None).price_includes_tax)


@router.post("/allocate", response_model=AllocationResult)
def allocate(req: AllocateReq):
    policy = _policy(req.price_includes_tax)
    try:
        return allocate_from_order_discount(req.items, req.order_discount, policy)
    except InvalidDiscountError as e:
        raise _invalid_discount(e)


@router.post("/recompute", response_model=AllocationResult)
def recompute(req: RecomputeReq):
    policy = _policy(req.price_includes_tax)
    try:
        return recompute_order_from_items(req.items, policy)
    except InvalidDiscountError as e:
        raise _invalid_discount(e)


@router.post("/reconcile", response_model=ReconcileOut)
def reconcile_order(req: AllocateReq):
    policy = _policy(req.price_includes_tax)
    try:
        reallocated = needs_reconciliation(req.items, req.order_discount)
        result = reconcile(req.items, req.order_discount, policy)
    except InvalidDiscountError as e:
        raise _invalid_discount(e)
    return ReconcileOut(reallocated=reallocated, result=result)


@router.post("/commit-payload")
def commit_payload(req: AllocateReq):
    """Reconciled order as the order API expects it, without sending it."""
    policy = _policy(req.price_includes_tax)
    try:
        result = reconcile(req.items, req.order_discount, policy)
    except InvalidDiscountError as e:
        raise _invalid_discount(e)
    return build_commit_payload(req.items, result).to_api()


@router.get("/orders/{order_id}", response_model=OrderOut)
def load_order(order_id: int, price_includes_tax: Optional[bool] = None):
    """
    Persisted order priced from its stored line discounts. The line
    discounts are authoritative here; the order discount is their sum.
    """
    policy = _policy(price_includes_tax)
    items = _load_items(order_id)
    try:
        result = recompute_order_from_items(items, policy)
    except InvalidDiscountError as e:
        raise _invalid_discount(e)
    return OrderOut(order_id=order_id, items=items, result=result)


def _commit(order_id: Optional[int], req: CommitReq, request: Request) -> CommitOut:
    policy = _policy(req.price_includes_tax)
    original = _load_items(order_id) if order_id is not None else []
    try:
        reallocated = needs_reconciliation(req.items, req.order_discount)
        result = reconcile(req.items, req.order_discount, policy)
    except InvalidDiscountError as e:
        raise _invalid_discount(e)
    payload = build_commit_payload(req.items, result)

    entries = []
    records = []
    if order_id is not None:
        records = diff_items(original, apply_discounts(req.items, result))
        ip = request.client.host if request.client else "unknown"
        entries = [
            build_history_entry(
                order_id,
                req.order_number,
                rec,
                user_name=req.user_name,
                ip_address=ip,
                store_code=req.store_code,
            )
            for rec in records
        ]
    try:
        stored = upstream.commit_order(order_id, payload, entries)
    except upstream.UpstreamError as e:
        raise _upstream_failed(e)
    return CommitOut(
        order_id=order_id,
        reallocated=reallocated,
        result=result,
        history=[rec.action for rec in records],
        upstream=stored,
    )


@router.post("/orders", response_model=CommitOut, status_code=201)
def create_order(req: CommitReq, request: Request):
    return _commit(None, req, request)


@router.post("/orders/{order_id}/commit", response_model=CommitOut)
def commit_order(order_id: int, req: CommitReq, request: Request):
    """Reconcile, persist and log the changes against the stored lines."""
    return _commit(order_id, req, request)


app.include_router(router, prefix="/pricing")
