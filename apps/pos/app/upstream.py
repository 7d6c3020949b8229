"""
HTTP calls to the services around the pricing module: store settings,
order persistence and the order change-history log.
"""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterable, List, Optional

import httpx

from comanda_shared import REQUEST_ID_HEADER, get_request_id

from .payloads import CommitPayload
from .pricing import TaxPolicy


def _env_or(key: str, default: str) -> str:
    v = os.getenv(key)
    return v if v is not None else default


STORE_SETTINGS_BASE = _env_or("STORE_SETTINGS_BASE_URL", "")
ORDERS_BASE = _env_or("ORDERS_BASE_URL", "")
UPSTREAM_TIMEOUT = float(_env_or("UPSTREAM_TIMEOUT_SECS", "10"))

log = logging.getLogger("comanda.upstream")

_HTTPX_CLIENT: httpx.Client | None = None
_TAX_POLICY: TaxPolicy | None = None


class UpstreamError(RuntimeError):
    def __init__(self, service: str, status_code: Optional[int], detail: str):
        self.service = service
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{service} upstream error ({status_code}): {detail}")


def _httpx_client() -> httpx.Client:
    """Shared sync HTTPX client (keep-alive, pooled)."""
    global _HTTPX_CLIENT
    if _HTTPX_CLIENT is None:
        _HTTPX_CLIENT = httpx.Client(
            timeout=UPSTREAM_TIMEOUT,
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
        )
    return _HTTPX_CLIENT


def close_client() -> None:
    global _HTTPX_CLIENT
    if _HTTPX_CLIENT is not None:
        _HTTPX_CLIENT.close()
        _HTTPX_CLIENT = None


def _request(service: str, base: str, method: str, path: str, json: Any = None) -> Any:
    if not base:
        raise UpstreamError(service, None, "base url not configured")
    url = base.rstrip("/") + path
    try:
        # same id on both sides so order API logs can be matched to ours
        r = _httpx_client().request(method, url, json=json, headers={REQUEST_ID_HEADER: get_request_id()})
    except httpx.HTTPError as e:
        raise UpstreamError(service, None, str(e)) from e
    if r.status_code >= 400:
        raise UpstreamError(service, r.status_code, r.text[:200])
    if not r.content:
        return None
    return r.json()


def fetch_tax_policy() -> TaxPolicy:
    """
    Store-wide tax policy. Without a configured settings service prices are
    treated as tax-exclusive.
    """
    if not STORE_SETTINGS_BASE:
        return TaxPolicy()
    data = _request("store-settings", STORE_SETTINGS_BASE, "GET", "/api/store-settings") or {}
    return TaxPolicy(price_includes_tax=bool(data.get("priceIncludesTax") or False))


def cached_tax_policy() -> TaxPolicy:
    # the policy is set once per store; fetch it once per process
    global _TAX_POLICY
    if _TAX_POLICY is None:
        _TAX_POLICY = fetch_tax_policy()
        log.info("loaded tax policy", extra={"price_includes_tax": _TAX_POLICY.price_includes_tax})
    return _TAX_POLICY


def reset_tax_policy_cache() -> None:
    global _TAX_POLICY
    _TAX_POLICY = None


def fetch_order_items(order_id: int) -> List[Dict[str, Any]]:
    return _request("orders", ORDERS_BASE, "GET", f"/api/order-items/{order_id}") or []


def update_order_item(item_id: int, body: Dict[str, Any]) -> Any:
    return _request("orders", ORDERS_BASE, "PUT", f"/api/order-items/{item_id}", json=body)


def update_order(order_id: int, body: Dict[str, Any]) -> Any:
    return _request("orders", ORDERS_BASE, "PUT", f"/api/orders/{order_id}", json=body)


def post_change_history(entry: Dict[str, Any]) -> bool:
    """Best effort: a failed history write must not fail the order commit."""
    try:
        _request("order-change-history", ORDERS_BASE, "POST", "/api/order-change-history", json=entry)
    except UpstreamError as e:
        log.warning("change history write failed: %s", e, extra={"action": entry.get("action")})
        return False
    return True


def commit_order(
    order_id: Optional[int],
    payload: CommitPayload,
    history_entries: Iterable[Dict[str, Any]] = (),
) -> Any:
    """
    Persist a priced order.

    A new order (order_id None) is created in one call. For an existing
    order, new lines are added, persisted lines updated and the order totals
    written last, so the stored totals always match the stored lines.
    """
    body = payload.to_api()
    if order_id is None:
        for item in body["items"]:
            item.pop("id", None)
        return _request("orders", ORDERS_BASE, "POST", "/api/orders", json=body)

    new_items = [dict(it) for it in body["items"] if it.get("id") is None]
    for it in new_items:
        it.pop("id", None)
    if new_items:
        _request("orders", ORDERS_BASE, "POST", f"/api/orders/{order_id}/items", json={"items": new_items})
    for item in body["items"]:
        item_id = item.get("id")
        if item_id is None:
            continue
        update_order_item(
            item_id,
            {
                "quantity": item["quantity"],
                "unitPrice": item["unitPrice"],
                "discount": item["discount"],
                "tax": item["tax"],
                "priceBeforeTax": item["priceBeforeTax"],
                "total": item["total"],
            },
        )
    result = update_order(order_id, body["order"])
    for entry in history_entries:
        post_change_history(entry)
    log.info("order committed", extra={"order_id": order_id, "lines": len(body["items"])})
    return result
