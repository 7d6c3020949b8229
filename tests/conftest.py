import os
from decimal import Decimal
from typing import List

import httpx
import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("ENV", "test")

from apps.pos.app import upstream  # noqa: E402
from apps.pos.app.pricing import LineItem, TaxPolicy  # noqa: E402


@pytest.fixture(scope="session")
def app():
    """
    Import the pricing FastAPI app once per test session.
    """
    from apps.pos.app.main import app as pos_app

    return pos_app


@pytest.fixture()
def client(app):
    return TestClient(app)


@pytest.fixture(autouse=True)
def _isolate_upstream(monkeypatch):
    """
    No test may reach a real service: bases are blanked and the shared
    client/tax policy cache start empty for every test.
    """
    monkeypatch.setattr(upstream, "STORE_SETTINGS_BASE", "")
    monkeypatch.setattr(upstream, "ORDERS_BASE", "")
    monkeypatch.setattr(upstream, "_HTTPX_CLIENT", None)
    monkeypatch.setattr(upstream, "_TAX_POLICY", None)


class _Recorder:
    """
    Collects requests sent through an httpx.MockTransport and answers them
    from a {(method, path): (status, json)} table.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.routes.get((request.method, request.url.path), (200, {}))
        return httpx.Response(status, json=body)

    @property
    def calls(self):
        return [(r.method, r.url.path) for r in self.requests]


@pytest.fixture()
def mock_upstream(monkeypatch):
    """
    Route the upstream module's shared client through a recorder.

    Usage:
        rec = mock_upstream({("GET", "/api/store-settings"): (200, {...})})
    """

    def _install(routes=None) -> _Recorder:
        rec = _Recorder(routes)
        monkeypatch.setattr(upstream, "_HTTPX_CLIENT", httpx.Client(transport=httpx.MockTransport(rec)))
        monkeypatch.setattr(upstream, "STORE_SETTINGS_BASE", "http://settings.test")
        monkeypatch.setattr(upstream, "ORDERS_BASE", "http://orders.test")
        return rec

    return _install


@pytest.fixture()
def exclusive() -> TaxPolicy:
    return TaxPolicy(price_includes_tax=False)


@pytest.fixture()
def inclusive() -> TaxPolicy:
    return TaxPolicy(price_includes_tax=True)


@pytest.fixture()
def two_lines() -> List[LineItem]:
    """100,000 x1 and 50,000 x2, both persisted and untaxed."""
    return [
        LineItem(item_id=11, product_id=1, name="Bun cha", quantity=1, unit_price=Decimal("100000")),
        LineItem(item_id=12, product_id=2, name="Tra da", quantity=2, unit_price=Decimal("50000")),
    ]
