from __future__ import annotations

import os
from collections.abc import Callable
from typing import Dict

from fastapi import FastAPI
from fastapi.responses import JSONResponse


def add_standard_health(
    app: FastAPI,
    env_key: str = "ENV",
    checks: Dict[str, Callable[[], bool]] | None = None,
):
    """
    GET /health: liveness plus the result of every check.
    GET /health/ready: 503 until every check passes.

    Checks run on every call and must not do network I/O; they report
    configuration (is an upstream base url set), not reachability.
    """
    checks = dict(checks or {})

    def _results() -> Dict[str, bool]:
        return {name: bool(check()) for name, check in checks.items()}

    @app.get("/health")
    def _health():
        return {
            "status": "ok",
            "env": os.getenv(env_key, "dev"),
            "service": app.title,
            "version": getattr(app, "version", None),
            "checks": _results(),
        }

    @app.get("/health/ready")
    def _ready():
        results = _results()
        ready = all(results.values())
        return JSONResponse(
            status_code=200 if ready else 503,
            content={"ready": ready, "checks": results},
        )
