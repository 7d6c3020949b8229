from __future__ import annotations

from fastapi.middleware.cors import CORSMiddleware

from .request_id import REQUEST_ID_HEADER

# Dev servers of the POS web client.
_LOCAL_ORIGINS = ["http://localhost:5000", "http://127.0.0.1:5000", "http://localhost:5173"]


def configure_cors(app, allowed: str | None):
    """
    The POS client only reads and posts JSON; it sends and reads back the
    request id header.
    """
    origins = [o.strip() for o in (allowed or "").split(",") if o.strip()] or list(_LOCAL_ORIGINS)
    # credentialed requests are never allowed with a wildcard origin
    wildcard = "*" in origins

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if wildcard else origins,
        allow_credentials=not wildcard,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER],
    )
