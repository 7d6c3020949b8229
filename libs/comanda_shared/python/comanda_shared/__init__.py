from .request_id import REQUEST_ID_HEADER, RequestIDMiddleware, get_request_id
from .cors import configure_cors
from .health import add_standard_health
from .logging import setup_json_logging

__all__ = [
    "REQUEST_ID_HEADER",
    "RequestIDMiddleware",
    "get_request_id",
    "configure_cors",
    "add_standard_health",
    "setup_json_logging",
]
