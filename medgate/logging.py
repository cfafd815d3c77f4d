import json
import logging
import time
from typing import Any, Dict

from fastapi import Request

logger = logging.getLogger("medgate.api")
logger.setLevel(logging.INFO)
logger.propagate = False

_handler = logging.StreamHandler()
# Pure JSON lines so a log shipper's json filter can parse them
_handler.setFormatter(logging.Formatter("%(message)s"))
logger.addHandler(_handler)


def configure_logging(level: str = "INFO") -> None:
    """Plain-text logging for everything outside the per-request JSON line."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Keep third-party HTTP libs quiet; their DEBUG output includes auth headers
    for name in ("urllib3", "requests", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _safe_getattr(obj: Any, name: str, default: Any = None) -> Any:
    try:
        return getattr(obj, name, default)
    except Exception:
        return default


async def log_request(
    request: Request,
    status_code: int,
    start: float,
) -> None:
    """
    Structured JSON log for /api calls.

    Gate and upstream timings are pulled from request.state if the
    handler populated them (see main.py).
    """
    now = time.time()
    duration_ms = round((now - start) * 1000.0, 2)

    state = _safe_getattr(request, "state", None) or object()

    payload: Dict[str, Any] = {
        "service": "medgate-proxy",
        "timestamp": now,
        "method": request.method,
        "path": request.url.path,
        "status": status_code,
        "duration_ms": duration_ms,
        "client": request.client.host if request.client else None,
        # Correlation / session IDs
        "request_id": _safe_getattr(state, "request_id", None),
        "session_id": _safe_getattr(state, "session_id", None),
        # Gate outcome and timings
        "gate_policy": _safe_getattr(state, "gate_policy", None),
        "gate_allowed": _safe_getattr(state, "gate_allowed", None),
        "classifier_calls": _safe_getattr(state, "classifier_calls", None),
        "gate_ms": _safe_getattr(state, "gate_ms", None),
        "upstream_ms": _safe_getattr(state, "upstream_ms", None),
        # High-level error info, if any
        "error": _safe_getattr(state, "error_message", None),
        "trace_id": _safe_getattr(state, "trace_id", None),
        "span_id": _safe_getattr(state, "span_id", None),
    }

    logger.info(json.dumps(payload, ensure_ascii=False))
