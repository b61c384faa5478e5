import logging
import os
from contextvars import ContextVar
from typing import Any, Optional

_CONFIGURED = False

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """Stamps each record with the id of the request being served."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


def _resolve_level(level: Optional[str] = None, debug: bool = False) -> int:
    level = level or os.getenv("LOG_LEVEL")
    if level:
        return getattr(logging, level.upper(), logging.INFO)
    if debug or os.getenv("DEBUG") in ("1", "true", "True"):
        return logging.DEBUG
    return logging.INFO


def configure_logging(level: Optional[str] = None, debug: bool = False) -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s")
    )
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(_resolve_level(level, debug))
    _CONFIGURED = True


_SENSITIVE_EXACT_KEYS = {
    "authorization",
    "signature",
    "private_key",
    "facilitator_api_key",
    "hyperbolic_api_key",
}
_SENSITIVE_SUBSTRINGS = ("x-payment", "secret")


def _should_redact(key: str) -> bool:
    key_lower = key.lower()
    if key_lower in _SENSITIVE_EXACT_KEYS:
        return True
    return any(token in key_lower for token in _SENSITIVE_SUBSTRINGS)


def redact(value: Any, *, sensitive: bool = False) -> Any:
    if isinstance(value, dict):
        return {
            key: redact(item, sensitive=(sensitive or _should_redact(str(key))))
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(redact(item, sensitive=sensitive) for item in value)
    if isinstance(value, str) and sensitive:
        return f"<redacted:{len(value)} chars>"
    return value
