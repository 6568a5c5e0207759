# src/session_guard/failure_logger.py

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, Union

import httpx

from .error_handler import mask_credential
from .utils.paths import get_logs_dir

SENSITIVE_HEADERS = frozenset({"authorization", "cookie", "x-api-key"})


class JsonFormatter(logging.Formatter):
    """Formats dict log messages as one JSON object per line."""

    def format(self, record):
        return json.dumps(record.msg, default=str)


_failure_logger: Optional[logging.Logger] = None
_configured_logs_dir: Optional[Path] = None


def configure_failure_logger(logs_dir: Optional[Union[Path, str]] = None) -> None:
    """
    Point the failure log at a specific directory. Call before first use;
    otherwise get_logs_dir() is used.
    """
    global _configured_logs_dir, _failure_logger
    _configured_logs_dir = Path(logs_dir) if logs_dir else None
    # Reconfigured on next use
    _failure_logger = None


def _setup_failure_logger(logs_dir: Path) -> logging.Logger:
    logger = logging.getLogger("session_guard.failures")
    logger.setLevel(logging.INFO)
    logger.propagate = False
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            logs_dir / "failures.log",
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=2,
        )
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
    except OSError as e:
        logging.warning(f"Cannot create failure log file handler: {e}")
        logger.addHandler(logging.NullHandler())

    return logger


def get_failure_logger() -> logging.Logger:
    global _failure_logger
    if _failure_logger is None:
        logs_dir = _configured_logs_dir if _configured_logs_dir else get_logs_dir()
        _failure_logger = _setup_failure_logger(logs_dir)
    return _failure_logger


main_lib_logger = logging.getLogger("session_guard")


def _redact_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    if not headers:
        return {}
    redacted = {}
    for name, value in headers.items():
        if name.lower() in SENSITIVE_HEADERS:
            token = value.split(" ", 1)[-1] if value else value
            redacted[name] = mask_credential(token)
        else:
            redacted[name] = value
    return redacted


def _extract_response_body(error: BaseException) -> Optional[str]:
    response = getattr(error, "response", None)
    if isinstance(response, httpx.Response):
        try:
            return response.text
        except httpx.ResponseNotRead:
            return None
    return None


def _error_chain(error: BaseException) -> list:
    chain = []
    visited = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in visited:
        visited.add(id(current))
        chain.append({"type": type(current).__name__, "message": str(current)[:2000]})
        current = current.__cause__ or current.__context__
        if len(chain) > 5:
            break
    return chain


def log_failure(
    method: str,
    url: str,
    attempts: int,
    error: BaseException,
    request_headers: Optional[Dict[str, str]] = None,
    error_class: Optional[str] = None,
    credential: Optional[str] = None,
) -> None:
    """
    Log a request that failed for good: full detail to the JSON failure log,
    a one-line summary to the library logger.
    """
    raw_response = _extract_response_body(error)
    chain = _error_chain(error)

    detailed_log_data: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": method,
        "url": url,
        "attempts": attempts,
        "error_class": error_class,
        "credential_ending": mask_credential(credential),
        "error_type": type(error).__name__,
        "error_message": str(error)[:5000],
        "raw_response": raw_response[:10000] if raw_response else None,
        "request_headers": _redact_headers(request_headers),
        "error_chain": chain if len(chain) > 1 else None,
    }

    try:
        get_failure_logger().error(detailed_log_data)
    except OSError as e:
        logging.warning(f"Failed to write to failures.log: {e}")

    main_lib_logger.error(
        f"{method} {url} failed after {attempts} attempt(s). "
        f"Error: {type(error).__name__}. See failures.log for details."
    )
