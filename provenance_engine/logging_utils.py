"""
Provenance Engine - Logging Utilities.

============================================================
PURPOSE
============================================================
- Root logger setup (text or JSON lines)
- Sanitization of untrusted values before they reach a log line
  (log records contain addresses, metadata strings and RPC errors
  that come straight from the ledger)
- Masking of API keys embedded in RPC URLs

============================================================
"""

import json
import logging
import re
import sys
from typing import Any
from urllib.parse import urlsplit, urlunsplit


MAX_LOG_VALUE_LENGTH = 200

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_LINE_BREAKS = re.compile(r"[\r\n\t]+")
_KEY_SEGMENT = re.compile(r"[A-Za-z0-9_-]{24,}")


def sanitize_log_value(value: Any, max_length: int = MAX_LOG_VALUE_LENGTH) -> str:
    """
    Make an untrusted value safe to embed in a log line.

    Line breaks and tabs collapse to a space, other control characters are
    removed and long values are truncated.
    """
    if value is None:
        return "[null]"

    text = _LINE_BREAKS.sub(" ", str(value))
    text = _CONTROL_CHARS.sub("", text)

    if len(text) > max_length:
        text = text[:max_length] + "...[truncated]"
    return text


def mask_url(url: str) -> str:
    """
    Hide credentials in an RPC URL.

    Providers commonly embed the API key as a path segment
    (``https://host/v2/<key>``) or as userinfo.
    """
    if not url:
        return ""
    parts = urlsplit(url)
    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    path = _KEY_SEGMENT.sub("***", parts.path)
    query = "***" if parts.query else ""
    return urlunsplit((parts.scheme, netloc, path, query, ""))


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
) -> logging.Logger:
    """
    Configure root logging.

    Args:
        level: Log level name
        log_format: "text" or "json"

    Returns:
        The package logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("provenance_engine")
