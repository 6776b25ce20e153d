"""Sanitization helpers for values that end up in logs and stored error lists.

Distributor and storefront error bodies, SKUs and customer input are echoed
into log lines and into persisted per-item error lists. They are stripped of
control characters and truncated so one bad upstream response cannot forge
log entries or bloat a SyncJob row.
"""

import re
from typing import Any

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_log(value: Any, max_length: int = 200) -> str:
    """Sanitize a value for safe logging.

    Args:
        value: The value to sanitize. Converted to string.
        max_length: Maximum length of the output string.

    Returns:
        A single-line string safe for logging.

    Example:
        >>> sanitize_log("A100\\nCRITICAL: hacked")
        'A100\\\\nCRITICAL: hacked'
    """
    if value is None:
        return "[None]"

    text = str(value)
    text = text.replace("\n", "\\n").replace("\r", "\\r").replace("\t", "\\t")
    text = _CONTROL_CHARS.sub("", text)

    if len(text) > max_length:
        text = text[:max_length] + "...[truncated]"
    return text


def sanitize_exception(exc: BaseException, max_length: int = 500) -> str:
    """Sanitize an exception message for logging or persisting."""
    message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
    return sanitize_log(message, max_length=max_length)


def mask_secret(value: str | None, visible: int = 4) -> str:
    """Mask an API key or token, keeping only its last characters."""
    if not value:
        return ""
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * (len(value) - visible) + value[-visible:]
