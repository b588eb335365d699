"""Security utilities for secure logging.

This module provides:
- Redaction of credentials in strings and HTTP headers
- A logging formatter that sanitizes every record
- Secure logging setup for applications embedding the client
"""

import logging
import re
import sys
from typing import Any, Dict, Mapping, Optional

from ..config.settings import settings

# Patterns for sensitive data detection
SENSITIVE_PATTERNS = {
    "qbox_token": re.compile(r"QBox\s+[A-Za-z0-9_\-=:]+", re.IGNORECASE),
    "qiniu_token": re.compile(r"Qiniu\s+[A-Za-z0-9_\-=:]+", re.IGNORECASE),
    "bearer_token": re.compile(r"Bearer\s+[A-Za-z0-9_\-.]+", re.IGNORECASE),
    "access_key": re.compile(r"[A-Za-z0-9_\-]{40}:[A-Za-z0-9_\-=]{20,}"),
}

# Headers that should never be logged
SENSITIVE_HEADERS = {
    "authorization",
    "proxy-authorization",
    "cookie",
    "set-cookie",
    "x-qiniu-date",
}


def sanitize_string(value: str, partial: bool = False) -> str:
    """Sanitize a string containing potential sensitive data.

    Sensitive fragments are replaced in place, so the surrounding text
    (for example the rest of a log line) stays readable.

    :param value: String to sanitize
    :type value: str
    :param partial: If True, show length instead of full redaction
    :type partial: bool
    :return: Sanitized string with sensitive data redacted
    :rtype: str
    """
    if not value:
        return value
    for pattern_name, pattern in SENSITIVE_PATTERNS.items():

        def _redact(match: "re.Match[str]") -> str:
            if partial:
                return f"<{pattern_name}:length={len(match.group(0))}>"
            return f"<{pattern_name}:REDACTED>"

        value = pattern.sub(_redact, value)
    return value


def sanitize_headers(headers: Mapping[str, Any]) -> Dict[str, Any]:
    """Sanitize HTTP headers for logging.

    :param headers: HTTP headers (a dict or ``httpx.Headers``)
    :type headers: Mapping[str, Any]
    :return: Sanitized copy of the headers
    :rtype: Dict[str, Any]
    """
    sanitized: Dict[str, Any] = {}
    if not headers:
        return sanitized
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            if isinstance(value, str) and len(value) > 0:
                sanitized[key] = f"<REDACTED:length={len(value)}>"
            else:
                sanitized[key] = "<REDACTED>"
        elif isinstance(value, str):
            sanitized[key] = sanitize_string(value)
        else:
            sanitized[key] = value
    return sanitized


class SanitizingFormatter(logging.Formatter):
    """Formatter that automatically sanitizes sensitive data."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with automatic sanitization.

        :param record: Log record to format
        :type record: logging.LogRecord
        :return: Sanitized log message
        :rtype: str
        """
        try:
            record.msg = sanitize_string(record.getMessage())
            record.args = None  # already merged into msg
        except (TypeError, ValueError):
            # Message and args do not match; sanitize what we can
            record.msg = sanitize_string(str(record.msg))
            if record.args and isinstance(record.args, tuple):
                record.args = tuple(
                    sanitize_string(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )
        return super().format(record)


# Global flag to track if logging has been set up
_LOGGING_CONFIGURED = False


def setup_secure_logging(level: Optional[str] = None, force: bool = False) -> None:
    """Set up logging with automatic sanitization.

    Uses a module flag so repeated calls do not stack handlers.

    :param level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL),
        defaults to the configured ``QINIU_LOG_LEVEL``
    :type level: Optional[str]
    :param force: Reconfigure even if logging was already set up
    :type force: bool
    """
    global _LOGGING_CONFIGURED

    if _LOGGING_CONFIGURED and not force:
        logging.getLogger(__name__).debug(
            "Logging already configured, skipping duplicate setup"
        )
        return

    level = level or settings.log_level
    formatter = SanitizingFormatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=[handler],
        force=True,
    )

    # httpx and httpcore log every request at INFO/DEBUG on their own
    for logger_name in ["httpx", "httpcore"]:
        lib_logger = logging.getLogger(logger_name)
        lib_logger.handlers.clear()
        lib_logger.propagate = True

    _LOGGING_CONFIGURED = True

