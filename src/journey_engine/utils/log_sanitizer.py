"""Log sanitization filter to keep user identifiers and credentials out of logs.

User ids are UUIDs and show up in most journey log lines. The filter
shortens them to their first 8 characters, which is enough to correlate
lines for one user without writing the full identifier. It also redacts:
- Bearer tokens and authorization headers
- JWT tokens
- Email addresses

Usage:
    from journey_engine.utils.log_sanitizer import configure_logging

    configure_logging("INFO")
"""

import logging
import re
from typing import Any, Callable, Union


UUID_PATTERN = re.compile(
    r'\b([0-9a-fA-F]{8})-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}\b'
)


def _truncate_uuid(match: re.Match) -> str:
    return f"{match.group(1)}..."


class LogSanitizationFilter(logging.Filter):
    """Logging filter that shortens user ids and redacts secrets from log messages."""

    # Order matters: JWTs before bearer tokens, UUIDs last
    PATTERNS: list[tuple[re.Pattern, Union[str, Callable[[re.Match], str]]]] = [
        (re.compile(r'\beyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+'), '[REDACTED_JWT]'),
        (re.compile(r'Bearer\s+[a-zA-Z0-9_\-\.]+', re.IGNORECASE), 'Bearer [REDACTED_TOKEN]'),
        (re.compile(r'(Authorization["\']?\s*[:=]\s*["\']?)[^"\'&\s]+', re.IGNORECASE), r'\1[REDACTED]'),
        (re.compile(r'\b[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}\b'), '[REDACTED_EMAIL]'),
        (UUID_PATTERN, _truncate_uuid),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Sanitize the record in place; never drops it."""
        if record.msg:
            record.msg = self._sanitize(str(record.msg))
        if record.args:
            record.args = self._sanitize_args(record.args)
        return True

    def _sanitize(self, text: str) -> str:
        for pattern, replacement in self.PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def _sanitize_args(self, args: Any) -> Any:
        if isinstance(args, str):
            return self._sanitize(args)
        elif isinstance(args, tuple):
            return tuple(self._sanitize_args(arg) for arg in args)
        elif isinstance(args, list):
            return [self._sanitize_args(arg) for arg in args]
        elif isinstance(args, dict):
            return {k: self._sanitize_args(v) for k, v in args.items()}
        else:
            str_val = str(args)
            sanitized = self._sanitize(str_val)
            return sanitized if sanitized != str_val else args


def install_log_sanitizer(logger_name: str | None = None) -> None:
    """Install the sanitization filter.

    Args:
        logger_name: If provided, install only on the named logger.
                    If None, install on the root logger and its handlers.
    """
    sanitizer = LogSanitizationFilter()

    if logger_name:
        logging.getLogger(logger_name).addFilter(sanitizer)
        return

    root_logger = logging.getLogger()
    root_logger.addFilter(sanitizer)
    for handler in root_logger.handlers:
        handler.addFilter(sanitizer)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once and install the sanitizer on its handlers."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    install_log_sanitizer()


def sanitize_string(text: str) -> str:
    """Sanitize a string without going through the logging system."""
    return LogSanitizationFilter()._sanitize(text)
