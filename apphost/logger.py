import logging
import re
import sys
from typing import Optional

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_REPLACEMENTS = {
    '‘': "'",  # Left single quotation mark
    '’': "'",  # Right single quotation mark
    '“': '"',  # Left double quotation mark
    '”': '"',  # Right double quotation mark
    '–': '-',  # En dash
    '—': '--',  # Em dash
    '…': '...',  # Horizontal ellipsis
}


def sanitize_message(message) -> str:
    """Sanitize message by removing problematic Unicode characters"""
    if not isinstance(message, str):
        message = str(message)

    # Remove null bytes and other control characters (except newlines and tabs)
    message = re.sub(r'[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]', '', message)

    for unicode_char, replacement in _REPLACEMENTS.items():
        message = message.replace(unicode_char, replacement)

    return message.encode('utf-8', errors='replace').decode('utf-8')


class SanitizingFilter(logging.Filter):
    """Rewrites each record's message through ``sanitize_message``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = sanitize_message(record.getMessage())
        record.args = None
        return True


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    fmt: str = DEFAULT_FORMAT,
    name: str = "apphost",
) -> logging.Logger:
    """Attach stdout (and optional file) handlers to the package logger."""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    formatter = logging.Formatter(fmt)

    logger.handlers = []
    ch = logging.StreamHandler(sys.stdout)
    ch.setFormatter(formatter)
    ch.addFilter(SanitizingFilter())
    logger.addHandler(ch)

    if log_file:
        # Use UTF-8 encoding for file output
        fh = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        fh.setFormatter(formatter)
        fh.addFilter(SanitizingFilter())
        logger.addHandler(fh)

    return logger
