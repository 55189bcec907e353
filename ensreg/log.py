"""Logging setup for ensreg.

Library modules only call logging.getLogger(__name__); the CLI calls
setup_logging() once. Private keys and commit secrets are masked in every record
so a pasted log never leaks a key or a still-usable secret. Transaction hashes and
commitments are public and stay readable.
"""

import logging
import os
import re
import sys
from typing import List, Optional, Tuple, Union

ENV_LOG_LEVEL = "ENSREG_LOG_LEVEL"
DEFAULT_LEVEL = "WARNING"

SENSITIVE_PATTERNS: List[Tuple["re.Pattern[str]", str]] = [
    (
        re.compile(r"((?:client_)?private[_-]?key['\"]?\s*[:=]\s*['\"]?)(0x)?[A-Fa-f0-9]{64}", re.IGNORECASE),
        r"\1[REDACTED]",
    ),
    (
        re.compile(r"(secret['\"]?\s*[:=]?\s*['\"]?)0x[A-Fa-f0-9]{64}", re.IGNORECASE),
        r"\1[REDACTED]",
    ),
]


def sanitize_message(message: str) -> str:
    if not message:
        return message
    for pattern, replacement in SENSITIVE_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


class RedactingFormatter(logging.Formatter):
    def __init__(self):
        super().__init__(fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        return sanitize_message(super().format(record))


_handler: Optional[logging.Handler] = None


def resolve_level(level: Union[str, int, None] = None) -> int:
    """Explicit level, else ENSREG_LOG_LEVEL, else WARNING. Unknown names fall back to WARNING."""
    if isinstance(level, int):
        return level
    name = (level or os.getenv(ENV_LOG_LEVEL) or DEFAULT_LEVEL).upper()
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.WARNING


def setup_logging(level: Union[str, int, None] = None) -> logging.Logger:
    """Attach one stderr handler to the ensreg logger. Calling again only changes the level."""
    global _handler

    logger = logging.getLogger("ensreg")
    logger.setLevel(resolve_level(level))
    if _handler is None:
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(RedactingFormatter())
        logger.addHandler(_handler)
    return logger
