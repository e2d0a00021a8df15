"""
Database name sanitization.

Turns arbitrary requested names (usually test node ids) into identifiers
PostgreSQL accepts, shortening over-length names around a unique counter value.
"""

import logging
from threading import Lock

logger = logging.getLogger(__name__)

# NAMEDATALEN - 1, in bytes
MAX_IDENTIFIER_LENGTH = 63


class NamingConstraintViolation(ValueError):
    """Raised when a sanitized name would not satisfy the identifier limit."""
    pass


class ReplacementCounter:
    """Strictly increasing counter used to disambiguate shortened names."""

    def __init__(self, start: int = 0):
        self._value = start
        self._lock = Lock()

    def next(self) -> int:
        """Increment the counter and return its new value."""
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


def encoded_length(name: str) -> int:
    """Length of ``name`` as the server counts it, in UTF-8 bytes."""
    return len(name.encode('utf-8'))


def _head_bytes(name: str, size: int) -> str:
    # A multibyte character cut at the boundary is dropped whole
    return name.encode('utf-8')[:size].decode('utf-8', errors='ignore')


def _tail_bytes(name: str, size: int) -> str:
    return name.encode('utf-8')[-size:].decode('utf-8', errors='ignore')


def sanitize_database_name(name: str, counter: ReplacementCounter) -> str:
    """
    Return a valid PostgreSQL database name for ``name``.

    ``/`` and ``#`` are replaced with ``_`` and parentheses are removed. Names
    longer than 63 bytes in UTF-8 keep a prefix and a suffix around
    ``-<uid>-``, where ``uid`` is the next value of ``counter``. Prefix and
    suffix are cut on character boundaries, so multibyte names may come out
    a few bytes shorter. Short names are returned as is and are not made
    unique.

    Args:
        name: Requested database name
        counter: Shared counter for over-length names

    Returns:
        Sanitized database name
    """
    name = name.replace('/', '_').replace('#', '_')
    name = name.replace('(', '').replace(')', '')

    if encoded_length(name) <= MAX_IDENTIFIER_LENGTH:
        return name

    uid = str(counter.next())
    head = 29 - len(uid) // 2
    tail = 30 - len(uid) // 2
    shortened = f"{_head_bytes(name, head)}-{uid}-{_tail_bytes(name, tail)}"

    if encoded_length(shortened) > MAX_IDENTIFIER_LENGTH:
        raise NamingConstraintViolation(
            f"Shortened database name '{shortened}' exceeds {MAX_IDENTIFIER_LENGTH} bytes"
        )

    logger.debug(f"Shortened database name '{name}' to '{shortened}'")
    return shortened
