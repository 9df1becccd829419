"""
Checksums for migration plans.

Checksums are stored as ``<algorithm>:<hex>`` strings. Values without a
prefix come from older ledgers and are treated as sha256.

A statement list is checksummed over its JSON array encoding, so statements
containing newlines cannot collide with a different split of the same text.
Entries recorded before that encoding used the newline join of the
statements; verify_statements() still accepts those.
"""

from __future__ import annotations

import hashlib
import json
from typing import Iterable

DEFAULT_ALGORITHM = "sha256"


def statements_content(statements: Iterable[str]) -> str:
    """Canonical text a statement list is checksummed over."""
    return json.dumps(list(statements), ensure_ascii=False, separators=(",", ":"))


def legacy_statements_content(statements: Iterable[str]) -> str:
    """Newline join used by ledgers written before the JSON encoding."""
    return "\n".join(statements)


def calculate_checksum(content: str, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Compute a checksum string for some content.

    Example:
        >>> calculate_checksum("DEFINE TABLE user;")[:7]
        'sha256:'
    """
    digest = hashlib.new(algorithm, content.encode("utf-8")).hexdigest()
    return f"{algorithm}:{digest}"


def parse_checksum(value: str) -> tuple[str, str]:
    """Split a stored checksum into (algorithm, hex digest)."""
    if ":" in value:
        algorithm, digest = value.split(":", 1)
        return algorithm, digest
    return DEFAULT_ALGORITHM, value


def verify_checksum(content: str, expected: str) -> bool:
    """Whether content hashes to the expected checksum."""
    algorithm, digest = parse_checksum(expected)
    return calculate_checksum(content, algorithm) == f"{algorithm}:{digest}"


def checksum_statements(statements: Iterable[str]) -> str:
    return calculate_checksum(statements_content(statements))


def verify_statements(statements: Iterable[str], expected: str) -> bool:
    """Whether a statement list matches a stored checksum in either encoding."""
    statements = list(statements)
    return verify_checksum(statements_content(statements), expected) or verify_checksum(
        legacy_statements_content(statements), expected
    )
