"""
Migration ledger: durable record of applied plans, keyed by target.
"""

from .checksum import calculate_checksum, checksum_statements, parse_checksum, verify_checksum
from .store import EntryStatus, LedgerEntry, LedgerStatus, MigrationLedger, Outcome

__all__ = [
    "EntryStatus",
    "LedgerEntry",
    "LedgerStatus",
    "MigrationLedger",
    "Outcome",
    "calculate_checksum",
    "checksum_statements",
    "parse_checksum",
    "verify_checksum",
]
