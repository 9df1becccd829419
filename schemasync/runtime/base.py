"""
Protocols for the outside world the reconciler talks to.

- DesiredStateProvider: supplies the desired schema (files, code)
- LiveStateProvider: introspects the live database
- StatementExecutor: runs one dialect statement against the live database

Execution contract:
    - execute() returns only after the statement took effect
    - Transient failures raise ConnectivityError (or a configured
      equivalent) and are retried by the caller
    - Semantic failures raise any other exception and are never retried

How to change safely:
    - Protocol changes require updating all implementations
    - Keep introspect() and execute() async
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol, runtime_checkable

from ..schema.document import SchemaDocument


@runtime_checkable
class DesiredStateProvider(Protocol):
    """Source of the desired schema."""

    @abstractmethod
    def load(self) -> SchemaDocument:
        """Return the desired schema document."""
        ...


@runtime_checkable
class LiveStateProvider(Protocol):
    """Introspects the schema of a live database.

    Example:
        >>> live = await provider.introspect()
        >>> live.get_table("user")
    """

    @abstractmethod
    async def introspect(self) -> SchemaDocument:
        """Read the current schema of the live database.

        Raises:
            ConnectivityError: If the database cannot be reached
        """
        ...


@runtime_checkable
class StatementExecutor(Protocol):
    """Runs dialect statements against a live database."""

    @abstractmethod
    async def execute(self, statement: str) -> None:
        """Execute one statement.

        Args:
            statement: Full statement text, including the trailing ';'

        Raises:
            ConnectivityError: On transient connection failures
            StatementError: If the database rejects the statement
        """
        ...
