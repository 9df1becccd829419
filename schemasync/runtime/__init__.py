"""
Runtime collaborators: provider/executor protocols, retry policy, and the
in-memory and file-backed implementations.
"""

from .base import DesiredStateProvider, LiveStateProvider, StatementExecutor
from .files import FileStateProvider, StaticStateProvider
from .memory import InMemoryDatabase
from .retry import DEFAULT_RETRYABLE, RetryPolicy, call_with_retry

__all__ = [
    "DEFAULT_RETRYABLE",
    "DesiredStateProvider",
    "FileStateProvider",
    "InMemoryDatabase",
    "LiveStateProvider",
    "RetryPolicy",
    "StatementExecutor",
    "StaticStateProvider",
    "call_with_retry",
]
