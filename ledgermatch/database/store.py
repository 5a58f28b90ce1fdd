"""Collaborator contracts for ledger persistence.

The matching code never talks to a database directly. It reads, lists and
writes ledgers through these three capabilities; Repository implements all
of them over SQLite, and tests substitute fakes.
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol, runtime_checkable

from .models import Record


class LedgerError(Exception):
    """Base class for persistence collaborator failures."""


class LedgerUnavailableError(LedgerError):
    """Raised when the set of related ledgers cannot be listed."""


class LedgerReadError(LedgerError):
    """Raised when a ledger's records cannot be read."""

    def __init__(self, ledger_name: str, reason: str = ""):
        self.ledger_name = ledger_name
        self.reason = reason
        message = f"Could not read ledger '{ledger_name}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class LedgerWriteError(LedgerError):
    """Raised when inserting or updating ledger records fails."""

    def __init__(self, ledger_name: str, record_id: int | None = None, reason: str = ""):
        self.ledger_name = ledger_name
        self.record_id = record_id
        self.reason = reason
        message = f"Write to ledger '{ledger_name}' failed"
        if record_id is not None:
            message += f" for record {record_id}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ReadFilter(Enum):
    ALL = "all"
    # Category present and not a placeholder value.
    CATEGORIZED = "categorized"


@runtime_checkable
class LedgerLister(Protocol):
    def list_related_ledgers(self) -> list[str]: ...


@runtime_checkable
class LedgerReader(Protocol):
    def read_ledger(
        self,
        name: str,
        filter: ReadFilter = ReadFilter.ALL,
        order_by_date: bool = False,
    ) -> list[Record]: ...


@runtime_checkable
class LedgerWriter(Protocol):
    def insert_records(self, ledger_name: str, records: list[Record]) -> list[int]: ...

    def update_category(self, ledger_name: str, record_id: int, category: str) -> bool: ...
