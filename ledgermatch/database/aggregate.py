"""Copy new records from a bank ledger into an aggregated ledger.

An aggregated ledger (e.g. all Swedish accounts for a year) holds copies of
rows from several bank ledgers. A source row is new when no target row has
the same (date, description, amount) identity. Copies are tagged with the
source ledger name.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .models import Record
from .store import ReadFilter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncPreview:
    source_ledger: str
    target_ledger: str
    new_records: tuple[Record, ...]
    total_amount: float
    date_from: str
    date_to: str

    @property
    def total_new(self) -> int:
        return len(self.new_records)


def preview_sync(store, source_ledger: str, target_ledger: str) -> SyncPreview:
    """List source records missing from the target, oldest first."""
    source = store.read_ledger(source_ledger, ReadFilter.ALL, order_by_date=True)
    target = store.read_ledger(target_ledger, ReadFilter.ALL)
    existing = {r.identity() for r in target}

    new_records = []
    for record in source:
        if record.identity() in existing:
            continue
        new_records.append(record.with_changes(id=None, source_ledger=source_ledger))

    dates = sorted(r.date for r in new_records if r.date)
    total = sum(r.amount for r in new_records if r.amount is not None)
    logger.info(
        "Sync preview %s -> %s: %d new record(s)",
        source_ledger, target_ledger, len(new_records),
    )
    return SyncPreview(
        source_ledger=source_ledger,
        target_ledger=target_ledger,
        new_records=tuple(new_records),
        total_amount=round(total, 2),
        date_from=dates[0] if dates else "",
        date_to=dates[-1] if dates else "",
    )


def execute_sync(store, preview: SyncPreview) -> list[int]:
    """Insert the previewed records into the target ledger."""
    if not preview.new_records:
        return []
    ids = store.insert_records(preview.target_ledger, list(preview.new_records))
    logger.info(
        "Copied %d record(s) from %s into %s",
        len(ids), preview.source_ledger, preview.target_ledger,
    )
    return ids
