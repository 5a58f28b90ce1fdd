"""Historical evidence for category suggestions.

Stage A discovers every ledger in the account and Stage B reads the
categorized rows from each of them. The same merchant recurs across banks
and months, so history is never limited to the target ledger.

Both stages degrade instead of failing: a store that cannot list ledgers
yields no history, and a ledger that cannot be read is logged and skipped.
Categorization is best-effort and must never block an upload.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed

from ledgermatch.database.models import Record
from ledgermatch.database.store import ReadFilter

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4


def discover_ledgers(store) -> list[str]:
    """Return every related ledger name, or [] when listing is unavailable."""
    lister = getattr(store, "list_related_ledgers", None)
    if lister is None:
        logger.warning(
            "Store %s cannot list ledgers; categorizing without history",
            type(store).__name__,
        )
        return []
    try:
        names = list(lister())
    except Exception as e:
        logger.warning("Ledger listing failed, categorizing without history: %s", e)
        return []
    logger.info("Found %d ledger(s) for category history", len(names))
    return names


def fetch_history(
    store,
    ledger_names: Sequence[str],
    concurrency: int = DEFAULT_CONCURRENCY,
    on_ledger_done: Callable[[str, int, int], None] | None = None,
) -> list[Record]:
    """Read categorized records from every ledger with bounded fan-out.

    Each record is tagged with the ledger it was read from (unless it
    already carries a source tag). The result follows ledger_names order
    regardless of completion order and holds each tagged identity once.

    on_ledger_done(ledger_name, completed, total) is called as each read
    finishes, successfully or not.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be a positive integer")
    if not ledger_names:
        return []

    per_ledger: dict[str, list[Record]] = {}
    total = len(ledger_names)
    completed = 0

    with ThreadPoolExecutor(max_workers=min(concurrency, total)) as pool:
        futures = {
            pool.submit(store.read_ledger, name, ReadFilter.CATEGORIZED): name
            for name in ledger_names
        }
        for future in as_completed(futures):
            name = futures[future]
            completed += 1
            try:
                rows = future.result()
            except Exception as e:
                logger.warning("Could not fetch from ledger '%s': %s", name, e)
            else:
                per_ledger[name] = rows
                logger.debug("Found %d categorized records in '%s'", len(rows), name)
            if on_ledger_done is not None:
                on_ledger_done(name, completed, total)

    history: list[Record] = []
    seen: set[tuple] = set()
    for name in ledger_names:
        for record in per_ledger.get(name, ()):
            if record.source_ledger is None:
                record = record.with_changes(source_ledger=name)
            key = record.tagged_identity()
            if key in seen:
                continue
            seen.add(key)
            history.append(record)

    logger.info(
        "Fetched %d categorized records from %d/%d ledger(s)",
        len(history), len(per_ledger), total,
    )
    return history
