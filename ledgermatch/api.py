"""Public entry points for reconciling uploads and suggesting categories.

Typical flow for one upload:

    analysis = detect_conflicts_in_store(repo, "HB_2025", parsed_rows)
    decisions = initialize_default_decisions(analysis.conflicts)
    # ... a reviewer flips some decisions ...
    ids = commit_resolved(repo, analysis, decisions)

    new_rows = [repo.get_record("HB_2025", i) for i in ids]
    suggestions = suggest_categories(repo, "HB_2025", new_rows)
    result = apply_category_decisions(
        repo, "HB_2025", initialize_decisions(suggestions.matches)
    )
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from ledgermatch.categorize.decisions import (
    CategoryApplyResult,
    CategoryDecision,
    initialize_decisions,
)
from ledgermatch.categorize.decisions import (
    apply_category_decisions as _apply_category_decisions,
)
from ledgermatch.categorize.history import DEFAULT_CONCURRENCY
from ledgermatch.categorize.suggest import (
    CategoryAnalysis,
    CategoryEngine,
    CategoryWeights,
    ProgressObserver,
)
from ledgermatch.database.models import PLACEHOLDER_CATEGORIES, Record
from ledgermatch.database.store import LedgerReader, LedgerWriter
from ledgermatch.matching.conflicts import (
    ConflictAnalysis,
    ConflictDetector,
    ConflictThresholds,
    initialize_default_decisions,
    resolve,
)

logger = logging.getLogger(__name__)

__all__ = [
    "apply_category_decisions",
    "commit_resolved",
    "detect_conflicts",
    "detect_conflicts_in_store",
    "initialize_decisions",
    "initialize_default_decisions",
    "resolve_conflicts",
    "suggest_categories",
]


def detect_conflicts(
    ledger_name: str,
    existing: Iterable[Record],
    candidates: Iterable[Record],
    *,
    thresholds: ConflictThresholds | None = None,
    auto_skip_exact: bool = True,
) -> ConflictAnalysis:
    """Classify candidates against records the caller already fetched."""
    detector = ConflictDetector(thresholds, auto_skip_exact=auto_skip_exact)
    return detector.analyze(ledger_name, existing, candidates)


def detect_conflicts_in_store(
    store: LedgerReader,
    ledger_name: str,
    candidates: Iterable[Record],
    *,
    thresholds: ConflictThresholds | None = None,
    auto_skip_exact: bool = True,
) -> ConflictAnalysis:
    """Read the ledger and classify candidates. Read errors propagate."""
    detector = ConflictDetector(thresholds, auto_skip_exact=auto_skip_exact)
    return detector.analyze_ledger(store, ledger_name, candidates)


def resolve_conflicts(
    analysis: ConflictAnalysis, decisions: Mapping[int, str]
) -> list[Record]:
    """Records to insert after applying decisions (keyed by batch position)."""
    return resolve(analysis, decisions)


def commit_resolved(
    store: LedgerWriter,
    analysis: ConflictAnalysis,
    decisions: Mapping[int, str],
) -> list[int]:
    """Resolve and insert the accepted records into the analysed ledger."""
    records = resolve(analysis, decisions)
    if not records:
        logger.info("Nothing to insert into %s", analysis.ledger_name)
        return []
    return store.insert_records(analysis.ledger_name, records)


def suggest_categories(
    store,
    ledger_name: str,
    candidates: Iterable[Record],
    on_progress: ProgressObserver | None = None,
    *,
    weights: CategoryWeights | None = None,
    placeholders: Iterable[str] = PLACEHOLDER_CATEGORIES,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> CategoryAnalysis:
    engine = CategoryEngine(
        store, weights=weights, placeholders=placeholders, concurrency=concurrency,
    )
    return engine.analyze(ledger_name, candidates, on_progress)


def apply_category_decisions(
    store: LedgerWriter,
    ledger_name: str,
    decisions: Mapping[int, CategoryDecision] | Iterable[CategoryDecision],
) -> CategoryApplyResult:
    return _apply_category_decisions(store, ledger_name, decisions)
