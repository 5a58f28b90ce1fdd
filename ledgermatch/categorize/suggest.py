"""Category suggestions from historical, already-categorized records.

Each new record is scored against every categorized record in every
related ledger:

  score = similarity(description) + amount bonus + recency bonus, max 100

Normalized-equal descriptions short-circuit to 100 ("exact"). The best
pair decides the suggestion and its reason:

  exact    normalized descriptions equal                 -> 100
  high     score above high_cutoff                       -> score
  amount   equal amounts, weak text (30 <= sim < 50)     -> at least 50
  partial  score at or above partial_cutoff              -> score
  none     anything weaker; 0 when nothing matched

Records that already carry a meaningful category are never second-guessed:
they come back as 100/"exact" with no comparison.

All weights are empirical and live in CategoryWeights so they can be
overridden from config and recalibrated against labeled data.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from ledgermatch.categorize.history import (
    DEFAULT_CONCURRENCY,
    discover_ledgers,
    fetch_history,
)
from ledgermatch.database.models import PLACEHOLDER_CATEGORIES, Record
from ledgermatch.matching.similarity import (
    DEFAULT_AMOUNT_TOLERANCE,
    amounts_equal,
    date_distance_days,
    normalize,
    similarity,
)

logger = logging.getLogger(__name__)

UNKNOWN_CATEGORY = "Unknown"

EXACT = "exact"
HIGH = "high"
PARTIAL = "partial"
AMOUNT = "amount"
NONE = "none"


@dataclass(frozen=True)
class CategoryWeights:
    amount_bonus: int = 15
    recent_bonus: int = 10
    recent_days: int = 31
    year_bonus: int = 5
    year_days: int = 365
    high_cutoff: int = 85
    partial_cutoff: int = 50
    amount_min_similarity: int = 30
    amount_floor: int = 50
    accept_cutoff: int = 85
    top_matches: int = 5
    amount_tolerance: float = DEFAULT_AMOUNT_TOLERANCE


@dataclass(frozen=True)
class ScoredMatch:
    record: Record
    score: int
    reason: str


@dataclass(frozen=True)
class CategoryMatch:
    """Suggestion for one candidate, with the historical evidence behind it."""
    position: int
    new_record: Record
    suggested_category: str
    confidence: int
    similar_records: tuple[Record, ...]
    match_reason: str
    already_categorized: bool = False


@dataclass(frozen=True)
class CategoryStats:
    high_confidence: int = 0
    medium_confidence: int = 0
    low_confidence: int = 0
    no_match: int = 0
    already_categorized: int = 0


@dataclass(frozen=True)
class CategoryAnalysis:
    ledger_name: str
    matches: tuple[CategoryMatch, ...]
    stats: CategoryStats
    available_categories: tuple[str, ...]
    history_size: int = 0


@dataclass(frozen=True)
class CategoryProgress:
    """Snapshot handed to the progress observer."""
    stage: str  # "discovering", "fetching", "analyzing", "complete"
    message: str
    current: int
    total: int
    current_ledger: str | None = None
    timings: dict[str, float] = field(default_factory=dict)


ProgressObserver = Callable[[CategoryProgress], None]


# ── Scoring ───────────────────────────────────────────────


def combine_score(
    text_similarity: int,
    amount_match: bool,
    days_apart: int,
    weights: CategoryWeights = CategoryWeights(),
) -> tuple[int, str]:
    """Turn the raw evidence for one pair into (score, reason).

    Does not handle the exact short-circuit; see score_pair().
    """
    score = text_similarity
    if amount_match:
        score += weights.amount_bonus
    if days_apart <= weights.recent_days:
        score += weights.recent_bonus
    elif days_apart <= weights.year_days:
        score += weights.year_bonus
    score = min(100, score)

    if score > weights.high_cutoff:
        return score, HIGH
    if (
        amount_match
        and weights.amount_min_similarity <= text_similarity < weights.partial_cutoff
    ):
        return max(score, weights.amount_floor), AMOUNT
    if score >= weights.partial_cutoff:
        return score, PARTIAL
    return score, NONE


def score_pair(
    candidate: Record,
    historical: Record,
    weights: CategoryWeights = CategoryWeights(),
) -> ScoredMatch:
    norm = normalize(candidate.description)
    if norm and norm == normalize(historical.description):
        return ScoredMatch(historical, 100, EXACT)
    score, reason = combine_score(
        similarity(candidate.description, historical.description),
        amounts_equal(candidate.amount, historical.amount, weights.amount_tolerance),
        date_distance_days(candidate.date, historical.date),
        weights,
    )
    return ScoredMatch(historical, score, reason)


def find_best_category_match(
    position: int,
    candidate: Record,
    history: Sequence[Record],
    weights: CategoryWeights = CategoryWeights(),
) -> CategoryMatch:
    """Score candidate against all history and keep the top matches as evidence."""
    scored = [score_pair(candidate, h, weights) for h in history]
    scored = [s for s in scored if s.score > 0]
    # sorted() is stable, so ties keep history order.
    scored = sorted(scored, key=lambda s: s.score, reverse=True)[: weights.top_matches]

    if not scored:
        return CategoryMatch(
            position=position,
            new_record=candidate,
            suggested_category=UNKNOWN_CATEGORY,
            confidence=0,
            similar_records=(),
            match_reason=NONE,
        )

    best = scored[0]
    return CategoryMatch(
        position=position,
        new_record=candidate,
        suggested_category=best.record.category or UNKNOWN_CATEGORY,
        confidence=best.score,
        similar_records=tuple(s.record for s in scored),
        match_reason=best.reason,
    )


# ── Engine ────────────────────────────────────────────────


class CategoryEngine:
    """Suggest categories for new records from all related ledgers."""

    def __init__(
        self,
        store,
        weights: CategoryWeights | None = None,
        placeholders: Iterable[str] = PLACEHOLDER_CATEGORIES,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        self.store = store
        self.weights = weights or CategoryWeights()
        self.placeholders = tuple(placeholders)
        self.concurrency = concurrency

    def analyze(
        self,
        ledger_name: str,
        candidates: Iterable[Record],
        on_progress: ProgressObserver | None = None,
    ) -> CategoryAnalysis:
        candidates = list(candidates)
        started = time.monotonic()
        timings: dict[str, float] = {}

        def report(stage, message, current, total, ledger=None):
            if on_progress is not None:
                on_progress(CategoryProgress(
                    stage=stage, message=message, current=current,
                    total=total, current_ledger=ledger, timings=dict(timings),
                ))

        # Stage A: discover ledgers
        report("discovering", "Discovering ledgers...", 0, 1)
        stage_start = time.monotonic()
        ledgers = discover_ledgers(self.store)
        timings["discovering"] = time.monotonic() - stage_start

        # Stage B: fetch categorized history
        report(
            "fetching",
            f"Found {len(ledgers)} ledgers. Fetching categorized records...",
            0, len(ledgers),
        )
        stage_start = time.monotonic()
        history = fetch_history(
            self.store, ledgers, self.concurrency,
            on_ledger_done=lambda name, done, total: report(
                "fetching", f"Fetched {name}", done, total, name,
            ),
        )
        history = [h for h in history if h.has_category(self.placeholders)]
        timings["fetching"] = time.monotonic() - stage_start

        available = tuple(sorted({h.category for h in history}))

        # Stage C/D: already-categorized short-circuit, then scoring
        report(
            "analyzing",
            f"Analyzing {len(candidates)} records against {len(history)} historical records...",
            0, len(candidates),
        )
        stage_start = time.monotonic()
        matches: list[CategoryMatch] = []
        for position, record in enumerate(candidates):
            if record.has_category(self.placeholders):
                match = CategoryMatch(
                    position=position,
                    new_record=record,
                    suggested_category=record.category,
                    confidence=100,
                    similar_records=(),
                    match_reason=EXACT,
                    already_categorized=True,
                )
            else:
                match = find_best_category_match(position, record, history, self.weights)
            matches.append(match)
            report(
                "analyzing",
                f"Analyzed {position + 1}/{len(candidates)}: {str(record.description)[:40]}",
                position + 1, len(candidates),
            )
        timings["analyzing"] = time.monotonic() - stage_start
        timings["total"] = time.monotonic() - started

        stats = self._stats(matches)
        report(
            "complete",
            f"Analysis complete: {stats.high_confidence} high, "
            f"{stats.medium_confidence} medium confidence",
            len(candidates), len(candidates),
        )
        logger.info(
            "Category analysis for %s: %d records, %d historical, %.2fs",
            ledger_name, len(candidates), len(history), timings["total"],
        )
        return CategoryAnalysis(
            ledger_name=ledger_name,
            matches=tuple(matches),
            stats=stats,
            available_categories=available,
            history_size=len(history),
        )

    def _stats(self, matches: Sequence[CategoryMatch]) -> CategoryStats:
        high = medium = low = none = already = 0
        for m in matches:
            if m.already_categorized:
                already += 1
                high += 1
            elif m.confidence > self.weights.high_cutoff:
                high += 1
            elif m.confidence >= self.weights.partial_cutoff:
                medium += 1
            elif m.confidence > 0:
                low += 1
            else:
                none += 1
        return CategoryStats(
            high_confidence=high,
            medium_confidence=medium,
            low_confidence=low,
            no_match=none,
            already_categorized=already,
        )
