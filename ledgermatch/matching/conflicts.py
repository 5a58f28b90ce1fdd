"""4-tier duplicate/conflict detection for ledger uploads.

Tiers (evaluated in order, first match wins):
1. Exact: same date, normalized description and amount
2. High: near-identical description, same amount, same date window
3. Medium: moderately similar description and (same amount or dates
   within a short window)
4. Low: weakly similar description only

A candidate with no match is safe to add. Tier 1 matches are auto-skipped
unless auto_skip_exact is off, in which case they are reviewed like any
other conflict. Every verdict is a default: resolve() lets explicit
decisions override all of them, including auto-skips.

The analysis never writes. analyze_ledger() reads the target ledger and
lets read failures propagate, since treating an unreadable ledger as empty
would mark every candidate safe and reintroduce duplicates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import IntEnum

from ledgermatch.database.models import Record
from ledgermatch.database.store import LedgerReader, ReadFilter
from ledgermatch.matching.similarity import (
    DEFAULT_AMOUNT_TOLERANCE,
    amounts_equal,
    date_distance_days,
    dates_equal,
    normalize,
    similarity,
)

logger = logging.getLogger(__name__)

ADD = "add"
SKIP = "skip"
ACTIONS = frozenset({ADD, SKIP})


class MatchLevel(IntEnum):
    EXACT = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4

    @property
    def score(self) -> int:
        return _LEVEL_INFO[self][0]

    @property
    def reason(self) -> str:
        return _LEVEL_INFO[self][1]

    @property
    def default_action(self) -> str:
        return _LEVEL_INFO[self][2]


_LEVEL_INFO = {
    MatchLevel.EXACT: (100, "Exact duplicate (same date, description, and amount)", SKIP),
    MatchLevel.HIGH: (90, "Same amount and date, near-identical description", SKIP),
    MatchLevel.MEDIUM: (70, "Similar description, same amount or adjacent date", ADD),
    MatchLevel.LOW: (50, "Weakly similar description", ADD),
}


@dataclass(frozen=True)
class ConflictThresholds:
    """Tier cut-offs. Empirical values; recalibrate against labeled uploads."""
    high_similarity: int = 90
    medium_similarity: int = 75
    low_similarity: int = 60
    date_window_days: int = 1
    # None drops the date condition from tier 2.
    high_date_window_days: int | None = 0
    amount_tolerance: float = DEFAULT_AMOUNT_TOLERANCE


@dataclass(frozen=True)
class Candidate:
    """A candidate record and its position in the uploaded batch."""
    position: int
    record: Record


@dataclass(frozen=True)
class ConflictMatch:
    """A candidate paired with the existing records it resembles."""
    position: int
    new_record: Record
    possible_duplicates: tuple[Record, ...]
    match_level: MatchLevel
    match_score: int
    match_reason: str
    default_action: str


@dataclass(frozen=True)
class ConflictAnalysis:
    """Partition of a candidate batch. Advisory; nothing has been written."""
    ledger_name: str
    total_candidates: int
    safe_to_add: tuple[Candidate, ...]
    conflicts: tuple[ConflictMatch, ...]
    auto_skipped: tuple[ConflictMatch, ...]
    existing_records: tuple[Record, ...]
    dropped: tuple[Candidate, ...] = field(default=())

    def counts(self) -> dict[str, int]:
        return {
            "total": self.total_candidates,
            "safe_to_add": len(self.safe_to_add),
            "conflicts": len(self.conflicts),
            "auto_skipped": len(self.auto_skipped),
            "dropped": len(self.dropped),
            "existing": len(self.existing_records),
        }


class ConflictDetector:
    """Classify candidate records against a ledger's existing records."""

    def __init__(
        self,
        thresholds: ConflictThresholds | None = None,
        auto_skip_exact: bool = True,
    ):
        self.thresholds = thresholds or ConflictThresholds()
        self.auto_skip_exact = auto_skip_exact

    # ── Per-candidate matching ────────────────────────────

    def match_level(self, candidate: Record, existing: Record) -> MatchLevel | None:
        """Return the strongest tier at which candidate matches one existing record."""
        t = self.thresholds
        same_amount = amounts_equal(candidate.amount, existing.amount, t.amount_tolerance)

        if (
            same_amount
            and dates_equal(candidate.date, existing.date)
            and normalize(candidate.description) == normalize(existing.description)
        ):
            return MatchLevel.EXACT

        score = similarity(candidate.description, existing.description)
        if score < t.low_similarity:
            return None
        days = date_distance_days(candidate.date, existing.date)

        if score >= t.high_similarity and same_amount:
            if t.high_date_window_days is None or days <= t.high_date_window_days:
                return MatchLevel.HIGH
        if score >= t.medium_similarity and (same_amount or days <= t.date_window_days):
            return MatchLevel.MEDIUM
        return MatchLevel.LOW

    def find_best_match(
        self, position: int, candidate: Record, existing: Iterable[Record]
    ) -> ConflictMatch | None:
        """Best tier across all existing records, with every record at that tier."""
        best: MatchLevel | None = None
        matched: list[Record] = []
        for record in existing:
            level = self.match_level(candidate, record)
            if level is None:
                continue
            if best is None or level < best:
                best = level
                matched = [record]
            elif level == best:
                matched.append(record)

        if best is None:
            return None
        return ConflictMatch(
            position=position,
            new_record=candidate,
            possible_duplicates=tuple(matched),
            match_level=best,
            match_score=best.score,
            match_reason=best.reason,
            default_action=best.default_action,
        )

    # ── Batch analysis ────────────────────────────────────

    def analyze(
        self,
        ledger_name: str,
        existing: Iterable[Record],
        candidates: Iterable[Record],
    ) -> ConflictAnalysis:
        """Partition candidates into safe, conflicting and auto-skipped."""
        existing = tuple(existing)
        safe: list[Candidate] = []
        conflicts: list[ConflictMatch] = []
        auto_skipped: list[ConflictMatch] = []
        dropped: list[Candidate] = []
        total = 0

        for position, record in enumerate(candidates):
            if not record.is_valid_candidate():
                logger.debug("Dropping invalid row at position %d: %r", position, record)
                dropped.append(Candidate(position, record))
                continue
            total += 1

            match = self.find_best_match(position, record, existing)
            if match is None:
                safe.append(Candidate(position, record))
            elif self.auto_skip_exact and match.match_level is MatchLevel.EXACT:
                auto_skipped.append(match)
            else:
                conflicts.append(match)

        analysis = ConflictAnalysis(
            ledger_name=ledger_name,
            total_candidates=total,
            safe_to_add=tuple(safe),
            conflicts=tuple(conflicts),
            auto_skipped=tuple(auto_skipped),
            existing_records=existing,
            dropped=tuple(dropped),
        )
        logger.info("Conflict analysis for %s: %s", ledger_name, analysis.counts())
        return analysis

    def analyze_ledger(
        self,
        store: LedgerReader,
        ledger_name: str,
        candidates: Iterable[Record],
    ) -> ConflictAnalysis:
        """Read the ledger's existing records, then analyze.

        LedgerReadError from the store propagates to the caller.
        """
        existing = store.read_ledger(ledger_name, ReadFilter.ALL, order_by_date=True)
        return self.analyze(ledger_name, existing, candidates)


# ── Decisions ─────────────────────────────────────────────


def initialize_default_decisions(conflicts: Iterable[ConflictMatch]) -> dict[int, str]:
    """Map each conflict's batch position to its tier's default action."""
    return {c.position: c.default_action for c in conflicts}


def unresolved_conflict_count(
    conflicts: Iterable[ConflictMatch], decisions: Mapping[int, str]
) -> int:
    """Count conflicts without an explicit decision."""
    return sum(1 for c in conflicts if c.position not in decisions)


def resolve(analysis: ConflictAnalysis, decisions: Mapping[int, str]) -> list[Record]:
    """Return the records to persist, in batch order.

    Safe candidates default to add, conflicts to their tier's default and
    auto-skipped candidates to skip; an explicit decision overrides any of
    these. Performs no writes.
    """
    for position, action in decisions.items():
        if action not in ACTIONS:
            raise ValueError(f"Unknown decision '{action}' for position {position}")

    chosen: list[tuple[int, Record]] = []
    for cand in analysis.safe_to_add:
        if decisions.get(cand.position, ADD) == ADD:
            chosen.append((cand.position, cand.record))
    for match in analysis.conflicts:
        if decisions.get(match.position, match.default_action) == ADD:
            chosen.append((match.position, match.new_record))
    for match in analysis.auto_skipped:
        if decisions.get(match.position, SKIP) == ADD:
            chosen.append((match.position, match.new_record))

    chosen.sort(key=lambda pair: pair[0])
    return [record for _, record in chosen]
