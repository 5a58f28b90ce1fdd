"""Tests for category scoring and the suggestion engine."""

from datetime import date

import pytest

from ledgermatch.categorize.suggest import (
    AMOUNT,
    EXACT,
    HIGH,
    NONE,
    PARTIAL,
    UNKNOWN_CATEGORY,
    CategoryEngine,
    CategoryWeights,
    combine_score,
    find_best_category_match,
    score_pair,
)
from ledgermatch.database.models import Record
from ledgermatch.database.repository import DEFAULT_MIGRATIONS_DIR, Repository
from ledgermatch.database.store import LedgerReadError, LedgerUnavailableError, ReadFilter
from ledgermatch.matching.similarity import UNKNOWN_DATE_DISTANCE


def _rec(description="Spotify AB", amount=-119.0, date="2025-04-28", **kw) -> Record:
    return Record(description=description, amount=amount, date=date, **kw)


class FakeStore:
    """In-memory store; ledgers listed in `failing` raise on read."""

    def __init__(self, ledgers, failing=()):
        self.ledgers = ledgers
        self.failing = set(failing)

    def list_related_ledgers(self):
        return list(self.ledgers)

    def read_ledger(self, name, filter=ReadFilter.ALL, order_by_date=False):
        if name in self.failing:
            raise LedgerReadError(name, "timeout")
        rows = self.ledgers.get(name, [])
        if filter is ReadFilter.CATEGORIZED:
            rows = [r for r in rows if r.has_category()]
        return list(rows)


class UnlistableStore(FakeStore):
    def list_related_ledgers(self):
        raise LedgerUnavailableError("rpc missing")


@pytest.fixture
def repo():
    r = Repository(":memory:")
    r.apply_migrations(DEFAULT_MIGRATIONS_DIR)
    yield r
    r.close()


# ── combine_score ─────────────────────────────────────────


class TestCombineScore:
    def test_amount_rescues_weak_text(self):
        assert combine_score(35, True, UNKNOWN_DATE_DISTANCE) == (50, AMOUNT)

    def test_amount_with_recency_keeps_higher_score(self):
        assert combine_score(35, True, 10) == (60, AMOUNT)

    def test_text_below_amount_minimum(self):
        assert combine_score(25, True, UNKNOWN_DATE_DISTANCE) == (40, NONE)

    def test_high(self):
        assert combine_score(80, True, UNKNOWN_DATE_DISTANCE) == (95, HIGH)

    def test_high_cutoff_is_exclusive(self):
        assert combine_score(86, False, UNKNOWN_DATE_DISTANCE) == (86, HIGH)
        assert combine_score(85, False, UNKNOWN_DATE_DISTANCE) == (85, PARTIAL)

    def test_capped_at_100(self):
        assert combine_score(90, True, 5) == (100, HIGH)

    def test_year_bonus(self):
        assert combine_score(60, False, 100) == (65, PARTIAL)

    def test_recent_bonus_makes_partial(self):
        assert combine_score(40, False, 5) == (50, PARTIAL)

    def test_none(self):
        assert combine_score(20, False, UNKNOWN_DATE_DISTANCE) == (20, NONE)

    def test_custom_weights(self):
        weights = CategoryWeights(amount_bonus=30, high_cutoff=70)
        assert combine_score(45, True, UNKNOWN_DATE_DISTANCE, weights) == (75, HIGH)


# ── score_pair / find_best_category_match ─────────────────


class TestScorePair:
    def test_normalized_equal_is_exact(self):
        scored = score_pair(_rec("SPOTIFY  AB"), _rec("Spotify AB", -99.0, None))
        assert (scored.score, scored.reason) == (100, EXACT)

    def test_empty_descriptions_are_not_exact(self):
        scored = score_pair(_rec("", 10.0, None), _rec("", 20.0, None))
        assert scored.reason != EXACT

    def test_amount_reason(self, monkeypatch):
        monkeypatch.setattr("ledgermatch.categorize.suggest.similarity", lambda a, b: 35)
        scored = score_pair(
            _rec("Unusual Merchant Co", -250.0, None),
            _rec("Hemköp Odenplan", -250.0, None, category="Groceries"),
        )
        assert (scored.score, scored.reason) == (50, AMOUNT)


class TestFindBestCategoryMatch:
    def test_no_history(self):
        match = find_best_category_match(0, _rec(), [])
        assert match.suggested_category == UNKNOWN_CATEGORY
        assert match.confidence == 0
        assert match.match_reason == NONE
        assert match.similar_records == ()

    def test_best_score_decides(self):
        history = [
            _rec("NETFLIX", -149.0, "2024-01-01", category="Streaming"),
            _rec("Spotify AB", -119.0, "2025-03-28", category="Entertainment"),
        ]
        match = find_best_category_match(0, _rec("SPOTIFY AB", -119.0, "2025-04-28"), history)
        assert match.suggested_category == "Entertainment"
        assert match.confidence == 100
        assert match.similar_records[0] is history[1]

    def test_keeps_top_five_evidence(self):
        history = [
            _rec(f"ICA NARA {i}", -50.0 - i, None, category="Groceries") for i in range(8)
        ]
        match = find_best_category_match(0, _rec("ICA NARA", -1.0, None), history)
        assert len(match.similar_records) == 5
        assert match.suggested_category == "Groceries"

    def test_ties_keep_history_order(self):
        first = _rec("SPOTIFY AB", -119.0, None, category="Entertainment")
        second = _rec("SPOTIFY AB", -119.0, None, category="Music")
        match = find_best_category_match(0, _rec("Spotify AB", -119.0, None), [first, second])
        assert match.suggested_category == "Entertainment"
        assert match.similar_records == (first, second)


# ── Engine ────────────────────────────────────────────────


class TestCategoryEngine:
    def test_history_across_ledgers(self, repo):
        repo.insert_records("AM_202504", [
            _rec("Spotify AB", -119.0, "2025-04-28", category="Entertainment"),
            _rec("ICA NARA", -87.0, "2025-04-29", category="Groceries"),
        ])
        repo.insert_records("AM_202505", [_rec("SPOTIFY AB", -119.0, "2025-05-28")])

        pending = repo.get_uncategorized_records("AM_202505")
        analysis = CategoryEngine(repo).analyze("AM_202505", pending)

        match = analysis.matches[0]
        assert match.suggested_category == "Entertainment"
        assert match.confidence == 100
        assert match.match_reason == EXACT
        assert match.similar_records[0].source_ledger == "AM_202504"
        assert match.new_record.id == 1
        assert analysis.available_categories == ("Entertainment", "Groceries")
        assert analysis.history_size == 2

    def test_amount_only_evidence(self, monkeypatch):
        monkeypatch.setattr("ledgermatch.categorize.suggest.similarity", lambda a, b: 35)
        store = FakeStore({
            "HB_2024": [_rec("Hemköp Odenplan", -250.0, None, category="Groceries")],
        })
        analysis = CategoryEngine(store).analyze("HB_2025", [_rec("Unusual Merchant Co", -250.0, None)])
        match = analysis.matches[0]
        assert (match.suggested_category, match.confidence, match.match_reason) == (
            "Groceries", 50, AMOUNT,
        )

    def test_no_related_ledgers(self):
        analysis = CategoryEngine(FakeStore({})).analyze("HB_2025", [_rec(), _rec("NETFLIX")])
        assert analysis.available_categories == ()
        for match in analysis.matches:
            assert (match.suggested_category, match.confidence, match.match_reason) == (
                UNKNOWN_CATEGORY, 0, NONE,
            )
        assert analysis.stats.no_match == 2

    def test_listing_failure_degrades(self):
        store = UnlistableStore({"HB_2024": [_rec(category="Entertainment")]})
        analysis = CategoryEngine(store).analyze("HB_2025", [_rec()])
        assert analysis.matches[0].suggested_category == UNKNOWN_CATEGORY
        assert analysis.history_size == 0

    def test_store_without_listing_degrades(self):
        class ReadOnly:
            def read_ledger(self, name, filter=ReadFilter.ALL, order_by_date=False):
                return []

        analysis = CategoryEngine(ReadOnly()).analyze("HB_2025", [_rec()])
        assert analysis.matches[0].confidence == 0

    def test_failed_ledger_skipped(self):
        store = FakeStore(
            {
                "HB_2024": [_rec("NETFLIX", -149.0, category="Streaming")],
                "AM_2024": [_rec(category="Entertainment")],
            },
            failing={"AM_2024"},
        )
        analysis = CategoryEngine(store).analyze("HB_2025", [_rec("NETFLIX", -149.0)])
        assert analysis.matches[0].suggested_category == "Streaming"
        assert analysis.available_categories == ("Streaming",)

    def test_already_categorized_short_circuits(self):
        store = FakeStore({"HB_2024": [_rec(category="Music")]})
        analysis = CategoryEngine(store).analyze(
            "HB_2025", [_rec(category="Entertainment", id=7)],
        )
        match = analysis.matches[0]
        assert match.already_categorized
        assert (match.suggested_category, match.confidence, match.match_reason) == (
            "Entertainment", 100, EXACT,
        )
        assert match.similar_records == ()
        assert analysis.stats.already_categorized == 1
        assert analysis.stats.high_confidence == 1

    def test_already_categorized_without_history(self):
        analysis = CategoryEngine(FakeStore({})).analyze("HB_2025", [_rec(category="Rent")])
        assert analysis.matches[0].confidence == 100

    def test_placeholder_history_ignored(self):
        store = FakeStore({
            "HB_2024": [
                _rec(category="Okategoriserad"),
                _rec("NETFLIX", -149.0, category="Streaming"),
            ],
        })
        engine = CategoryEngine(store, placeholders=("Unknown", "Okategoriserad", ""))
        analysis = engine.analyze("HB_2025", [_rec()])
        assert "Okategoriserad" not in analysis.available_categories
        assert analysis.matches[0].suggested_category != "Okategoriserad"

    def test_placeholder_candidate_is_scored(self):
        store = FakeStore({"HB_2024": [_rec(category="Entertainment")]})
        analysis = CategoryEngine(store).analyze("HB_2025", [_rec(category="Uncategorized")])
        match = analysis.matches[0]
        assert not match.already_categorized
        assert match.suggested_category == "Entertainment"

    def test_matches_follow_input_order(self):
        store = FakeStore({"HB_2024": [_rec(category="Entertainment")]})
        candidates = [_rec("NETFLIX"), _rec(), _rec("HEMKÖP")]
        analysis = CategoryEngine(store).analyze("HB_2025", candidates)
        assert [m.position for m in analysis.matches] == [0, 1, 2]
        assert [m.new_record for m in analysis.matches] == candidates

    def test_progress_stages(self):
        events = []
        store = FakeStore({
            "HB_2024": [_rec(category="Entertainment")],
            "AM_2024": [_rec("NETFLIX", category="Streaming")],
        })
        CategoryEngine(store).analyze("HB_2025", [_rec(), _rec("NETFLIX")], events.append)

        stages = [e.stage for e in events]
        assert stages[0] == "discovering"
        assert stages[-1] == "complete"
        assert stages.index("fetching") < stages.index("analyzing")
        fetched = [e for e in events if e.stage == "fetching" and e.current_ledger]
        assert sorted(e.current_ledger for e in fetched) == ["AM_2024", "HB_2024"]
        assert fetched[-1].current == 2
        assert "total" not in events[0].timings
        assert {"discovering", "fetching", "analyzing"} <= set(events[-1].timings)

    def test_stats_buckets(self):
        store = FakeStore({"HB_2024": [_rec(category="Entertainment")]})
        candidates = [_rec(), _rec("NETFLIX", -5.0, None), _rec(category="Rent")]
        stats = CategoryEngine(store).analyze("HB_2025", candidates).stats
        assert stats.high_confidence == 2
        assert stats.already_categorized == 1
        assert stats.high_confidence + stats.medium_confidence + stats.low_confidence + stats.no_match == 3

    def test_date_objects_in_candidates(self):
        store = FakeStore({"HB_2024": [_rec(category="Entertainment")]})
        events = []
        candidate = _rec("SPOTIFY AB", date=date(2025, 5, 28))
        analysis = CategoryEngine(store).analyze("HB_2025", [candidate], events.append)
        assert analysis.matches[0].suggested_category == "Entertainment"
        assert events[-1].stage == "complete"
