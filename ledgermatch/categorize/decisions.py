"""Category decisions: defaults for review and applying the outcome.

Decisions are keyed by the candidate's batch position. The ledger record id
is a separate field and is None until the candidate has been persisted;
only persisted records can be written to.

Applying is a sequence of independent per-record updates, not a
transaction. The first failed update stops the batch; updates made before
it stay committed and are reported. Re-running the same decisions only
writes the same categories again.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from ledgermatch.categorize.suggest import CategoryMatch
from ledgermatch.database.models import PLACEHOLDER_CATEGORIES
from ledgermatch.database.store import LedgerWriter

logger = logging.getLogger(__name__)

ACCEPT = "accept"
EDIT = "edit"
SKIP = "skip"
ACTIONS = frozenset({ACCEPT, EDIT, SKIP})

DEFAULT_ACCEPT_CUTOFF = 85


@dataclass(frozen=True)
class CategoryDecision:
    record_id: int | None
    category: str
    action: str  # "accept", "edit" or "skip"
    position: int | None = None


@dataclass(frozen=True)
class CategoryApplyResult:
    updated_count: int
    failed_record_id: int | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.failed_record_id is None and self.error is None


def initialize_decisions(
    matches: Iterable[CategoryMatch],
    placeholders: Iterable[str] = PLACEHOLDER_CATEGORIES,
    accept_cutoff: int = DEFAULT_ACCEPT_CUTOFF,
) -> dict[int, CategoryDecision]:
    """Default decision per batch position: accept above the cutoff, else skip.

    Records that already carry a meaningful category have nothing to
    decide and are left out.
    """
    placeholders = tuple(placeholders)
    decisions: dict[int, CategoryDecision] = {}
    for match in matches:
        if match.already_categorized or match.new_record.has_category(placeholders):
            continue
        decisions[match.position] = CategoryDecision(
            record_id=match.new_record.id,
            category=match.suggested_category,
            action=ACCEPT if match.confidence > accept_cutoff else SKIP,
            position=match.position,
        )
    return decisions


def _describe(d: CategoryDecision) -> str:
    if d.record_id is not None:
        return f"record {d.record_id}"
    return f"position {d.position}"


def _validate(decisions: list[CategoryDecision]) -> None:
    for d in decisions:
        if d.action not in ACTIONS:
            raise ValueError(f"Unknown action '{d.action}' for {_describe(d)}")
        if d.action == SKIP:
            continue
        if not (d.category and d.category.strip()):
            raise ValueError(f"Decision '{d.action}' for {_describe(d)} has no category")
        if d.record_id is None:
            raise ValueError(
                f"Decision '{d.action}' for {_describe(d)} has no record id;"
                " persist the record before applying its category"
            )


def apply_category_decisions(
    store: LedgerWriter,
    ledger_name: str,
    decisions: Mapping[int, CategoryDecision] | Iterable[CategoryDecision],
) -> CategoryApplyResult:
    """Write the category of every non-skip decision, in order.

    Invalid decisions, including non-skip decisions for records that have
    no id yet, raise ValueError before anything is written. A write that
    fails (returns False or raises) aborts the rest; the result reports how
    many updates landed and which record failed.
    """
    if isinstance(decisions, Mapping):
        decisions = list(decisions.values())
    else:
        decisions = list(decisions)
    _validate(decisions)

    updated = 0
    for decision in decisions:
        if decision.action == SKIP:
            continue
        category = decision.category.strip()
        try:
            ok = store.update_category(ledger_name, decision.record_id, category)
        except Exception as e:
            logger.error(
                "Error updating record %s in %s: %s", decision.record_id, ledger_name, e
            )
            return CategoryApplyResult(updated, decision.record_id, str(e) or type(e).__name__)
        if not ok:
            logger.error(
                "Update of record %s in %s was rejected", decision.record_id, ledger_name
            )
            return CategoryApplyResult(
                updated, decision.record_id,
                f"Record {decision.record_id} not updated in '{ledger_name}'",
            )
        updated += 1

    logger.info("Updated %d record(s) in %s", updated, ledger_name)
    return CategoryApplyResult(updated)
