"""Dataclass model for ledger records.

One Record is one transaction row. Ids are integers scoped to the ledger
that stores the row and are None for freshly parsed candidates. Duplicate
identity is not the id but (date, description, amount); rows aggregated from
other ledgers also carry the ledger they came from in source_ledger.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from ledgermatch.matching.similarity import normalize, parse_date

PLACEHOLDER_CATEGORIES = ("Unknown", "Uncategorized", "")

# Values that statement exports use for "no value".
_MISSING_TEXT = frozenset({"", "n/a", "na", "null", "none", "-"})

# Capitalised ledger table column name -> Record field.
_COLUMN_ALIASES = {
    "Date": "date",
    "Description": "description",
    "Amount": "amount",
    "Balance": "balance",
    "Category": "category",
    "Responsible": "responsible",
    "Responsable": "responsible",
    "Bank": "bank",
    "Comment": "comment",
    "user_id": "owner_id",
    "source_table": "source_ledger",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Record:
    description: str
    amount: float | None
    date: str | None = None
    id: int | None = None
    balance: float | None = None
    category: str | None = None
    responsible: str | None = None
    bank: str | None = None
    comment: str | None = None
    owner_id: str | None = None
    source_ledger: str | None = None
    created_at: str = field(default_factory=_now)

    def identity(self) -> tuple:
        """Duplicate identity: (date, normalized description, amount in cents)."""
        parsed = parse_date(self.date)
        day = parsed.isoformat() if parsed else None
        cents = int(round(self.amount * 100)) if self.amount is not None else None
        return (day, normalize(self.description), cents)

    def tagged_identity(self) -> tuple:
        """Identity used when rows from several ledgers are unioned."""
        return self.identity() + (self.source_ledger,)

    def has_category(
        self, placeholders: Iterable[str] = PLACEHOLDER_CATEGORIES
    ) -> bool:
        """Return True if the category is set and not a placeholder value."""
        if self.category is None:
            return False
        value = self.category.strip().lower()
        if not value:
            return False
        return value not in {p.strip().lower() for p in placeholders}

    def is_valid_candidate(self) -> bool:
        """A row needs at least a usable date or a usable description.

        Header rows and "N/A" filler rows from statement exports have neither.
        """
        has_date = bool(self.date) and str(self.date).strip().lower() not in _MISSING_TEXT
        has_desc = (
            bool(self.description)
            and str(self.description).strip().lower() not in _MISSING_TEXT
        )
        return has_date or has_desc

    def with_changes(self, **changes) -> Record:
        return replace(self, **changes)

    @classmethod
    def from_mapping(cls, row: Mapping) -> Record:
        """Build a Record from a parsed row.

        Accepts snake_case field names and the capitalised column names of
        the hosted ledger tables. Malformed amounts become None and
        dates are kept verbatim; neither raises.
        """
        data: dict = {}
        for key, value in row.items():
            name = _COLUMN_ALIASES.get(key, key)
            if name in _RECORD_FIELDS:
                data[name] = value

        description = data.get("description")
        data["description"] = "" if description is None else str(description)
        data["amount"] = _to_float(data.get("amount"))
        data["balance"] = _to_float(data.get("balance"))
        if data.get("date") is not None:
            data["date"] = str(data["date"]).strip() or None
        if data.get("id") is not None:
            try:
                data["id"] = int(data["id"])
            except (TypeError, ValueError):
                data["id"] = None
        if data.get("created_at") is None:
            data.pop("created_at", None)
        return cls(**data)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": self.date,
            "description": self.description,
            "amount": self.amount,
            "balance": self.balance,
            "category": self.category,
            "responsible": self.responsible,
            "bank": self.bank,
            "comment": self.comment,
            "owner_id": self.owner_id,
            "source_ledger": self.source_ledger,
            "created_at": self.created_at,
        }


_RECORD_FIELDS = frozenset(Record.__dataclass_fields__)


def _to_float(value) -> float | None:
    """Parse an amount, tolerating thousands separators and decimal commas."""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    text = str(value).strip().replace("\u00a0", "").replace(" ", "")
    if not text:
        return None
    if "," in text and "." in text:
        # The separator that comes last is the decimal mark.
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    else:
        text = text.replace(",", ".")
    try:
        parsed = float(text)
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None
