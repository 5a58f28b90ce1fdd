"""YAML configuration loader for ledgermatch.

Loads matching.yaml from the config/ directory. It has two sections:
  conflicts:   ConflictThresholds overrides and auto_skip_exact
  categories:  CategoryWeights overrides, placeholders, fetch_concurrency

Every key is optional; anything left out keeps the built-in default.
"""

from dataclasses import fields, replace
from pathlib import Path

import yaml

from ledgermatch.categorize.history import DEFAULT_CONCURRENCY
from ledgermatch.categorize.suggest import CategoryWeights
from ledgermatch.database.models import PLACEHOLDER_CATEGORIES
from ledgermatch.matching.conflicts import ConflictThresholds


class Config:
    """Loads and provides access to the matching configuration."""

    def __init__(self, config_dir: Path | str = "config"):
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise FileNotFoundError(f"Config directory not found: {self.config_dir}")

        self._matching: dict | None = None

    def _load(self, filename: str) -> dict:
        path = self.config_dir / filename
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            raise ValueError(f"Empty config file: {path}")
        if not isinstance(data, dict):
            raise ValueError(f"Expected a mapping in {path}")
        return data

    @property
    def matching(self) -> dict:
        if self._matching is None:
            self._matching = self._load("matching.yaml")
        return self._matching

    def _section(self, name: str) -> dict:
        section = self.matching.get(name) or {}
        if not isinstance(section, dict):
            raise ValueError(f"Section '{name}' in matching.yaml must be a mapping")
        return section

    @property
    def conflict_thresholds(self) -> ConflictThresholds:
        section = dict(self._section("conflicts"))
        section.pop("auto_skip_exact", None)
        return _override(ConflictThresholds(), section, "conflicts")

    @property
    def auto_skip_exact(self) -> bool:
        return bool(self._section("conflicts").get("auto_skip_exact", True))

    @property
    def category_weights(self) -> CategoryWeights:
        section = dict(self._section("categories"))
        section.pop("placeholders", None)
        section.pop("fetch_concurrency", None)
        return _override(CategoryWeights(), section, "categories")

    @property
    def placeholder_categories(self) -> tuple[str, ...]:
        """Category values that count as "not categorized"."""
        values = self._section("categories").get("placeholders")
        if values is None:
            return PLACEHOLDER_CATEGORIES
        return tuple("" if v is None else str(v) for v in values)

    @property
    def fetch_concurrency(self) -> int:
        value = self._section("categories").get("fetch_concurrency", DEFAULT_CONCURRENCY)
        if not isinstance(value, int) or value < 1:
            raise ValueError(f"fetch_concurrency must be a positive integer, got {value!r}")
        return value


def _override(defaults, overrides: dict, section: str):
    """Return a copy of the defaults dataclass with overrides applied."""
    known = {f.name for f in fields(defaults)}
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(f"Unknown keys in '{section}' section: {sorted(unknown)}")
    return replace(defaults, **overrides)
