"""Canonical status categories and raw-status translation."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum


class StatusCategory(str, Enum):
    """Normalized lifecycle stage of a ticket."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    QA = "qa"
    DONE = "done"


CATEGORY_VALUES: tuple[str, ...] = tuple(c.value for c in StatusCategory)

# Keyword priority: done > qa > in_progress > not_started
_KEYWORD_RULES: tuple[tuple[StatusCategory, tuple[str, ...]], ...] = (
    (StatusCategory.DONE, ("done", "closed", "resolved", "released")),
    (StatusCategory.QA, ("qa", "test", "review")),
    (StatusCategory.IN_PROGRESS, ("progress", "development", "coding", "implement")),
)


def guess_category(raw_status: str | None) -> StatusCategory:
    """Guess the category of an unmapped status by keyword matching."""
    if not raw_status:
        return StatusCategory.NOT_STARTED
    text = raw_status.lower()
    for category, keywords in _KEYWORD_RULES:
        if any(keyword in text for keyword in keywords):
            return category
    return StatusCategory.NOT_STARTED


class StatusTranslator:
    """Maps raw remote status names to canonical categories.

    An exact entry in the mapping always wins; anything else falls back to
    guess_category().

    Usage:
        translator = StatusTranslator.from_mappings(settings.status_mappings)
        translator.translate("In Code Review")  # StatusCategory.IN_PROGRESS
    """

    def __init__(self, mapping: Mapping[str, StatusCategory | str] | None = None) -> None:
        self._mapping = {name: StatusCategory(category) for name, category in (mapping or {}).items()}

    @classmethod
    def from_mappings(
        cls, mappings: Mapping[StatusCategory | str, Iterable[str]]
    ) -> StatusTranslator:
        """Build from category -> raw status names (the config layout)."""
        flat: dict[str, StatusCategory] = {}
        for category, names in mappings.items():
            for name in names:
                flat[name] = StatusCategory(category)
        return cls(flat)

    def translate(self, raw_status: str | None) -> StatusCategory:
        """Translate a raw status into its canonical category."""
        if raw_status is not None and raw_status in self._mapping:
            return self._mapping[raw_status]
        return guess_category(raw_status)

    def is_mapped(self, raw_status: str) -> bool:
        return raw_status in self._mapping

    @property
    def mapping(self) -> dict[str, StatusCategory]:
        return dict(self._mapping)

    def __len__(self) -> int:
        return len(self._mapping)
