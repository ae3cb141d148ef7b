"""Tests for status categories and translation."""

import pytest

from jira_sync_db.status import CATEGORY_VALUES, StatusCategory, StatusTranslator, guess_category


class TestGuessCategory:
    """Keyword heuristic for unmapped statuses."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Done", StatusCategory.DONE),
            ("Closed - Won't Fix", StatusCategory.DONE),
            ("Released to prod", StatusCategory.DONE),
            ("Ready for Test", StatusCategory.QA),
            ("Peer Review", StatusCategory.QA),
            ("In Progress", StatusCategory.IN_PROGRESS),
            ("Implementing", StatusCategory.IN_PROGRESS),
            ("Backlog", StatusCategory.NOT_STARTED),
            ("Triage", StatusCategory.NOT_STARTED),
            ("", StatusCategory.NOT_STARTED),
            (None, StatusCategory.NOT_STARTED),
        ],
    )
    def test_keywords(self, raw, expected):
        assert guess_category(raw) is expected

    def test_done_wins_over_qa(self):
        """'Tested and done' has both markers; done takes priority."""
        assert guess_category("Tested and done") is StatusCategory.DONE

    def test_category_values_order(self):
        assert CATEGORY_VALUES == ("not_started", "in_progress", "qa", "done")


class TestStatusTranslator:
    """Explicit mappings first, heuristic second."""

    def test_exact_mapping_wins(self):
        """'In Code Review' would guess QA; the mapping says in progress."""
        translator = StatusTranslator({"In Code Review": "in_progress"})

        assert translator.translate("In Code Review") is StatusCategory.IN_PROGRESS

    def test_unmapped_falls_back_to_heuristic(self):
        translator = StatusTranslator({"Open": StatusCategory.NOT_STARTED})

        assert translator.translate("QA Review") is StatusCategory.QA
        assert translator.is_mapped("Open")
        assert not translator.is_mapped("QA Review")

    def test_mapping_is_case_sensitive(self):
        translator = StatusTranslator({"Blocked": StatusCategory.IN_PROGRESS})

        assert translator.translate("blocked") is StatusCategory.NOT_STARTED

    def test_from_mappings(self):
        translator = StatusTranslator.from_mappings(
            {StatusCategory.QA: ["Verify", "UAT"], "done": ["Shipped"]}
        )

        assert len(translator) == 3
        assert translator.translate("UAT") is StatusCategory.QA
        assert translator.translate("Shipped") is StatusCategory.DONE
        assert translator.mapping["Verify"] is StatusCategory.QA

    def test_invalid_category_rejected(self):
        with pytest.raises(ValueError):
            StatusTranslator({"Open": "waiting"})
