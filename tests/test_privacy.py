"""
Tests for sensitive field classification.
"""

import pytest

from worksheet_vault.core.config import DEFAULT_SENSITIVE_FIELD_KEYWORDS
from worksheet_vault.core.privacy import FieldClassifier, get_classifier, is_sensitive


class TestFieldClassifier:
    """Field-name keyword classification."""

    @pytest.mark.parametrize("field_name", [
        "journal",
        "reflection",
        "thoughts",
        "notes",
        "entry",
        "answer",
        "response",
        "description",
        "story",
        "experience",
    ])
    def test_every_default_keyword_is_sensitive(self, classifier, field_name):
        assert classifier.is_sensitive(field_name) is True

    @pytest.mark.parametrize("field_name", [
        "reflectionNotes",
        "userAnswerText",
        "JournalEntry",
        "situation_description",
        "PAST_EXPERIENCES",
    ])
    def test_compound_and_mixed_case_names(self, classifier, field_name):
        assert classifier.is_sensitive(field_name) is True

    @pytest.mark.parametrize("field_name", ["age", "category", "intensity", "order", "id", "completed"])
    def test_structural_fields_are_not_sensitive(self, classifier, field_name):
        assert classifier.is_sensitive(field_name) is False

    def test_empty_and_non_string_names(self, classifier):
        assert classifier.is_sensitive("") is False
        assert classifier.is_sensitive(None) is False
        assert classifier.is_sensitive(3) is False

    def test_classification_is_deterministic(self, classifier):
        results = {classifier.is_sensitive("myThoughts") for _ in range(10)}
        assert results == {True}

    def test_custom_keywords_replace_defaults(self):
        custom = FieldClassifier(keywords=["Secret", ""])

        assert custom.keywords == ("secret",)
        assert custom.is_sensitive("topSecretPlan") is True
        assert custom.is_sensitive("journal") is False

    def test_default_classifier_uses_configured_keywords(self):
        assert get_classifier().keywords == DEFAULT_SENSITIVE_FIELD_KEYWORDS
        assert is_sensitive("reflectionNotes") is True
        assert is_sensitive("intensity") is False
