"""
Sensitive field classification for worksheet documents.
Decides, from a field name alone, whether a string value must be encrypted at rest.
"""

from typing import Iterable, Optional, Tuple

from .config import get_sensitive_field_keywords


class FieldClassifier:
    """
    Field-name heuristic standing in for a per-worksheet schema.

    A field is sensitive when its lower-cased name contains any keyword as a
    substring, so compound names such as ``reflectionNotes`` or
    ``userAnswerText`` are caught. Errs toward over-encrypting.
    """

    def __init__(self, keywords: Optional[Iterable[str]] = None):
        if keywords is None:
            keywords = get_sensitive_field_keywords()
        self._keywords: Tuple[str, ...] = tuple(k.lower() for k in keywords if k)

    @property
    def keywords(self) -> Tuple[str, ...]:
        return self._keywords

    def is_sensitive(self, field_name: str) -> bool:
        """
        Check whether a field holds free-text personal content.

        Args:
            field_name: Document key (any casing)

        Returns:
            bool: True if the value under this key must be encrypted
        """
        if not isinstance(field_name, str) or not field_name:
            return False

        lowered = field_name.lower()
        return any(keyword in lowered for keyword in self._keywords)


# Global classifier instance built from configuration
_default_classifier = FieldClassifier()


def get_classifier() -> FieldClassifier:
    """Get the configured classifier instance."""
    return _default_classifier


def is_sensitive(field_name: str) -> bool:
    """
    Check whether a field is sensitive using the configured keywords.
    See FieldClassifier.is_sensitive for details.
    """
    return _default_classifier.is_sensitive(field_name)
