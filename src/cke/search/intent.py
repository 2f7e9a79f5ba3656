"""Rule-based query intent inference."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from cke.db.models import ElementType
from cke.search.query import STOP_WORDS, keywords, plain_text, words


class Intent(str, Enum):
    FUNCTION_DEFINITION = "FunctionDefinition"
    CLASS_DEFINITION = "ClassDefinition"
    VARIABLE_DEFINITION = "VariableDefinition"
    EXAMPLE_SEARCH = "ExampleSearch"
    DOCUMENTATION_SEARCH = "DocumentationSearch"
    ERROR_FIX_SEARCH = "ErrorFixSearch"
    FEATURE_SEARCH = "FeatureSearch"


ALL_TYPES: frozenset[ElementType] = frozenset(ElementType)


@dataclass(frozen=True)
class _Rule:
    intent: Intent
    triggers: frozenset[str]
    confidence: float
    preferred: frozenset[ElementType]


# First match wins.
_RULES: tuple[_Rule, ...] = (
    _Rule(
        Intent.FUNCTION_DEFINITION,
        frozenset(["function", "def", "func", "fn"]),
        0.9,
        frozenset([ElementType.FUNCTION, ElementType.METHOD]),
    ),
    _Rule(
        Intent.CLASS_DEFINITION,
        frozenset(["class", "struct", "interface"]),
        0.9,
        frozenset([ElementType.CLASS, ElementType.STRUCT, ElementType.INTERFACE]),
    ),
    _Rule(
        Intent.VARIABLE_DEFINITION,
        frozenset(["const", "variable", "var"]),
        0.8,
        frozenset([ElementType.VARIABLE, ElementType.CONSTANT]),
    ),
    _Rule(
        Intent.EXAMPLE_SEARCH,
        frozenset(["example", "sample", "demo"]),
        0.8,
        frozenset([ElementType.FUNCTION, ElementType.CLASS]),
    ),
    _Rule(
        Intent.DOCUMENTATION_SEARCH,
        frozenset(["doc", "documentation", "help"]),
        0.8,
        frozenset(),
    ),
    _Rule(
        Intent.ERROR_FIX_SEARCH,
        frozenset(["fix", "bug", "error", "panic", "exception"]),
        0.8,
        frozenset(),
    ),
)

_FALLBACK = _Rule(Intent.FEATURE_SEARCH, frozenset(), 0.7, ALL_TYPES)

_EDGE_PUNCTUATION = "()[]{}<>.,;:!?'`"


@dataclass(frozen=True)
class QueryIntent:
    """Inferred intent of a raw query.

    Attributes:
        intent: Matched rule, FeatureSearch when none matched.
        confidence: Rule confidence in [0, 1].
        keywords: Query words, lowercased, stop-words removed.
        preferred_types: Element types the intent favours (empty for none).
        subject: Query words minus stop-words and the trigger words that
            selected the intent, in their original case.
    """

    intent: Intent
    confidence: float
    keywords: tuple[str, ...]
    preferred_types: frozenset[ElementType]
    subject: str

    def prefers(self, element_type: ElementType, threshold: float) -> bool:
        """True when *element_type* earns the intent bias at *threshold*."""
        return (
            self.confidence >= threshold
            and self.preferred_types != ALL_TYPES
            and element_type in self.preferred_types
        )


def _variants(word: str) -> tuple[str, ...]:
    # "functions" -> "function", "classes" -> "class"
    forms = [word]
    if word.endswith("es") and len(word) > 3:
        forms.append(word[:-2])
    if word.endswith("s") and len(word) > 2:
        forms.append(word[:-1])
    return tuple(forms)


def _matches(word: str, triggers: frozenset[str]) -> bool:
    return any(form in triggers for form in _variants(word))


def _select(text: str) -> _Rule:
    # Triggers match anywhere in the query: "undefined" selects FunctionDefinition via "def".
    lowered = text.lower()
    return next((r for r in _RULES if any(t in lowered for t in r.triggers)), _FALLBACK)


def infer_intent(raw: str) -> QueryIntent:
    """Infer the intent of *raw*; ``field:value`` tokens are ignored.

    A rule fires when any of its trigger words occurs in the lowercased
    query, even inside a longer word. Only whole trigger words (and their
    plurals) are dropped from the subject.
    """
    text = plain_text(raw)
    rule = _select(text)
    subject: list[str] = []
    for part in text.replace('"', " ").split():
        part = part.strip(_EDGE_PUNCTUATION)
        parts = words(part)
        if parts and not all(w in STOP_WORDS or _matches(w, rule.triggers) for w in parts):
            subject.append(part)
    return QueryIntent(
        intent=rule.intent,
        confidence=rule.confidence,
        keywords=tuple(keywords(text)),
        preferred_types=rule.preferred,
        subject=" ".join(subject),
    )
