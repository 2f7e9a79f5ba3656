"""Result optimizer: scoring, diversification and final ordering of search hits.

Every hit gets four integer sub-scores in [0, 100]:

    relevance        name / doc / code matches + type bias + intent bias
    personalization  50, +10 for a similar recent query, +10 for a past click
    diversity        50, then 70 / 60 / 50 by diversification pass
    freshness        bucketed age of the file or page

``overall`` is their weighted mean (weights normalized to sum to 1).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Iterable, Sequence

from cke.config import SearchConfig
from cke.db.models import CodeElement, ElementType, SearchHistoryItem
from cke.db.repository import identifier_terms
from cke.search.intent import QueryIntent
from cke.search.query import keywords

logger = logging.getLogger(__name__)

EXACT_BONUS = 40
CONTAINS_BONUS = 20
DOC_BONUS = 15
CODE_BONUS = 10
INTENT_BONUS = 10

PERSONALIZATION_BASE = 50
SIMILAR_QUERY_BONUS = 10
CLICK_BONUS = 10
SIMILARITY_THRESHOLD = 0.5

DIVERSITY_BASE = 50
DIVERSITY_BY_PASS = {"A": 70, "B": 60, "C": 50}

TYPE_BIAS: dict[ElementType, int] = {
    ElementType.FUNCTION: 15,
    ElementType.CLASS: 15,
    ElementType.STRUCT: 12,
    ElementType.INTERFACE: 12,
    ElementType.TRAIT: 12,
    ElementType.METHOD: 10,
    ElementType.ENUM: 10,
    ElementType.MACRO: 10,
    ElementType.MODULE: 8,
    ElementType.IMPLEMENTATION: 8,
    ElementType.VARIABLE: 5,
    ElementType.CONSTANT: 5,
    ElementType.TYPE_ALIAS: 5,
    ElementType.OTHER: 4,
}

# (max age in seconds, score); older than the last bucket scores 20
_FRESHNESS_BUCKETS = (
    (3_600, 100),
    (86_400, 80),
    (7 * 86_400, 60),
    (30 * 86_400, 40),
)
_FRESHNESS_FLOOR = 20


class MatchType(str, Enum):
    EXACT = "exact"
    PREFIX = "prefix"
    SUFFIX = "suffix"
    CONTAINS = "contains"
    FUZZY = "fuzzy"
    SEMANTIC = "semantic"


@dataclass
class Score:
    relevance: int = 0
    personalization: int = PERSONALIZATION_BASE
    diversity: int = DIVERSITY_BASE
    freshness: int = _FRESHNESS_FLOOR
    overall: int = 0
    match_type: MatchType = MatchType.SEMANTIC


@dataclass
class SearchResultItem:
    """One ranked search result.

    ``result_type`` is ``"element"`` for symbol hits and ``"file"`` for a
    file-level hit surfaced as a ``module`` element.
    """

    element: CodeElement
    score: Score
    path: str
    matched_keywords: list[str] = field(default_factory=list)
    intent: str = ""
    result_type: str = "element"
    relevance_explanation: str = ""

    def sort_key(self) -> tuple:
        return (
            -self.score.overall,
            -self.score.relevance,
            -self.score.freshness,
            self.path,
            self.element.line,
        )


@dataclass
class Hit:
    """A hydrated full-text hit handed to the optimizer."""

    element: CodeElement
    modified_at: float
    result_type: str = "element"


def clamp(value: float, low: int = 0, high: int = 100) -> int:
    return int(max(low, min(high, round(value))))


def freshness_score(age_seconds: float) -> int:
    for limit, score in _FRESHNESS_BUCKETS:
        if age_seconds < limit:
            return score
    return _FRESHNESS_FLOOR


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    sa, sb = set(a), set(b)
    if not sa or not sb:
        return 0.0
    return len(sa & sb) / len(sa | sb)


def classify_match(name: str, needles: Sequence[str], query_keywords: Iterable[str]) -> MatchType:
    """Explain how *name* relates to the query; first applicable kind wins."""
    lowered = name.lower()
    forms = (lowered, identifier_terms(name))
    needles = [n for n in needles if n]
    for needle in needles:
        if needle in forms:
            return MatchType.EXACT
    for needle in needles:
        if any(f.startswith(needle) for f in forms):
            return MatchType.PREFIX
    for needle in needles:
        if any(f.endswith(needle) for f in forms):
            return MatchType.SUFFIX
    for needle in needles:
        if any(needle in f for f in forms):
            return MatchType.CONTAINS
    if set(query_keywords) & set(identifier_terms(name).split()):
        return MatchType.FUZZY
    return MatchType.SEMANTIC


class ResultOptimizer:
    """Scores, diversifies and orders hydrated hits.

    Args:
        config: Ranking configuration (weights, toggles, thresholds).
        clock: Wall clock used for freshness.
        monotonic: Clock the search deadline is measured against.
    """

    def __init__(
        self,
        config: SearchConfig,
        *,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._clock = clock
        self._monotonic = monotonic
        self._weights = self._normalized_weights()

    def _normalized_weights(self) -> dict[str, float]:
        w = self.config.optimizer_weights
        weights = {
            "relevance": w.relevance,
            "personalization": w.personalization,
            "diversity": w.diversity,
            "freshness": w.freshness,
        }
        if not self.config.enable_personalization:
            weights["relevance"] += weights.pop("personalization")
        total = sum(weights.values())
        if total <= 0:
            raise ValueError("optimizer weights must not all be zero")
        return {name: value / total for name, value in weights.items()}

    @property
    def weights(self) -> dict[str, float]:
        return dict(self._weights)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def optimize(
        self,
        query: str,
        hits: Sequence[Hit],
        intent: QueryIntent,
        limit: int,
        *,
        history: Sequence[SearchHistoryItem] = (),
        expires_at: float | None = None,
    ) -> list[SearchResultItem]:
        """Score *hits*, diversify and return at most *limit* results.

        When *expires_at* (on the monotonic clock) passes during scoring, the
        hits scored so far are ranked and returned.
        """
        if limit <= 0 or not hits:
            return []
        now = self._clock()
        needles = _needles(query, intent)
        similar = self._similar_history(intent, history)

        scored: list[SearchResultItem] = []
        for hit in hits:
            scored.append(self._score(hit, needles, intent, similar, now))
            if expires_at is not None and self._monotonic() >= expires_at:
                logger.debug("Search deadline passed after scoring %d of %d hits", len(scored), len(hits))
                break

        scored.sort(key=SearchResultItem.sort_key)
        if self.config.enable_diversity:
            scored = self._diversify(scored, limit)
        else:
            scored = scored[:limit]
        return scored

    def rank_recent(self, hits: Sequence[Hit], intent: QueryIntent, limit: int) -> list[SearchResultItem]:
        """Results for a stop-word-only query: files newest first, scored by freshness only."""
        now = self._clock()
        items = []
        for hit in hits[: max(0, limit)]:
            score = Score(
                relevance=0,
                personalization=PERSONALIZATION_BASE,
                diversity=DIVERSITY_BASE,
                freshness=freshness_score(now - hit.modified_at),
            )
            score.overall = self._overall(score)
            items.append(
                SearchResultItem(
                    element=hit.element,
                    score=score,
                    path=hit.element.file_path,
                    intent=intent.intent.value,
                    result_type=hit.result_type,
                    relevance_explanation="recently modified file",
                )
            )
        return items

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _score(
        self,
        hit: Hit,
        needles: list[str],
        intent: QueryIntent,
        similar: list[SearchHistoryItem],
        now: float,
    ) -> SearchResultItem:
        element = hit.element
        relevance, reasons = self._relevance(element, needles, intent)
        score = Score(
            relevance=relevance,
            personalization=self._personalization(element, similar),
            diversity=DIVERSITY_BASE,
            freshness=freshness_score(now - hit.modified_at),
            match_type=classify_match(element.name, needles, intent.keywords),
        )
        score.overall = self._overall(score)
        return SearchResultItem(
            element=element,
            score=score,
            path=element.file_path,
            matched_keywords=_matched_keywords(element, intent.keywords),
            intent=intent.intent.value,
            result_type=hit.result_type,
            relevance_explanation="; ".join(reasons),
        )

    def _relevance(
        self, element: CodeElement, needles: list[str], intent: QueryIntent
    ) -> tuple[int, list[str]]:
        name = element.name.lower()
        name_forms = (name, identifier_terms(element.name))
        doc = (element.documentation or "").lower()
        code = element.code_snippet.lower()

        best, best_reasons = 0, []
        for needle in needles:
            points, reasons = 0, []
            if needle in name_forms:
                points += EXACT_BONUS
                reasons.append(f"exact name match +{EXACT_BONUS}")
            if any(needle in form for form in name_forms):
                points += CONTAINS_BONUS
                reasons.append(f"name contains '{needle}' +{CONTAINS_BONUS}")
            if doc and needle in doc:
                points += DOC_BONUS
                reasons.append(f"documentation contains '{needle}' +{DOC_BONUS}")
            if needle in code:
                points += CODE_BONUS
                reasons.append(f"code contains '{needle}' +{CODE_BONUS}")
            if points > best:
                best, best_reasons = points, reasons

        bias = TYPE_BIAS.get(element.element_type, TYPE_BIAS[ElementType.OTHER])
        best_reasons.append(f"{element.element_type.value} bias +{bias}")
        best += bias
        if intent.prefers(element.element_type, self.config.intent_threshold):
            best += INTENT_BONUS
            best_reasons.append(f"{intent.intent.value} prefers {element.element_type.value} +{INTENT_BONUS}")
        return clamp(best), best_reasons

    def _similar_history(
        self, intent: QueryIntent, history: Sequence[SearchHistoryItem]
    ) -> list[SearchHistoryItem]:
        if not self.config.enable_personalization or not intent.keywords:
            return []
        window = list(history)[-self.config.history_window :] if self.config.history_window > 0 else []
        return [
            item
            for item in window
            if jaccard(intent.keywords, keywords(item.query)) >= SIMILARITY_THRESHOLD
        ]

    def _personalization(self, element: CodeElement, similar: list[SearchHistoryItem]) -> int:
        if not self.config.enable_personalization:
            return PERSONALIZATION_BASE
        points = PERSONALIZATION_BASE
        if similar:
            points += SIMILAR_QUERY_BONUS
            if any(element.element_id in item.clicked_result_ids for item in similar):
                points += CLICK_BONUS
        return clamp(points)

    def _overall(self, score: Score) -> int:
        w = self._weights
        total = (
            w["relevance"] * score.relevance
            + w.get("personalization", 0.0) * score.personalization
            + w["diversity"] * score.diversity
            + w["freshness"] * score.freshness
        )
        return clamp(total)

    # ------------------------------------------------------------------
    # Diversification
    # ------------------------------------------------------------------

    def _diversify(self, ranked: list[SearchResultItem], limit: int) -> list[SearchResultItem]:
        """Pick up to *limit* hits: new element types (A), new paths (B), then fill (C)."""
        chosen: dict[int, str] = {}
        types: set[ElementType] = set()
        paths: set[str] = set()

        for index, item in enumerate(ranked):
            if len(chosen) >= limit:
                break
            if item.element.element_type not in types:
                chosen[index] = "A"
                types.add(item.element.element_type)
                paths.add(item.path)
        for index, item in enumerate(ranked):
            if len(chosen) >= limit:
                break
            if index not in chosen and item.path not in paths:
                chosen[index] = "B"
                paths.add(item.path)
        for index in range(len(ranked)):
            if len(chosen) >= limit:
                break
            if index not in chosen:
                chosen[index] = "C"

        result = []
        for index, label in chosen.items():
            item = ranked[index]
            score = replace(item.score, diversity=DIVERSITY_BY_PASS[label])
            score.overall = self._overall(score)
            result.append(replace(item, score=score))
        result.sort(key=SearchResultItem.sort_key)
        return result


def _needles(query: str, intent: QueryIntent) -> list[str]:
    """Lowercased query forms a name is compared against: the query and its subject."""
    needles: list[str] = []
    for text in (" ".join(query.split()), intent.subject):
        lowered = text.lower().strip()
        if lowered and lowered not in needles:
            needles.append(lowered)
    return needles


def _matched_keywords(element: CodeElement, query_keywords: Iterable[str]) -> list[str]:
    haystack = " ".join(
        (
            element.name.lower(),
            identifier_terms(element.name),
            (element.documentation or "").lower(),
            element.code_snippet.lower(),
        )
    )
    return [kw for kw in query_keywords if kw in haystack]
