"""Searcher: read-only query execution against one store snapshot.

Each ``search()`` opens its own connection and a read transaction that
pins both stores at the last commit, so concurrent ingests never show up
half-applied and the indexer is never blocked.
"""

from __future__ import annotations

import logging
import posixpath
import time
from typing import Any, Callable, Mapping

from cke.config import EngineConfig
from cke.db.connection import Database, store_errors
from cke.db.models import (
    CodeElement,
    ElementType,
    FileRecord,
    SearchFilters,
    SearchHistoryItem,
    SourceLocation,
    make_element_id,
)
from cke.db.repository import Repository
from cke.errors import InvalidQueryError
from cke.search.history import SearchHistory
from cke.search.intent import QueryIntent, infer_intent
from cke.search.optimizer import Hit, ResultOptimizer, SearchResultItem
from cke.search.query import ELEMENTS, FILES, ParsedQuery, build_match, parse_query

logger = logging.getLogger(__name__)

MIN_RAW_HITS = 50


def raw_limit(limit: int) -> int:
    """Number of BM25 hits fetched before optimization."""
    return max(3 * limit, MIN_RAW_HITS)


def file_element(record: FileRecord, excerpt: str = "") -> CodeElement:
    """A ``module`` element standing for a whole file or page."""
    name = posixpath.basename(record.path.rstrip("/")) or record.path
    return CodeElement(
        element_type=ElementType.MODULE,
        name=name,
        language=record.language,
        location=SourceLocation(record.path, 1, 1, record.size_bytes),
        code_snippet=excerpt,
        element_id=make_element_id(record.path, record.language, 1, 1, name),
    )


def coerce_filters(filters: SearchFilters | Mapping[str, Any] | None) -> SearchFilters:
    if isinstance(filters, SearchFilters):
        return filters
    try:
        return SearchFilters.from_mapping(dict(filters) if filters else None)
    except (TypeError, ValueError) as exc:
        raise InvalidQueryError(f"Invalid search filters: {exc}") from exc


class Searcher:
    """Runs queries; safe to call from many threads at once.

    Args:
        database: Data directory shared with the indexer.
        config: Engine configuration (the ``search`` section is used).
        history: Shared search history; every non-empty query is appended.
        clock: Wall clock for freshness and history timestamps.
        monotonic: Clock for search deadlines.
    """

    def __init__(
        self,
        database: Database,
        config: EngineConfig,
        history: SearchHistory,
        *,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.database = database
        self.config = config
        self.history = history
        self._clock = clock
        self._monotonic = monotonic
        self.optimizer = ResultOptimizer(config.search, clock=clock, monotonic=monotonic)

    def search(
        self,
        query: str,
        limit: int = 10,
        filters: SearchFilters | Mapping[str, Any] | None = None,
        deadline: float | None = None,
    ) -> list[SearchResultItem]:
        """Ranked results for *query*, at most *limit* of them.

        Args:
            query: Free text with optional ``"phrases"`` and ``field:value`` terms.
            limit: Maximum number of results.
            filters: ``SearchFilters`` or a mapping with the same keys.
            deadline: Seconds allowed for scoring; best-so-far results are
                returned once it passes.

        Raises:
            InvalidQueryError: Malformed field syntax or invalid filters.
            StoreReadError: The stores could not be read.
            IndexCorruptError: The stores are corrupt.
        """
        if not query or limit <= 0:
            return []
        parsed = parse_query(query)
        if parsed.is_empty:
            return []
        expires_at = self._monotonic() + deadline if deadline is not None else None
        search_filters = coerce_filters(filters)
        if parsed.unknown_fields:
            logger.info("Unknown search field(s) %s; no results", ", ".join(parsed.unknown_fields))
            return []
        intent = infer_intent(query)
        now = self._clock()

        recent = self.history.snapshot(last=self.config.search.history_window)
        if parsed.stop_words_only:
            hits = self._read(lambda repo: self._recent_hits(repo, search_filters, now, limit))
            results = self.optimizer.rank_recent(hits, intent, limit)
        else:
            hits = self._read(lambda repo: self._hits(repo, parsed, search_filters, now, limit))
            results = self.optimizer.optimize(
                query, hits, intent, limit, history=recent, expires_at=expires_at
            )
        self._remember(query, intent, now)
        logger.debug("search %r: %d raw hits, %d results", query, len(hits), len(results))
        return results

    # ------------------------------------------------------------------
    # Snapshot reads
    # ------------------------------------------------------------------

    def _read(self, work: Callable[[Repository], list[Hit]]) -> list[Hit]:
        conn = self.database.connect()
        try:
            with store_errors(write=False):
                repo = Repository(conn)
                repo.begin_read()
                try:
                    return work(repo)
                finally:
                    repo.rollback()
        finally:
            conn.close()

    def _hits(
        self,
        repo: Repository,
        parsed: ParsedQuery,
        filters: SearchFilters,
        now: float,
        limit: int,
    ) -> list[Hit]:
        k_raw = raw_limit(limit)
        hits: list[Hit] = []
        records: dict[str, FileRecord | None] = {}

        def record_for(path: str) -> FileRecord | None:
            if path not in records:
                records[path] = repo.get_file(path)
            return records[path]

        element_paths: set[str] = set()
        match = build_match(parsed, ELEMENTS)
        if match is not None:
            rows = repo.search_elements(match, filters, now, k_raw)
            elements = repo.get_elements(r["element_id"] for r in rows)
            for row in rows:
                element = elements.get(row["element_id"])
                # A hit whose KV record is gone is dropped rather than surfaced.
                if element is None or record_for(row["path"]) is None:
                    continue
                element_paths.add(row["path"])
                hits.append(Hit(element, row["modified_at"]))

        wants_files = not filters.element_type or ElementType.MODULE in filters.element_type
        match = build_match(parsed, FILES)
        if match is not None and wants_files:
            for row in repo.search_files(match, filters, now, k_raw):
                if row["path"] in element_paths:
                    continue
                record = record_for(row["path"])
                if record is None:
                    continue
                hits.append(Hit(file_element(record, row["excerpt"] or ""), row["modified_at"], "file"))
        return hits

    def _recent_hits(
        self, repo: Repository, filters: SearchFilters, now: float, limit: int
    ) -> list[Hit]:
        if filters.element_type and ElementType.MODULE not in filters.element_type:
            return []
        hits = []
        for path in repo.recent_file_paths(filters, now, limit):
            record = repo.get_file(path)
            if record is not None:
                hits.append(Hit(file_element(record), record.modified_at, "file"))
        return hits

    def _remember(self, query: str, intent: QueryIntent, now: float) -> None:
        self.history.append(
            SearchHistoryItem(query=query, timestamp=now, inferred_intent=intent.intent.value)
        )
