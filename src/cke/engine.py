"""CodeKnowledgeEngine: the library entry point.

Wires one Indexer (the single writer) and one Searcher (any number of
concurrent readers) over the same data directory, sharing the search
history between them.

    with CodeKnowledgeEngine(load_config()) as engine:
        engine.add_paths(["src"])
        engine.commit()
        for item in engine.search("parse config", limit=5):
            print(item.path, item.element.name, item.score.overall)
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

import httpx

from cke.config import EngineConfig
from cke.db.connection import Database
from cke.db.models import SearchFilters
from cke.ingest.indexer import Indexer, IngestReport, RemoteIngestReport
from cke.parsers import default_registry
from cke.parsers.registry import ParserRegistry
from cke.search.history import SearchHistory
from cke.search.optimizer import SearchResultItem
from cke.search.searcher import Searcher

logger = logging.getLogger(__name__)


class CodeKnowledgeEngine:
    """Facade over indexing and search for one data directory.

    Args:
        config: Immutable engine configuration.
        registry: Parser registry; the built-in parsers when None.
        rebuild: Drop and recreate the stores (needed after a schema change).
        transport: httpx transport for the crawler (tests use MockTransport).
        clock: Wall clock used for timestamps and freshness.
        monotonic: Clock for search deadlines.

    Raises:
        SchemaMismatchError: The stores were written by an incompatible version.
        StoreWriteError: Another process holds the writer lock.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        registry: ParserRegistry | None = None,
        *,
        rebuild: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or EngineConfig()
        self.registry = registry or default_registry()
        self.database = Database(self.config.data_dir)
        self.indexer = Indexer(
            self.database,
            self.registry,
            self.config,
            rebuild=rebuild,
            transport=transport,
            clock=clock,
        )
        try:
            loaded = self.indexer.load_history()
        except Exception:
            self.indexer.close()
            raise
        self.history = SearchHistory(self.config.search.max_history_items, loaded)
        self.indexer.history = self.history
        self.searcher = Searcher(
            self.database, self.config, self.history, clock=clock, monotonic=monotonic
        )
        logger.debug("Engine opened at %s (%d history items)", self.config.data_dir, len(loaded))

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @property
    def unhealthy(self) -> bool:
        """True after a store corruption; writes are refused until ``clear()``."""
        return self.indexer.unhealthy

    @property
    def healthy(self) -> bool:
        return not self.indexer.unhealthy

    # ------------------------------------------------------------------
    # Writes (delegated to the single indexer)
    # ------------------------------------------------------------------

    def add_paths(
        self,
        paths: Iterable[Path | str],
        recursive: bool = True,
        cancel: threading.Event | None = None,
    ) -> IngestReport:
        return self.indexer.add_paths(paths, recursive=recursive, cancel=cancel)

    def remove_path(self, path: Path | str) -> int:
        return self.indexer.remove_path(path)

    def reindex_path(self, path: Path | str, cancel: threading.Event | None = None) -> IngestReport:
        return self.indexer.reindex_path(path, cancel=cancel)

    def ingest_remote(
        self,
        urls: Iterable[str],
        depth: int | None = None,
        add_to_kb: bool = False,
        cancel: threading.Event | None = None,
    ) -> RemoteIngestReport:
        return self.indexer.ingest_remote(urls, depth=depth, add_to_kb=add_to_kb, cancel=cancel)

    async def ingest_remote_async(
        self,
        urls: Iterable[str],
        depth: int | None = None,
        add_to_kb: bool = False,
        cancel: threading.Event | None = None,
    ) -> RemoteIngestReport:
        return await self.indexer.ingest_remote_async(urls, depth=depth, add_to_kb=add_to_kb, cancel=cancel)

    def remove_remote(self, url: str) -> bool:
        return self.indexer.remove_remote(url)

    def clear(self) -> None:
        self.indexer.clear()

    def commit(self) -> None:
        self.indexer.commit()

    def rollback(self) -> None:
        self.indexer.rollback()

    def compact(self) -> None:
        self.indexer.compact()

    def verify(self) -> list[str]:
        return self.indexer.verify()

    def stats(self) -> dict[str, Any]:
        counts: dict[str, Any] = dict(self.indexer.stats())
        counts["healthy"] = self.healthy
        counts["pending"] = self.indexer.has_pending
        return counts

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        limit: int = 10,
        filters: SearchFilters | Mapping[str, Any] | None = None,
        deadline: float | None = None,
    ) -> list[SearchResultItem]:
        """See ``Searcher.search()``; sees only committed state."""
        return self.searcher.search(query, limit, filters=filters, deadline=deadline)

    def record_click(self, query: str, element_id: str) -> bool:
        """Remember that *element_id* was chosen for *query* (persisted at the next commit)."""
        return self.history.record_click(query, element_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Commit pending work (unless unhealthy) and release the writer."""
        self.indexer.close()

    def __enter__(self) -> CodeKnowledgeEngine:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
