"""Indexer: the single writer of the full-text and KV stores.

Every mutating call runs under one re-entrant lock and stages its writes in
an open ``BEGIN IMMEDIATE`` transaction on the writer connection. Nothing
becomes visible to searchers until ``commit()``; a failed write rolls the
whole staged batch back.
"""

from __future__ import annotations

import asyncio
import codecs
import hashlib
import logging
import os
import sqlite3
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Iterator

import httpx

from cke.config import EngineConfig
from cke.db.connection import Database, translate
from cke.db.models import CodeElement, FileRecord, RemoteContent
from cke.db.repository import SOURCE_REMOTE, Repository
from cke.db.schema import initialize
from cke.errors import (
    CancelledError,
    CKEError,
    EngineUnhealthyError,
    ErrorKind,
    IndexCorruptError,
    NotFoundError,
)
from cke.ingest.code_blocks import blocks_to_elements
from cke.ingest.walker import SourceWalker, WalkEntry
from cke.ingest.web import CrawlReport, FetchedPage, WebCrawler, normalize_url
from cke.parsers.base import Parser, decode_source
from cke.parsers.registry import ParserRegistry
from cke.search.history import SearchHistory

logger = logging.getLogger(__name__)

BINARY_SAMPLE_BYTES = 8 * 1024
BINARY_THRESHOLD = 0.10
_ALLOWED_CONTROL = frozenset("\t\n\r\f\b")


# ------------------------------------------------------------------
# Reports
# ------------------------------------------------------------------


@dataclass
class IngestIssue:
    path: str
    kind: ErrorKind
    message: str


@dataclass
class IngestReport:
    """Outcome of a batch ingest.

    ``recovered`` lists files stored without elements after a parser fault;
    they are also counted in ``added`` or ``updated``.
    """

    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    skipped: list[IngestIssue] = field(default_factory=list)
    failed: list[IngestIssue] = field(default_factory=list)
    recovered: list[IngestIssue] = field(default_factory=list)

    @property
    def succeeded(self) -> list[str]:
        return [*self.added, *self.updated, *self.unchanged]


@dataclass
class RemoteIngestReport:
    crawl: CrawlReport
    stored: list[str] = field(default_factory=list)
    ingest: IngestReport = field(default_factory=IngestReport)


@dataclass
class _Job:
    path: str
    data: bytes
    parser: Parser
    modified_at: float
    content_hash: str
    existing: FileRecord | None


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def canonical_path(path: Path | str) -> str:
    """Absolute, ``/``-separated form used as the record key."""
    return Path(path).resolve().as_posix()


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def is_binary(data: bytes) -> bool:
    """True when >10% of the first 8 KiB is invalid UTF-8 or control bytes."""
    sample = data[:BINARY_SAMPLE_BYTES]
    if not sample:
        return False
    # An incremental decoder leaves a multi-byte sequence cut at the boundary alone.
    text = codecs.getincrementaldecoder("utf-8")(errors="replace").decode(sample, final=False)
    bad = sum(1 for ch in text if ch == "\ufffd" or (ord(ch) < 32 and ch not in _ALLOWED_CONTROL) or ch == "\x7f")
    return bad > BINARY_THRESHOLD * len(sample)


class Indexer:
    """Single-writer maintenance of the persistent stores.

    Args:
        database: Data directory handle.
        registry: Parsers used for local files and remote code blocks.
        config: Engine configuration.
        history: Search history flushed to the KV store at each commit.
        rebuild: Drop and recreate the stores (required after a schema change).
        transport: httpx transport for the crawler (tests use MockTransport).
        clock: Wall-clock source for remote ``scraped_at`` timestamps.
    """

    def __init__(
        self,
        database: Database,
        registry: ParserRegistry,
        config: EngineConfig,
        history: SearchHistory | None = None,
        *,
        rebuild: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.database = database
        self.registry = registry
        self.config = config
        self.history = history
        self._transport = transport
        self._clock = clock
        self._lock = threading.RLock()
        self.unhealthy = False
        self._workers = config.index.parse_workers or os.cpu_count() or 1
        self._open(rebuild=rebuild)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _open(self, *, rebuild: bool) -> None:
        self._conn = self.database.connect(writer=True)
        self._repo = Repository(self._conn)
        try:
            created = initialize(self._conn, rebuild=rebuild)
            if not created:
                self._repo.begin_write()
                repaired = self._repo.reconcile()
                self._repo.commit()
                if repaired:
                    logger.warning("Recovered %d partially written path(s): %s", len(repaired), repaired)
        except sqlite3.Error as exc:
            self._conn.close()
            raise translate(exc, write=True) from exc
        except CKEError:
            self._conn.close()
            raise

    def load_history(self) -> list:
        with self._lock, self._guard():
            return self._repo.load_history(self.config.search.max_history_items)

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            try:
                if not self.unhealthy:
                    self.commit()
            finally:
                self._conn.close()
                self._conn = None

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def commit(self) -> None:
        """Make every staged change visible to searches (the linearization point)."""
        with self._lock:
            self._check_healthy()
            with self._guard():
                self._flush_history()
                self._repo.commit()

    def rollback(self) -> None:
        """Discard staged changes."""
        with self._lock:
            if self._conn is not None:
                self._rollback_quietly()

    @property
    def has_pending(self) -> bool:
        return self._conn is not None and self._repo.in_transaction

    def _stage(self) -> None:
        if not self._repo.in_transaction:
            self._repo.begin_write()

    def _flush_history(self) -> None:
        if self.history is None:
            return
        items = self.history.take_dirty()
        if items is None:
            return
        try:
            self._stage()
            self._repo.replace_history(items, self.config.search.max_history_items)
        except Exception:
            self.history.mark_dirty()
            raise

    @contextmanager
    def _guard(self) -> Iterator[None]:
        """Convert store faults; roll back the staged batch on any write failure."""
        try:
            yield
        except sqlite3.Error as exc:
            error = translate(exc, write=True)
            self._rollback_quietly()
            if isinstance(error, IndexCorruptError):
                self._mark_unhealthy(error)
            raise error from exc
        except IndexCorruptError as exc:
            self._rollback_quietly()
            self._mark_unhealthy(exc)
            raise
        except BaseException:
            self._rollback_quietly()
            raise

    def _rollback_quietly(self) -> None:
        try:
            self._repo.rollback()
        except sqlite3.Error as exc:
            logger.error("Rollback failed: %s", exc)

    def _mark_unhealthy(self, error: CKEError) -> None:
        if not self.unhealthy:
            logger.error("[%s] %s; run 'cke clear' to rebuild the index", error.kind.value, error.message)
        self.unhealthy = True

    def _check_healthy(self) -> None:
        if self._conn is None:
            raise EngineUnhealthyError("Indexer is closed")
        if self.unhealthy:
            raise EngineUnhealthyError(
                "The index is corrupt and refuses writes; call clear() to rebuild it."
            )

    # ------------------------------------------------------------------
    # Local files
    # ------------------------------------------------------------------

    def add_paths(
        self,
        paths: Iterable[Path | str],
        recursive: bool = True,
        cancel: threading.Event | None = None,
    ) -> IngestReport:
        """Stage every file under *paths*; directories are walked.

        Paths under a walked directory that no longer exist on disk are
        removed. Call ``commit()`` to publish the batch.
        """
        with self._lock:
            self._check_healthy()
            report = IngestReport()
            with self._guard():
                self._stage()
                for raw in paths:
                    _check_cancel(cancel)
                    path = Path(raw)
                    if path.is_dir():
                        self._add_directory(path, recursive, report, cancel)
                    elif path.exists():
                        stat = path.stat()
                        self._ingest([WalkEntry(path, stat.st_size, stat.st_mtime)], report, cancel)
                    else:
                        report.failed.append(
                            IngestIssue(canonical_path(path), ErrorKind.NOT_FOUND, "No such file or directory")
                        )
                        logger.warning("[%s] %s: no such file or directory", ErrorKind.NOT_FOUND.value, path)
            return report

    def _add_directory(
        self, root: Path, recursive: bool, report: IngestReport, cancel: threading.Event | None
    ) -> None:
        allowed = self.config.index.allowed_extensions
        walker = SourceWalker(
            root,
            allowed_extensions=allowed if allowed is not None else self.registry.supported_extensions(),
            deny_patterns=self.config.index.deny_patterns,
            recursive=recursive,
        )
        seen = self._ingest(walker, report, cancel)
        prefix = canonical_path(root).rstrip("/") + "/"
        for stale in self._repo.list_file_paths(prefix):
            if stale in seen or (not recursive and "/" in stale[len(prefix) :]):
                continue
            self._repo.delete_file(stale)
            report.removed.append(stale)
            logger.info("Removed vanished file %s", stale)

    def _ingest(
        self,
        entries: Iterable[WalkEntry],
        report: IngestReport,
        cancel: threading.Event | None,
    ) -> set[str]:
        """Read, filter and hash entries, parse changed files in the pool, write serially."""
        seen: set[str] = set()
        jobs: list[_Job] = []
        for entry in entries:
            _check_cancel(cancel)
            job = self._prepare(entry, report, seen)
            if job is not None:
                jobs.append(job)

        if not jobs:
            return seen
        workers = min(self._workers, len(jobs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cke-parse") as pool:
            parsed = pool.map(_parse_job, jobs)
            for job, (elements, failure) in zip(jobs, parsed):
                _check_cancel(cancel)
                self._write_job(job, elements, failure, report)
        return seen

    def _prepare(self, entry: WalkEntry, report: IngestReport, seen: set[str]) -> _Job | None:
        path = canonical_path(entry.path)
        seen.add(path)
        limit = self.config.index.max_file_bytes
        if entry.size > limit:
            self._skip(report, path, ErrorKind.FILE_TOO_LARGE, f"{entry.size} bytes exceeds limit of {limit}")
            return None
        try:
            data = entry.path.read_bytes()
        except FileNotFoundError:
            seen.discard(path)
            report.failed.append(IngestIssue(path, ErrorKind.NOT_FOUND, "File vanished before it could be read"))
            return None
        except OSError as exc:
            report.failed.append(IngestIssue(path, ErrorKind.NOT_FOUND, f"Cannot read file: {exc}"))
            logger.warning("[%s] %s: %s", ErrorKind.NOT_FOUND.value, path, exc)
            return None
        if len(data) > limit:
            self._skip(report, path, ErrorKind.FILE_TOO_LARGE, f"{len(data)} bytes exceeds limit of {limit}")
            return None
        parser = self.registry.for_path(path, data)
        if parser is None:
            self._skip(report, path, ErrorKind.UNSUPPORTED, "No parser for this file type")
            return None
        if is_binary(data):
            self._skip(report, path, ErrorKind.BINARY_FILE, "File looks binary")
            return None
        digest = content_hash(data)
        existing = self._repo.get_file(path)
        if existing is not None and existing.content_hash == digest:
            report.unchanged.append(path)
            return None
        return _Job(path, data, parser, entry.modified_at, digest, existing)

    def _write_job(
        self,
        job: _Job,
        elements: list[CodeElement],
        failure: CKEError | None,
        report: IngestReport,
    ) -> None:
        if failure is not None:
            report.recovered.append(IngestIssue(job.path, failure.kind, failure.message))
            logger.warning("[%s] %s: %s", failure.kind.value, job.path, failure.message)
        record = FileRecord(
            path=job.path,
            language=job.parser.language_tag,
            size_bytes=len(job.data),
            modified_at=job.modified_at,
            content_hash=job.content_hash,
        )
        self._repo.replace_file(record, decode_source(job.data), elements)
        (report.updated if job.existing is not None else report.added).append(job.path)
        logger.debug("Staged %s (%d elements)", job.path, len(elements))

    @staticmethod
    def _skip(report: IngestReport, path: str, kind: ErrorKind, message: str) -> None:
        report.skipped.append(IngestIssue(path, kind, message))
        logger.info("[%s] skipped %s: %s", kind.value, path, message)

    def remove_path(self, path: Path | str) -> int:
        """Stage removal of a file, every file under a directory, or a URL record.

        Raises:
            NotFoundError: Nothing is indexed under *path*.
        """
        with self._lock:
            self._check_healthy()
            key = _record_key(path)
            with self._guard():
                self._stage()
                removed = 0
                if self._repo.delete_file(key) is not None:
                    removed += 1
                for child in self._repo.list_file_paths(key.rstrip("/") + "/"):
                    self._repo.delete_file(child)
                    removed += 1
            if not removed:
                raise NotFoundError(f"Nothing indexed under {key}")
            logger.info("Removed %d record(s) under %s", removed, key)
            return removed

    def reindex_path(self, path: Path | str, cancel: threading.Event | None = None) -> IngestReport:
        """Remove then re-add *path*; element ids are stable for unchanged elements."""
        with self._lock:
            self._check_healthy()
            key = _record_key(path)
            with self._guard():
                self._stage()
                self._repo.delete_file(key)
                for child in self._repo.list_file_paths(key.rstrip("/") + "/"):
                    self._repo.delete_file(child)
            return self.add_paths([path], recursive=True, cancel=cancel)

    # ------------------------------------------------------------------
    # Remote content
    # ------------------------------------------------------------------

    def ingest_remote(
        self,
        urls: Iterable[str],
        depth: int | None = None,
        add_to_kb: bool = False,
        cancel: threading.Event | None = None,
    ) -> RemoteIngestReport:
        """Crawl *urls* and stage each page as RemoteContent.

        With *add_to_kb*, pages are also indexed like local files whose path
        is the URL, so their text and code blocks become searchable.

        The crawl runs on a fresh event loop via ``asyncio.run``; from inside
        a running loop, await ``ingest_remote_async()`` instead.
        """
        return asyncio.run(
            self.ingest_remote_async(urls, depth=depth, add_to_kb=add_to_kb, cancel=cancel)
        )

    async def ingest_remote_async(
        self,
        urls: Iterable[str],
        depth: int | None = None,
        add_to_kb: bool = False,
        cancel: threading.Event | None = None,
    ) -> RemoteIngestReport:
        """Awaitable ``ingest_remote()`` for callers that own an event loop."""
        with self._lock:
            self._check_healthy()
            crawler = WebCrawler(self.config.fetch, transport=self._transport)
            result = RemoteIngestReport(crawl=CrawlReport())

            async def on_page(page: FetchedPage) -> None:
                await asyncio.to_thread(self._store_page, page, add_to_kb, result)

            with self._guard():
                self._stage()
                result.crawl = await crawler.crawl(urls, max_depth=depth, on_page=on_page, cancel=cancel)
            for status in result.crawl.failed:
                result.ingest.failed.append(
                    IngestIssue(status.url, status.kind or ErrorKind.NETWORK, status.message)
                )
            return result

    def _store_page(self, page: FetchedPage, add_to_kb: bool, result: RemoteIngestReport) -> None:
        # Runs on a worker thread while the calling thread holds the lock and waits.
        url = page.url
        elements = blocks_to_elements(page.code_blocks, url, self.registry)
        scraped_at = self._clock()
        self._repo.put_remote(
            RemoteContent(
                url=url,
                title=page.title,
                scraped_at=scraped_at,
                size_bytes=page.size_bytes,
                depth=page.depth,
                detected_language=page.detected_language,
                text_content=page.text,
                extracted_elements=elements,
            )
        )
        result.stored.append(url)
        if not add_to_kb:
            return
        body = f"{page.title}\n\n{page.text}" if page.title else page.text
        digest = content_hash(body.encode("utf-8"))
        existing = self._repo.get_file(url)
        if existing is not None and existing.content_hash == digest:
            result.ingest.unchanged.append(url)
            return
        record = FileRecord(
            path=url,
            language="html",
            size_bytes=page.size_bytes,
            modified_at=scraped_at,
            content_hash=digest,
        )
        self._repo.replace_file(record, body, elements, source=SOURCE_REMOTE)
        (result.ingest.updated if existing is not None else result.ingest.added).append(url)

    def remove_remote(self, url: str) -> bool:
        """Stage deletion of a crawled URL (RemoteContent and any indexed page)."""
        with self._lock:
            self._check_healthy()
            key = normalize_url(url) or url
            with self._guard():
                self._stage()
                removed = self._repo.delete_remote(key)
                removed = self._repo.delete_file(key) is not None or removed
            return removed

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Empty both stores in one commit; rebuilds the files when corrupt."""
        with self._lock:
            if self._conn is None:
                raise EngineUnhealthyError("Indexer is closed")
            if self.history is not None:
                self.history.clear()
            if self.unhealthy:
                self._rollback_quietly()
                self._conn.close()
                self.database.destroy()
                self._open(rebuild=True)
                self.unhealthy = False
                logger.info("Rebuilt index at %s", self.database.data_dir)
                return
            with self._guard():
                self._stage()
                self._repo.clear()
                self._repo.commit()
            logger.info("Cleared index at %s", self.database.data_dir)

    def compact(self) -> None:
        """Commit pending work, merge FTS segments and vacuum both stores."""
        with self._lock:
            self.commit()
            with self._guard():
                self._stage()
                self._repo.optimize()
                self._repo.commit()
                self._repo.vacuum()

    def verify(self) -> list[str]:
        """Check store integrity and the file → element invariant.

        Storage-level problems mark the indexer unhealthy.
        """
        with self._lock:
            if self._conn is None:
                raise EngineUnhealthyError("Indexer is closed")
            try:
                problems = self._repo.integrity_problems()
            except sqlite3.DatabaseError as exc:
                problems = [str(exc)]
            if problems:
                self._mark_unhealthy(IndexCorruptError("; ".join(problems)))
                return problems
            with self._guard():
                for record in self._repo.list_files():
                    for element_id in record.element_ids:
                        element = self._repo.get_element(element_id)
                        if element is None:
                            problems.append(f"{record.path}: missing element {element_id}")
                        elif element.file_path != record.path:
                            problems.append(f"{record.path}: element {element_id} belongs to {element.file_path}")
            return problems

    def stats(self) -> dict[str, int]:
        """Counts as seen by the writer, including staged changes."""
        with self._lock:
            if self._conn is None:
                raise EngineUnhealthyError("Indexer is closed")
            with self._guard():
                return self._repo.stats()

    def language_counts(self) -> dict[str, int]:
        with self._lock:
            if self._conn is None:
                raise EngineUnhealthyError("Indexer is closed")
            with self._guard():
                return self._repo.language_counts()


def _parse_job(job: _Job) -> tuple[list[CodeElement], CKEError | None]:
    try:
        return job.parser.parse(job.data, job.path), None
    except CKEError as exc:
        return [], exc


def _check_cancel(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise CancelledError("Operation cancelled; staged changes were rolled back")


def _record_key(path: Path | str) -> str:
    text = str(path)
    url = normalize_url(text) if "://" in text else None
    return url if url is not None else canonical_path(text)
