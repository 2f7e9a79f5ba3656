"""CKE ingest pipeline: source walker, web crawler and the single-writer indexer."""

from cke.ingest.indexer import IngestIssue, IngestReport, Indexer, RemoteIngestReport
from cke.ingest.walker import SourceWalker, WalkEntry
from cke.ingest.web import CrawlReport, UrlStatus, WebCrawler

__all__ = [
    "CrawlReport",
    "Indexer",
    "IngestIssue",
    "IngestReport",
    "RemoteIngestReport",
    "SourceWalker",
    "UrlStatus",
    "WalkEntry",
    "WebCrawler",
]
