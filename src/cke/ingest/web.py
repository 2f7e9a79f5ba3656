"""Remote fetcher: bounded breadth-first HTML crawler.

Fetch rules:
- Allowed URL schemes: https:// and http:// only; fragments are stripped
  and every URL is fetched at most once per crawl.
- Content-Type whitelist: text/html (and XHTML). Other responses are
  recorded as visited and skipped.
- Max response body: fetch.max_response_bytes (5 MB by default).
- Hard timeout over the whole request, body included, and a redirect cap;
  failures are per URL.
- Optional SSRF guard (fetch.block_private_hosts): the hostname is
  resolved and private/loopback/link-local/reserved addresses are refused
  before any connection is made.
- Optional robots.txt check (fetch.respect_robots_txt, off by default).

At most ``max_concurrent_fetches`` requests are in flight (semaphore).
Parsed pages are handed to the consumer through a bounded queue, so a
slow indexer applies back-pressure to the crawl.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import re
import socket
import threading
import time
import urllib.parse
import urllib.robotparser
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable

import html2text
import httpx
from bs4 import BeautifulSoup

from cke.config import FetchConfig
from cke.errors import CancelledError, ErrorKind, FetchError
from cke.ingest.code_blocks import CodeBlock, extract_fenced_blocks, extract_html_blocks

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = {"https", "http"}
_HTML_CONTENT_TYPES = {"text/html", "application/xhtml+xml"}
_STRIP_TAGS = ["script", "style", "nav", "footer", "head", "noscript"]

# html2text converter
_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0


class SsrfError(FetchError):
    """Raised when a URL resolves to a private or reserved address."""


@dataclass
class FetchedPage:
    """One successfully fetched and parsed HTML page."""

    url: str
    final_url: str
    depth: int
    title: str
    text: str
    detected_language: str
    size_bytes: int
    code_blocks: list[CodeBlock] = field(default_factory=list)
    links: list[str] = field(default_factory=list)


@dataclass
class UrlStatus:
    """Outcome for one URL: ``fetched``, ``skipped`` or ``failed``."""

    url: str
    depth: int
    status: str
    kind: ErrorKind | None = None
    status_code: int | None = None
    message: str = ""


@dataclass
class CrawlReport:
    statuses: list[UrlStatus] = field(default_factory=list)

    @property
    def fetched(self) -> list[UrlStatus]:
        return [s for s in self.statuses if s.status == "fetched"]

    @property
    def failed(self) -> list[UrlStatus]:
        return [s for s in self.statuses if s.status == "failed"]

    @property
    def skipped(self) -> list[UrlStatus]:
        return [s for s in self.statuses if s.status == "skipped"]


PageHandler = Callable[[FetchedPage], Awaitable[None]]


# ------------------------------------------------------------------
# URL helpers
# ------------------------------------------------------------------


def normalize_url(url: str) -> str | None:
    """Strip the fragment; None for non-HTTP(S) or host-less URLs."""
    url, _ = urllib.parse.urldefrag(url.strip())
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme.lower() not in _ALLOWED_SCHEMES or not parsed.hostname:
        return None
    if not parsed.path:
        url = urllib.parse.urlunparse(parsed._replace(path="/"))
    return url


def _host(url: str) -> str:
    return (urllib.parse.urlparse(url).hostname or "").lower()


# ------------------------------------------------------------------
# Crawler
# ------------------------------------------------------------------


class WebCrawler:
    """Breadth-first crawler over a seed URL set.

    Args:
        config: Fetch limits and filters.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        config: FetchConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._deny = [re.compile(p) for p in config.deny_url_patterns]
        self._allowed_hosts = (
            {h.lower() for h in config.allowed_hosts} if config.allowed_hosts else None
        )

    async def crawl(
        self,
        seeds: Iterable[str],
        *,
        max_depth: int | None = None,
        on_page: PageHandler | None = None,
        cancel: threading.Event | None = None,
    ) -> CrawlReport:
        """Crawl level by level from *seeds* down to *max_depth* link hops.

        Each fetched page is awaited through *on_page* via a bounded queue.
        Raises CancelledError when *cancel* is set between fetches.
        """
        depth_limit = self.config.max_depth if max_depth is None else max_depth
        if depth_limit < 0:
            raise ValueError("max_depth must be >= 0")
        report = CrawlReport()
        visited: set[str] = set()
        semaphore = asyncio.Semaphore(self.config.max_concurrent_fetches)
        queue: asyncio.Queue[FetchedPage | None] = asyncio.Queue(maxsize=self.config.queue_size)
        state = _CrawlState(cancel=cancel)

        consumer = asyncio.create_task(self._consume(queue, on_page))
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self.config.request_timeout,
                follow_redirects=self.config.follow_redirects,
                max_redirects=self.config.max_redirects,
                headers={"User-Agent": self.config.user_agent},
            ) as client:
                frontier: list[str] = []
                for seed in seeds:
                    self._admit(seed, 0, visited, frontier, report)
                depth = 0
                while frontier:
                    state.check()
                    pages = await asyncio.gather(
                        *(self._visit(client, url, depth, semaphore, state, report) for url in frontier)
                    )
                    next_frontier: list[str] = []
                    for page in pages:
                        if page is None:
                            continue
                        visited.add(normalize_url(page.final_url) or page.final_url)
                        await _hand_off(queue, page, consumer)
                        if depth < depth_limit:
                            for link in page.links:
                                self._admit(link, depth + 1, visited, next_frontier, report)
                    frontier = next_frontier
                    depth += 1
        finally:
            if not consumer.done():
                await queue.put(None)
            await consumer
        state.check()
        return report

    # ------------------------------------------------------------------
    # Frontier management
    # ------------------------------------------------------------------

    def _admit(
        self,
        url: str,
        depth: int,
        visited: set[str],
        frontier: list[str],
        report: CrawlReport,
    ) -> None:
        normalized = normalize_url(url)
        if normalized is None:
            logger.debug("Skipping non-HTTP(S) URL %s", url)
            return
        if normalized in visited:
            return
        visited.add(normalized)
        reason = self._filtered(normalized)
        if reason:
            report.statuses.append(UrlStatus(normalized, depth, "skipped", message=reason))
            logger.debug("Skipping %s: %s", normalized, reason)
            return
        frontier.append(normalized)

    def _filtered(self, url: str) -> str | None:
        host = _host(url)
        if self._allowed_hosts is not None and not any(
            host == allowed or host.endswith("." + allowed) for allowed in self._allowed_hosts
        ):
            return f"host {host} not in allowed_hosts"
        for pattern in self._deny:
            if pattern.search(url):
                return f"matches deny pattern {pattern.pattern!r}"
        return None

    # ------------------------------------------------------------------
    # Fetch pipeline
    # ------------------------------------------------------------------

    async def _visit(
        self,
        client: httpx.AsyncClient,
        url: str,
        depth: int,
        semaphore: asyncio.Semaphore,
        state: _CrawlState,
        report: CrawlReport,
    ) -> FetchedPage | None:
        async with semaphore:
            if state.cancelled:
                return None
            try:
                if self.config.block_private_hosts:
                    await self._check_ssrf(url)
                if self.config.respect_robots_txt and not await state.robots_allow(client, url, self.config.user_agent):
                    report.statuses.append(UrlStatus(url, depth, "skipped", message="disallowed by robots.txt"))
                    return None
                await state.polite(_host(url), self.config.politeness_delay)
                fetched = await self._fetch(client, url)
            except FetchError as exc:
                report.statuses.append(
                    UrlStatus(url, depth, "failed", kind=exc.kind, status_code=exc.status_code, message=exc.message)
                )
                logger.warning("[%s] %s: %s", exc.kind.value, url, exc.message)
                return None

        if fetched is None:
            report.statuses.append(UrlStatus(url, depth, "skipped", message="not an HTML response"))
            logger.debug("Skipping non-HTML response from %s", url)
            return None
        final_url, body, encoding, status_code = fetched
        page = await asyncio.to_thread(parse_page, url, final_url, depth, body, encoding)
        report.statuses.append(UrlStatus(url, depth, "fetched", status_code=status_code))
        logger.info("Fetched %s (depth %d, %d bytes)", url, depth, page.size_bytes)
        return page

    async def _fetch(
        self, client: httpx.AsyncClient, url: str
    ) -> tuple[str, bytes, str, int] | None:
        """GET *url* within ``request_timeout`` for the whole exchange.

        httpx applies its timeout per connect and per read, so a server that
        keeps trickling bytes would never trip it; the outer deadline does.
        """
        timeout = self.config.request_timeout
        try:
            return await asyncio.wait_for(self._download(client, url), timeout)
        except asyncio.TimeoutError as exc:
            raise FetchError(
                f"Timed out after {timeout}s fetching {url}", kind=ErrorKind.TIMEOUT
            ) from exc

    async def _download(
        self, client: httpx.AsyncClient, url: str
    ) -> tuple[str, bytes, str, int] | None:
        """GET *url* with size cap and Content-Type check.

        Returns (final_url, body, encoding, status) or None for non-HTML.
        """
        limit = self.config.max_response_bytes
        try:
            async with client.stream("GET", url) as response:
                if not response.is_success:
                    raise FetchError(
                        f"HTTP {response.status_code} for {url}",
                        kind=ErrorKind.NETWORK,
                        status_code=response.status_code,
                    )
                raw_ct = response.headers.get("Content-Type", "text/html")
                ct = raw_ct.split(";")[0].strip().lower()
                if ct not in _HTML_CONTENT_TYPES:
                    return None
                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > limit:
                        raise FetchError(
                            f"Response body exceeds {limit} bytes for {url}",
                            kind=ErrorKind.NETWORK,
                            status_code=response.status_code,
                        )
                return str(response.url), bytes(body), response.charset_encoding or "utf-8", response.status_code
        except httpx.TimeoutException as exc:
            raise FetchError(f"Timed out fetching {url}", kind=ErrorKind.TIMEOUT) from exc
        except httpx.TooManyRedirects as exc:
            raise FetchError(
                f"Too many redirects (>{self.config.max_redirects}) for {url}",
                kind=ErrorKind.TOO_MANY_REDIRECTS,
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"Failed to fetch {url}: {exc}", kind=ErrorKind.NETWORK) from exc

    @staticmethod
    async def _check_ssrf(url: str) -> None:
        """Resolve the hostname and block private/reserved IP ranges."""
        hostname = urllib.parse.urlparse(url).hostname
        if not hostname:
            raise FetchError(f"URL has no hostname: {url}")
        try:
            addrinfos = await asyncio.to_thread(socket.getaddrinfo, hostname, None)
        except socket.gaierror as exc:
            raise FetchError(f"DNS resolution failed for '{hostname}': {exc}") from exc

        for addrinfo in addrinfos:
            try:
                ip = ipaddress.ip_address(addrinfo[4][0])
            except ValueError:
                continue
            if (
                ip.is_private
                or ip.is_loopback
                or ip.is_link_local
                or ip.is_reserved
                or ip.is_multicast
                or ip.is_unspecified
            ):
                raise SsrfError(
                    f"URL resolves to private address ({ip}). "
                    "Access to internal network addresses is not allowed."
                )

    @staticmethod
    async def _consume(queue: asyncio.Queue, on_page: PageHandler | None) -> None:
        while True:
            page = await queue.get()
            if page is None:
                return
            if on_page is not None:
                await on_page(page)


async def _hand_off(queue: asyncio.Queue, page: FetchedPage, consumer: asyncio.Task) -> None:
    """Queue *page*, surfacing the consumer's error instead of blocking on a full queue."""
    put = asyncio.ensure_future(queue.put(page))
    done, _ = await asyncio.wait({put, consumer}, return_when=asyncio.FIRST_COMPLETED)
    if put not in done:
        put.cancel()
        await consumer


class _CrawlState:
    """Per-crawl politeness clock, robots cache and cancellation flag."""

    def __init__(self, cancel: threading.Event | None) -> None:
        self._cancel = cancel
        self._host_locks: dict[str, asyncio.Lock] = {}
        self._last_fetch: dict[str, float] = {}
        self._robots: dict[str, urllib.robotparser.RobotFileParser | None] = {}

    @property
    def cancelled(self) -> bool:
        return self._cancel is not None and self._cancel.is_set()

    def check(self) -> None:
        if self.cancelled:
            raise CancelledError("Crawl cancelled")

    async def polite(self, host: str, delay: float) -> None:
        if delay <= 0:
            return
        lock = self._host_locks.setdefault(host, asyncio.Lock())
        async with lock:
            wait = self._last_fetch.get(host, 0.0) + delay - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_fetch[host] = time.monotonic()

    async def robots_allow(self, client: httpx.AsyncClient, url: str, user_agent: str) -> bool:
        parsed = urllib.parse.urlparse(url)
        origin = f"{parsed.scheme}://{parsed.netloc}"
        if origin not in self._robots:
            self._robots[origin] = await _load_robots(client, origin)
        parser = self._robots[origin]
        return parser is None or parser.can_fetch(user_agent, url)


async def _load_robots(
    client: httpx.AsyncClient, origin: str
) -> urllib.robotparser.RobotFileParser | None:
    """Fetch and parse ``/robots.txt``; None (allow all) when unavailable."""
    try:
        response = await client.get(origin + "/robots.txt")
    except httpx.HTTPError:
        return None
    if not response.is_success:
        return None
    parser = urllib.robotparser.RobotFileParser()
    parser.parse(response.text.splitlines())
    return parser


# ------------------------------------------------------------------
# HTML → page
# ------------------------------------------------------------------


def parse_page(url: str, final_url: str, depth: int, body: bytes, encoding: str = "utf-8") -> FetchedPage:
    """Extract title, main text, code blocks and links from an HTML body."""
    try:
        html = body.decode(encoding, errors="replace")
    except LookupError:
        html = body.decode("utf-8", errors="replace")
    soup = BeautifulSoup(html, "html.parser")

    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else ""
    html_tag = soup.find("html")
    lang = html_tag.get("lang") if html_tag is not None else None
    detected_language = (lang.split("-")[0].strip().lower() if isinstance(lang, str) and lang.strip() else "en")

    links: list[str] = []
    for anchor in soup.find_all("a", href=True):
        link = normalize_url(urllib.parse.urljoin(final_url, anchor["href"]))
        if link is not None and link not in links:
            links.append(link)

    blocks = extract_html_blocks(soup)

    for tag in soup.find_all(_STRIP_TAGS):
        tag.decompose()
    main = soup.find("main") or soup.find("article") or soup.select_one(".content") or soup.body or soup
    text = _h2t.handle(str(main)).strip()

    # Markdown fences written as prose (outside <pre>/<code>).
    prose = BeautifulSoup(str(main), "html.parser")
    for tag in prose.find_all(["pre", "code"]):
        tag.decompose()
    blocks.extend(extract_fenced_blocks(prose.get_text("\n")))

    return FetchedPage(
        url=url,
        final_url=final_url,
        depth=depth,
        title=title,
        text=text,
        detected_language=detected_language,
        size_bytes=len(body),
        code_blocks=blocks,
        links=links,
    )
