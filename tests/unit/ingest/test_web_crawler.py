"""Tests for the breadth-first web crawler (httpx.MockTransport, no network)."""

from __future__ import annotations

import asyncio
import threading

import httpx
import pytest

from cke.config import FetchConfig
from cke.errors import CancelledError, ErrorKind
from cke.ingest.web import WebCrawler, normalize_url, parse_page

PAGES = {
    "https://docs.test/": (
        '<html lang="en-GB"><head><title>Home</title></head><body>'
        '<a href="/a#intro">A</a> <a href="/a">A again</a> <a href="https://elsewhere.test/x">out</a>'
        '<a href="mailto:me@docs.test">mail</a></body></html>'
    ),
    "https://docs.test/a": (
        '<html><body><main><p>Parsing guide</p>'
        '<pre><code class="language-python">def parse(): pass</code></pre>'
        '<a href="/b">B</a></main></body></html>'
    ),
    "https://docs.test/b": "<html><body><p>Deep page</p></body></html>",
    "https://elsewhere.test/x": "<html><body>other host</body></html>",
}


def _handler(request: httpx.Request) -> httpx.Response:
    url = str(request.url)
    if url == "https://docs.test/data.json":
        return httpx.Response(200, json={"a": 1})
    if url == "https://docs.test/slow":
        raise httpx.ReadTimeout("timed out", request=request)
    if url in PAGES:
        return httpx.Response(200, text=PAGES[url], headers={"Content-Type": "text/html; charset=utf-8"})
    return httpx.Response(404, text="missing", headers={"Content-Type": "text/html"})


def _crawler(handler=_handler, **overrides) -> WebCrawler:
    return WebCrawler(FetchConfig(**overrides), transport=httpx.MockTransport(handler))


def _run(crawler, seeds, **kwargs):
    return asyncio.run(crawler.crawl(seeds, **kwargs))


def _urls(statuses):
    return sorted(s.url for s in statuses)


# ------------------------------------------------------------------
# URL helpers
# ------------------------------------------------------------------

def test_normalize_url():
    assert normalize_url("https://docs.test") == "https://docs.test/"
    assert normalize_url("https://docs.test/a#frag") == "https://docs.test/a"
    assert normalize_url("ftp://docs.test/a") is None
    assert normalize_url("mailto:me@docs.test") is None


# ------------------------------------------------------------------
# Crawling
# ------------------------------------------------------------------

def test_depth_zero_fetches_only_seeds():
    report = _run(_crawler(), ["https://docs.test/"], max_depth=0)
    assert _urls(report.fetched) == ["https://docs.test/"]


def test_depth_one_follows_links_once():
    report = _run(_crawler(), ["https://docs.test/"], max_depth=1)
    assert _urls(report.fetched) == [
        "https://docs.test/",
        "https://docs.test/a",
        "https://elsewhere.test/x",
    ]
    assert all(s.depth == 1 for s in report.fetched if s.url != "https://docs.test/")


def test_default_depth_comes_from_config():
    report = _run(_crawler(max_depth=2), ["https://docs.test/"])
    assert "https://docs.test/b" in _urls(report.fetched)


def test_allowed_hosts_filter():
    report = _run(_crawler(allowed_hosts=("docs.test",)), ["https://docs.test/"], max_depth=1)
    assert "https://elsewhere.test/x" not in _urls(report.fetched)
    assert "https://elsewhere.test/x" in _urls(report.skipped)


def test_deny_url_patterns():
    report = _run(_crawler(deny_url_patterns=(r"/a$",)), ["https://docs.test/"], max_depth=1)
    assert "https://docs.test/a" in _urls(report.skipped)


def test_http_error_is_reported_per_url():
    report = _run(_crawler(), ["https://docs.test/missing", "https://docs.test/b"], max_depth=0)
    (failed,) = report.failed
    assert failed.url == "https://docs.test/missing"
    assert failed.kind is ErrorKind.NETWORK
    assert failed.status_code == 404
    assert _urls(report.fetched) == ["https://docs.test/b"]


def test_non_html_is_skipped():
    report = _run(_crawler(), ["https://docs.test/data.json"], max_depth=0)
    assert report.fetched == []
    assert _urls(report.skipped) == ["https://docs.test/data.json"]


def test_timeout_kind():
    report = _run(_crawler(), ["https://docs.test/slow"], max_depth=0)
    assert report.failed[0].kind is ErrorKind.TIMEOUT


def test_oversized_response_fails():
    report = _run(_crawler(max_response_bytes=16), ["https://docs.test/b"], max_depth=0)
    assert report.failed[0].kind is ErrorKind.NETWORK


def test_on_page_receives_parsed_pages():
    pages = []

    async def collect(page):
        pages.append(page)

    _run(_crawler(), ["https://docs.test/a"], max_depth=0, on_page=collect)
    (page,) = pages
    assert page.url == "https://docs.test/a"
    assert [(b.language, b.code) for b in page.code_blocks] == [("python", "def parse(): pass")]
    assert page.links == ["https://docs.test/b"]


def test_cancel_raises():
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(CancelledError):
        _run(_crawler(), ["https://docs.test/"], max_depth=0, cancel=cancel)


def test_negative_depth_rejected():
    with pytest.raises(ValueError):
        _run(_crawler(), ["https://docs.test/"], max_depth=-1)


def test_slow_drip_body_hits_hard_timeout():
    async def drip():
        for _ in range(100):
            await asyncio.sleep(0.05)
            yield b"<p>x</p>"

    def handler(request):
        return httpx.Response(200, headers={"Content-Type": "text/html"}, content=drip())

    report = _run(_crawler(handler, request_timeout=0.2), ["https://docs.test/drip"], max_depth=0)
    (failed,) = report.failed
    assert failed.url == "https://docs.test/drip"
    assert failed.kind is ErrorKind.TIMEOUT
    assert report.fetched == []


def test_redirect_loop_reports_too_many_redirects():
    def handler(request):
        return httpx.Response(302, headers={"Location": str(request.url)})

    report = _run(_crawler(handler, max_redirects=3), ["https://docs.test/loop"], max_depth=0)
    (failed,) = report.failed
    assert failed.kind is ErrorKind.TOO_MANY_REDIRECTS


def test_links_resolve_against_redirect_target():
    def handler(request):
        if request.url.path == "/old":
            return httpx.Response(301, headers={"Location": "https://docs.test/new/page"})
        if request.url.path == "/new/page":
            return httpx.Response(200, text='<a href="next">next</a>', headers={"Content-Type": "text/html"})
        return httpx.Response(200, text="<p>next page</p>", headers={"Content-Type": "text/html"})

    pages = []

    async def collect(page):
        pages.append(page)

    report = _run(_crawler(handler), ["https://docs.test/old"], max_depth=1, on_page=collect)
    first = next(p for p in pages if p.url == "https://docs.test/old")
    assert first.final_url == "https://docs.test/new/page"
    assert first.links == ["https://docs.test/new/next"]
    assert "https://docs.test/new/next" in _urls(report.fetched)


def test_robots_txt_disallow_skips_url():
    def handler(request):
        if request.url.path == "/robots.txt":
            return httpx.Response(200, text="User-agent: *\nDisallow: /a\n")
        return _handler(request)

    crawler = _crawler(handler, respect_robots_txt=True)
    report = _run(crawler, ["https://docs.test/a", "https://docs.test/b"], max_depth=0)
    (skipped,) = report.skipped
    assert skipped.url == "https://docs.test/a"
    assert skipped.message == "disallowed by robots.txt"
    assert _urls(report.fetched) == ["https://docs.test/b"]


def test_robots_txt_ignored_by_default():
    def handler(request):
        if request.url.path == "/robots.txt":
            return httpx.Response(200, text="User-agent: *\nDisallow: /\n")
        return _handler(request)

    report = _run(_crawler(handler), ["https://docs.test/b"], max_depth=0)
    assert _urls(report.fetched) == ["https://docs.test/b"]


# ------------------------------------------------------------------
# parse_page
# ------------------------------------------------------------------

def test_parse_page_extracts_title_language_and_links():
    body = PAGES["https://docs.test/"].encode()
    page = parse_page("https://docs.test/", "https://docs.test/", 0, body)
    assert page.title == "Home"
    assert page.detected_language == "en"
    assert page.links == ["https://docs.test/a", "https://elsewhere.test/x"]
    assert page.size_bytes == len(body)


def test_parse_page_text_and_fenced_prose_blocks():
    html = "<html><body><main><p>Intro text</p><p>```rust\nfn fenced() {}\n```</p></main></body></html>"
    page = parse_page("https://docs.test/f", "https://docs.test/f", 0, html.encode())
    assert "Intro text" in page.text
    assert [(b.language, b.code.strip()) for b in page.code_blocks] == [("rust", "fn fenced() {}")]
