import asyncio
import socket
import ssl
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Sequence

import httpx
from loguru import logger
from tortoise.exceptions import BaseORMException, IntegrityError

from sitesearch.monitoring.metrics_server import (
    ACTIVE_TASKS,
    FETCH_COUNT,
    FETCH_FAILURES,
    FETCH_LATENCY,
    PAGES_STORED,
    SKIPPED_NON_HTML,
)
from sitesearch.morphology.lemma_processor import LemmaProcessor
from sitesearch.parsing.html_extractor import extract_links
from sitesearch.storage.index_store import IndexStore
from sitesearch.storage.models import Site
from sitesearch.utils.filters import is_crawlable_link
from sitesearch.utils.url_utils import MAX_PATH_LENGTH, canonical_url, get_origin, site_relative_path

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
TEXT_CONTENT_MARKERS = ("text/", "json", "xml", "javascript")

# textual non-HTML bodies are kept as a prefix for diagnostics; binary ones are not read
NON_HTML_BODY_LIMIT = 4096

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
)
_TLS_MARKERS = ("[ssl", "ssl:", "certificate_verify_failed", "tlsv1", "handshake")


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    DNS = "dns"
    TLS = "tls"
    CONNECTION = "connection"
    HTTP_STATUS = "http_status"
    CONTENT_TYPE = "content_type"
    OFF_SITE_REDIRECT = "off_site_redirect"
    STORAGE_CONFLICT = "storage_conflict"
    STORAGE = "storage"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class CrawlFailure:
    kind: ErrorKind
    message: str


@dataclass
class FetchResult:
    url: str
    resolved_url: str
    status_code: int = 0
    content_type: str = ""
    body: str = ""
    error: Optional[CrawlFailure] = None

    @property
    def is_html(self) -> bool:
        return any(ctype in self.content_type for ctype in HTML_CONTENT_TYPES)

    @property
    def is_text(self) -> bool:
        return any(marker in self.content_type for marker in TEXT_CONTENT_MARKERS)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _chain_matches(exc: BaseException, types: tuple, markers: Sequence[str]) -> bool:
    for item in _exception_chain(exc):
        if isinstance(item, types):
            return True
        text = str(item).lower()
        if any(marker in text for marker in markers):
            return True
    return False


def classify_error(exc: BaseException) -> CrawlFailure:
    """Map an exception raised while crawling to a failure kind and the site's error message."""
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return CrawlFailure(ErrorKind.TIMEOUT, "connection timed out")
    if isinstance(exc, IntegrityError):
        return CrawlFailure(
            ErrorKind.STORAGE_CONFLICT,
            "storage constraint violated (path too long or duplicate key)",
        )
    if isinstance(exc, BaseORMException):
        return CrawlFailure(ErrorKind.STORAGE, f"storage error: {exc}")
    if isinstance(exc, httpx.HTTPStatusError):
        return CrawlFailure(ErrorKind.HTTP_STATUS, f"HTTP {exc.response.status_code}")
    if isinstance(exc, (httpx.TransportError, OSError)):
        if _chain_matches(exc, (socket.gaierror,), _DNS_MARKERS):
            return CrawlFailure(ErrorKind.DNS, "host not found")
        if _chain_matches(exc, (ssl.SSLError,), _TLS_MARKERS):
            return CrawlFailure(ErrorKind.TLS, "SSL handshake failed")
        return CrawlFailure(ErrorKind.CONNECTION, f"connection error: {str(exc) or type(exc).__name__}")
    return CrawlFailure(ErrorKind.UNEXPECTED, f"indexing failed: {type(exc).__name__}")


# --------------------------
#  HTTP fetch
# --------------------------
async def fetch_page(client: httpx.AsyncClient, url: str, *, user_agent: str, site_label: str = "") -> FetchResult:
    """GET ``url``. HTTP error statuses come back as data, transport failures as ``error``."""
    FETCH_COUNT.labels(site=site_label).inc()
    start = time.perf_counter()

    try:
        resp = await client.get(
            url,
            headers={
                "User-Agent": user_agent,
                "Accept": (
                    "text/html,application/xhtml+xml,application/xml;q=0.9,"
                    "*/*;q=0.8"
                ),
                "Accept-Language": "ru,en;q=0.9",
            },
        )
    except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
        failure = classify_error(exc)
        FETCH_FAILURES.labels(site=site_label, kind=failure.kind.value).inc()
        logger.debug(f"Fetch failed for {url}: {failure.kind.value} ({exc!r})")
        return FetchResult(url=url, resolved_url=url, error=failure)
    finally:
        FETCH_LATENCY.labels(site=site_label).observe(time.perf_counter() - start)

    content_type = (resp.headers.get("Content-Type") or "").lower()
    result = FetchResult(
        url=url,
        resolved_url=str(resp.url),
        status_code=resp.status_code,
        content_type=content_type,
    )
    if result.is_html:
        result.body = resp.text or ""
    elif result.is_text:
        result.body = (resp.text or "")[:NON_HTML_BODY_LIMIT]
    return result


# --------------------------
#  Crawl tree
# --------------------------
class VisitedUrls:
    """URLs claimed during one crawl run of one site.

    ``claim`` checks and inserts without awaiting, so on the event loop it is
    atomic: of several tasks discovering the same link only one gets True.
    """

    def __init__(self):
        self._urls = set()

    def claim(self, url: str) -> bool:
        key = canonical_url(url)
        if key in self._urls:
            return False
        self._urls.add(key)
        return True

    def __contains__(self, url: str) -> bool:
        return canonical_url(url) in self._urls

    def __len__(self) -> int:
        return len(self._urls)


@dataclass
class CrawlContext:
    site: Site
    client: httpx.AsyncClient
    store: IndexStore
    lemma_processor: LemmaProcessor
    pool: asyncio.Semaphore
    stop_event: asyncio.Event
    user_agent: str
    blocked_extensions: Sequence[str] = ()
    store_non_html_pages: bool = True
    visited: VisitedUrls = field(default_factory=VisitedUrls)
    site_origin: str = ""

    def __post_init__(self):
        if not self.site_origin:
            self.site_origin = get_origin(self.site.url) or ""

    @property
    def cancelled(self) -> bool:
        return self.stop_event.is_set()


class CrawlTask:
    """Fetch one URL, store and index it, then crawl its same-site links in parallel.

    The worker-pool slot is held only while fetching and indexing, never while
    waiting for children, so a deep tree cannot starve the pool.
    """

    def __init__(self, url: str, context: CrawlContext):
        self.url = url
        self.context = context

    async def run(self) -> None:
        ctx = self.context
        if not ctx.visited.claim(self.url):
            return
        if ctx.cancelled:
            return

        try:
            links = await self._process()
        except Exception as exc:
            await self._fail(classify_error(exc), exc)
            return

        if not links or ctx.cancelled:
            return

        children = [asyncio.create_task(CrawlTask(link, ctx).run()) for link in links]
        results = await asyncio.gather(*children, return_exceptions=True)
        for link, outcome in zip(links, results):
            if isinstance(outcome, Exception):
                logger.error(f"[{ctx.site.url}] Crawl task for {link} crashed: {outcome!r}")

    async def _process(self) -> List[str]:
        ctx = self.context
        async with ctx.pool:
            # queued behind other tasks while stop was requested
            if ctx.cancelled:
                return []
            ACTIVE_TASKS.inc()
            try:
                return await self._fetch_and_index()
            finally:
                ACTIVE_TASKS.dec()

    async def _fetch_and_index(self) -> List[str]:
        ctx = self.context
        site_url = ctx.site.url

        result = await fetch_page(ctx.client, self.url, user_agent=ctx.user_agent, site_label=site_url)
        if ctx.cancelled:
            logger.debug(f"[{site_url}] Discarding {self.url} fetched after stop")
            return []

        if result.error is not None:
            await self._fail(result.error)
            return []

        resolved = result.resolved_url
        if canonical_url(resolved) != canonical_url(self.url):
            if get_origin(resolved) != ctx.site_origin:
                logger.info(f"[{site_url}] {self.url} redirects off-site to {resolved}; skipped")
                return []
            if not ctx.visited.claim(resolved):
                return []

        if not result.is_html:
            SKIPPED_NON_HTML.labels(site=site_url).inc()
            if not ctx.store_non_html_pages:
                logger.debug(f"[{site_url}] Skipping non-HTML {resolved} ({result.content_type})")
                return []

        path = site_relative_path(resolved, MAX_PATH_LENGTH)
        page = await ctx.store.replace_page(ctx.site.id, path, result.status_code, result.body)
        PAGES_STORED.labels(site=site_url).inc()

        if not (result.is_html and result.is_success) or ctx.cancelled:
            logger.info(f"[{site_url}] Stored {path} (status={result.status_code}, not indexed)")
            return []

        await ctx.lemma_processor.process_and_save_lemmas(result.body, ctx.site, page)

        links = [
            link
            for link in extract_links(resolved, result.body)
            if is_crawlable_link(ctx.site_origin, link, ctx.blocked_extensions)
        ]
        logger.info(
            f"[{site_url}] Crawled {path} ({len(result.body)} chars, status={result.status_code}, links={len(links)})"
        )
        return links

    async def _fail(self, failure: CrawlFailure, exc: Optional[BaseException] = None) -> None:
        ctx = self.context
        if ctx.cancelled:
            return
        if exc is not None:
            FETCH_FAILURES.labels(site=ctx.site.url, kind=failure.kind.value).inc()
        logger.warning(f"[{ctx.site.url}] {self.url} failed: {failure.message}")
        await ctx.store.mark_site_failed(ctx.site.id, failure.message)
