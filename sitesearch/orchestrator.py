import asyncio
from typing import Dict, List, Optional, Sequence

import httpx
from loguru import logger

from sitesearch.monitoring.metrics_server import CRAWL_RUNNING
from sitesearch.morphology.lemma_processor import LemmaProcessor
from sitesearch.responses import OperationResult
from sitesearch.storage.index_store import IndexStore
from sitesearch.storage.models import Site, SiteStatus
from sitesearch.utils.config_loader import AppConfig, SiteConfig
from sitesearch.utils.url_utils import MAX_PATH_LENGTH, get_origin, site_relative_path, toggle_www
from sitesearch.worker import (
    CrawlContext,
    CrawlFailure,
    CrawlTask,
    ErrorKind,
    FetchResult,
    VisitedUrls,
    classify_error,
    fetch_page,
)

ALREADY_RUNNING = "indexing already running"
NOT_RUNNING = "indexing is not running"
STOPPED_BY_OPERATOR = "stopped by operator"
BLANK_URL = "blank url"
MALFORMED_URL = "malformed url"
OUTSIDE_CONFIGURED_SITES = "url is outside the configured sites"


def unique_sites(site_configs: Sequence[SiteConfig]) -> List[SiteConfig]:
    """Keep the first config per origin; configs with unusable URLs are dropped."""
    unique: Dict[str, SiteConfig] = {}
    for site_config in site_configs:
        origin = get_origin(site_config.url)
        if origin is None:
            logger.warning(f"Ignoring site with invalid root URL: {site_config.url!r}")
            continue
        unique.setdefault(origin, site_config)
    return list(unique.values())


class CrawlOrchestrator:
    """Runs full crawls of the configured sites and single-page reindexing.

    Site state machine: INDEXING -> INDEXED | FAILED, and back to INDEXING
    when a crawl or a single-page reindex starts.
    """

    def __init__(
        self,
        config: AppConfig,
        store: Optional[IndexStore] = None,
        lemma_processor: Optional[LemmaProcessor] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.store = store or IndexStore()
        self.lemma_processor = lemma_processor or LemmaProcessor(self.store)
        self.transport = transport

        self._running = False
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._run_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def _make_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=self.config.request_timeout),
            follow_redirects=True,
            transport=self.transport,
        )

    # --------------------------
    #  Full crawl
    # --------------------------
    async def start_all(self, site_configs: Optional[Sequence[SiteConfig]] = None) -> OperationResult:
        if self._running:
            return OperationResult.fail(ALREADY_RUNNING)
        self._running = True

        async with self._lock:
            try:
                sites = await self._reset_sites(unique_sites(site_configs or self.config.sites))
            except Exception:
                self._running = False
                raise

            self._stop_event = asyncio.Event()
            self._run_task = asyncio.create_task(self._run(sites, self._stop_event))
            CRAWL_RUNNING.set(1)

        logger.info(f"Indexing started for {len(sites)} site(s)")
        return OperationResult.ok()

    async def _reset_sites(self, site_configs: Sequence[SiteConfig]) -> List[Site]:
        sites = []
        for site_config in site_configs:
            site = await self.store.reset_site(site_config)
            logger.info(f"[{site.url}] Site reset, status {SiteStatus.INDEXING.value}")
            sites.append(site)
        return sites

    async def _run(self, sites: List[Site], stop_event: asyncio.Event) -> None:
        pool = asyncio.Semaphore(max(1, self.config.crawler_workers))
        try:
            async with self._make_client() as client:
                await asyncio.gather(
                    *(self._crawl_site(site, client, pool, stop_event) for site in sites),
                    return_exceptions=True,
                )
        finally:
            if not stop_event.is_set():
                self._running = False
                CRAWL_RUNNING.set(0)
                logger.info("Indexing finished")

    async def _crawl_site(
        self,
        site: Site,
        client: httpx.AsyncClient,
        pool: asyncio.Semaphore,
        stop_event: asyncio.Event,
    ) -> None:
        context = CrawlContext(
            site=site,
            client=client,
            store=self.store,
            lemma_processor=self.lemma_processor,
            pool=pool,
            stop_event=stop_event,
            user_agent=self.config.crawler_user_agent,
            blocked_extensions=self.config.blocked_extensions,
            store_non_html_pages=self.config.store_non_html_pages,
            visited=VisitedUrls(),
        )
        try:
            await CrawlTask(site.url, context).run()
        except Exception as exc:
            # the task tree records its own failures; this is a failure of the tree itself
            failure = classify_error(exc)
            logger.exception(f"[{site.url}] Crawl aborted")
            if not stop_event.is_set():
                await self.store.mark_site_failed(site.id, failure.message)
            return

        if stop_event.is_set():
            return
        if await self.store.mark_site_indexed(site.id):
            logger.info(f"[{site.url}] Indexed {len(context.visited)} URL(s)")

    async def join(self) -> None:
        """Wait for the current crawl, if any, to finish."""
        if self._run_task is not None:
            await asyncio.gather(self._run_task, return_exceptions=True)

    async def stop_all(self) -> OperationResult:
        if not self._running:
            return OperationResult.fail(NOT_RUNNING)

        async with self._lock:
            self._stop_event.set()
            await self._drain()
            self._running = False
            CRAWL_RUNNING.set(0)
            failed = await self.store.fail_indexing_sites(STOPPED_BY_OPERATOR)

        logger.info(f"Indexing stopped by operator; {failed} site(s) marked {SiteStatus.FAILED.value}")
        return OperationResult.ok()

    async def _drain(self) -> None:
        run_task = self._run_task
        if run_task is None or run_task.done():
            return

        done, _ = await asyncio.wait({run_task}, timeout=self.config.stop_drain_timeout)
        if not done:
            logger.warning("Crawl did not drain in time; cancelling remaining tasks")
            run_task.cancel()
            await asyncio.gather(run_task, return_exceptions=True)

    # --------------------------
    #  Single page
    # --------------------------
    def _match_site(self, url: str) -> Optional[SiteConfig]:
        origin = get_origin(url)
        matches = [sc for sc in unique_sites(self.config.sites) if get_origin(sc.url) == origin]
        return matches[0] if len(matches) == 1 else None

    async def index_single(self, url: Optional[str]) -> OperationResult:
        if url is None or not url.strip():
            return OperationResult.fail(BLANK_URL)
        url = url.strip()
        if get_origin(url) is None:
            return OperationResult.fail(MALFORMED_URL)

        site_config = self._match_site(url)
        if site_config is None:
            return OperationResult.fail(OUTSIDE_CONFIGURED_SITES)

        site = await self.store.get_or_create_site(site_config)
        await self.store.set_site_status(site.id, SiteStatus.INDEXING)

        try:
            outcome = await self._index_page(site, url)
        except Exception as exc:
            outcome = classify_error(exc)
            logger.exception(f"[{site.url}] Reindexing {url} failed")

        if isinstance(outcome, CrawlFailure):
            await self.store.mark_site_failed(site.id, outcome.message)
            logger.warning(f"[{site.url}] Reindexing {url} failed: {outcome.message}")
        else:
            await self.store.set_site_status(site.id, SiteStatus.INDEXED, outcome)
            logger.info(f"[{site.url}] Reindexed {url}")
        return OperationResult.ok()

    async def _fetch_single(self, client: httpx.AsyncClient, url: str, site: Site) -> FetchResult:
        result = await fetch_page(client, url, user_agent=self.config.crawler_user_agent, site_label=site.url)
        if result.error is not None and result.error.kind == ErrorKind.DNS:
            alt_url = toggle_www(url)
            if alt_url is not None:
                logger.info(f"[{site.url}] Host of {url} not found; retrying as {alt_url}")
                result = await fetch_page(
                    client, alt_url, user_agent=self.config.crawler_user_agent, site_label=site.url
                )
        return result

    async def _index_page(self, site: Site, url: str):
        """Returns the site's ``last_error`` on success (None or an HTTP note), or a CrawlFailure."""
        async with self._make_client() as client:
            result = await self._fetch_single(client, url, site)

        if result.error is not None:
            return result.error

        if get_origin(result.resolved_url) != get_origin(site.url):
            return CrawlFailure(ErrorKind.OFF_SITE_REDIRECT, f"redirected outside the site: {result.resolved_url}")

        path = site_relative_path(result.resolved_url, MAX_PATH_LENGTH)
        if not result.is_html:
            if self.config.store_non_html_pages:
                await self.store.replace_page(site.id, path, result.status_code, result.body)
            return CrawlFailure(ErrorKind.CONTENT_TYPE, f"unsupported content type: {result.content_type or 'none'}")

        page = await self.store.replace_page(site.id, path, result.status_code, result.body)
        if not result.is_success:
            return f"HTTP {result.status_code} while indexing {path}"

        await self.lemma_processor.process_and_save_lemmas(result.body, site, page)
        return None
