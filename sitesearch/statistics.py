import time
from typing import Optional

from sitesearch.orchestrator import CrawlOrchestrator, unique_sites
from sitesearch.responses import (
    DetailedStatisticsItem,
    StatisticsData,
    StatisticsResponse,
    TotalStatistics,
)
from sitesearch.storage.index_store import IndexStore
from sitesearch.storage.models import SiteStatus
from sitesearch.utils.config_loader import AppConfig

NOT_INDEXED = "site has not been indexed"


class StatisticsService:
    """Per-site and total counts of the configured sites."""

    def __init__(
        self,
        config: AppConfig,
        store: Optional[IndexStore] = None,
        orchestrator: Optional[CrawlOrchestrator] = None,
    ):
        self.config = config
        self.store = store or IndexStore()
        self.orchestrator = orchestrator

    async def get_statistics(self) -> StatisticsResponse:
        detailed = []
        total_pages = total_lemmas = 0
        indexing = self.orchestrator is not None and self.orchestrator.is_running

        for site_config in unique_sites(self.config.sites):
            site = await self.store.get_site(site_config.url)
            if site is None:
                detailed.append(
                    DetailedStatisticsItem(
                        url=site_config.url,
                        name=site_config.name,
                        status=SiteStatus.FAILED.value,
                        status_time=int(time.time() * 1000),
                        error=NOT_INDEXED,
                        pages=0,
                        lemmas=0,
                    )
                )
                continue

            pages = await self.store.count_pages(site.id)
            lemmas = await self.store.count_lemmas(site.id)
            total_pages += pages
            total_lemmas += lemmas
            indexing = indexing or site.status == SiteStatus.INDEXING

            detailed.append(
                DetailedStatisticsItem(
                    url=site.url,
                    name=site.name,
                    status=SiteStatus(site.status).value,
                    status_time=int(site.status_time.timestamp() * 1000),
                    error=site.last_error,
                    pages=pages,
                    lemmas=lemmas,
                )
            )

        total = TotalStatistics(
            sites=len(detailed),
            pages=total_pages,
            lemmas=total_lemmas,
            indexing=indexing,
        )
        return StatisticsResponse.ok(statistics=StatisticsData(total=total, detailed=detailed))
