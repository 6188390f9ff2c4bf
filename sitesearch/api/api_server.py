from typing import Optional

from aiohttp import web
from loguru import logger

from sitesearch.monitoring.metrics_server import metrics_handler
from sitesearch.orchestrator import CrawlOrchestrator
from sitesearch.responses import OperationResult, SearchResponse
from sitesearch.search import SearchEngine
from sitesearch.statistics import StatisticsService

ORCHESTRATOR = web.AppKey("orchestrator", CrawlOrchestrator)
SEARCH_ENGINE = web.AppKey("search_engine", SearchEngine)
STATISTICS = web.AppKey("statistics", StatisticsService)

DEFAULT_LIMIT = 20


def envelope(result: OperationResult) -> web.Response:
    return web.json_response(result.to_json(), status=200 if result.success else 400)


def _int_param(request: web.Request, name: str, default: int) -> int:
    raw = request.query.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


async def _param(request: web.Request, name: str) -> Optional[str]:
    """Query string first, then a form body on POST."""
    value = request.query.get(name)
    if value is None and request.method == "POST" and request.can_read_body:
        form = await request.post()
        field = form.get(name)
        value = field if isinstance(field, str) else None
    return value


# -------------------------
# Handlers
# -------------------------

async def start_indexing(request: web.Request) -> web.Response:
    return envelope(await request.app[ORCHESTRATOR].start_all())


async def stop_indexing(request: web.Request) -> web.Response:
    return envelope(await request.app[ORCHESTRATOR].stop_all())


async def index_page(request: web.Request) -> web.Response:
    url = await _param(request, "url")
    return envelope(await request.app[ORCHESTRATOR].index_single(url))


async def search(request: web.Request) -> web.Response:
    try:
        offset = _int_param(request, "offset", 0)
        limit = _int_param(request, "limit", DEFAULT_LIMIT)
    except ValueError:
        return envelope(SearchResponse.fail("offset and limit must be integers"))

    result = await request.app[SEARCH_ENGINE].search(
        request.query.get("query"),
        request.query.get("site"),
        offset=offset,
        limit=limit,
    )
    return envelope(result)


async def statistics(request: web.Request) -> web.Response:
    return envelope(await request.app[STATISTICS].get_statistics())


# -------------------------
# Application
# -------------------------

def create_app(
    orchestrator: CrawlOrchestrator,
    search_engine: SearchEngine,
    statistics_service: StatisticsService,
) -> web.Application:
    app = web.Application()
    app[ORCHESTRATOR] = orchestrator
    app[SEARCH_ENGINE] = search_engine
    app[STATISTICS] = statistics_service

    for method in ("GET", "POST"):
        app.router.add_route(method, "/api/startIndexing", start_indexing)
        app.router.add_route(method, "/api/stopIndexing", stop_indexing)
        app.router.add_route(method, "/api/indexPage", index_page)
    app.router.add_get("/api/search", search)
    app.router.add_get("/api/statistics", statistics)
    app.router.add_get("/metrics", metrics_handler)
    return app


async def start_api_server(app: web.Application, host: str = "0.0.0.0", port: int = 8080):
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"API listening on http://{host}:{port}")
    return runner, site
