from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    generate_latest,
    Counter,
    Gauge,
    Histogram,
)

# -------------------------
# Crawl Metrics
# -------------------------

FETCH_COUNT = Counter(
    "sitesearch_fetch_total",
    "HTTP fetches issued by crawl tasks",
    ["site"],
)

FETCH_FAILURES = Counter(
    "sitesearch_fetch_failures_total",
    "Fetches that ended in a classified failure",
    ["site", "kind"],
)

FETCH_LATENCY = Histogram(
    "sitesearch_fetch_latency_seconds",
    "Time to fetch a page",
    ["site"],
)

PAGES_STORED = Counter(
    "sitesearch_pages_stored_total",
    "Pages written to the index",
    ["site"],
)

SKIPPED_NON_HTML = Counter(
    "sitesearch_skipped_non_html_total",
    "Fetched responses that were not HTML",
    ["site"],
)

ACTIVE_TASKS = Gauge(
    "sitesearch_active_crawl_tasks",
    "Crawl tasks currently holding a worker slot",
)

CRAWL_RUNNING = Gauge(
    "sitesearch_crawl_running",
    "1 while a full crawl is in progress",
)

# -------------------------
# Search Metrics
# -------------------------

SEARCH_REQUESTS = Counter(
    "sitesearch_search_requests_total",
    "Search requests by outcome",
    ["outcome"],
)


# -------------------------
# /metrics endpoint
# -------------------------

async def metrics_handler(request):
    data = generate_latest()

    # aiohttp rejects a charset inside content_type
    ctype = CONTENT_TYPE_LATEST.split(";")[0]

    return web.Response(
        body=data,
        content_type=ctype
    )
