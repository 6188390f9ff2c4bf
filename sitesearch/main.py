import asyncio
import signal

from loguru import logger

# -------------------------------
# UVLOOP (used when installed)
# -------------------------------
try:
    import uvloop
    uvloop.install()
except ImportError:
    logger.warning("uvloop not available, using default asyncio loop.")

# -------------------------------
# INTERNAL IMPORTS
# -------------------------------
from sitesearch.api.api_server import create_app, start_api_server
from sitesearch.morphology.lemma_processor import LemmaProcessor
from sitesearch.orchestrator import CrawlOrchestrator
from sitesearch.search import SearchEngine
from sitesearch.statistics import StatisticsService
from sitesearch.storage.index_store import IndexStore
from sitesearch.storage.postgres.postgres_init import close_database, init_database
from sitesearch.utils.config_loader import load_config
from sitesearch.utils.logger import setup_logger


# -------------------------------
# MAIN APPLICATION
# -------------------------------
async def main() -> None:
    config = load_config()
    setup_logger(config.log_level, config.log_path)

    logger.info("Starting site search...")

    await init_database(config.database_url)

    store = IndexStore()
    lemma_processor = LemmaProcessor(store)
    orchestrator = CrawlOrchestrator(config, store, lemma_processor)
    search_engine = SearchEngine.from_config(config, store, lemma_processor)
    statistics = StatisticsService(config, store, orchestrator)

    app = create_app(orchestrator, search_engine, statistics)
    runner, _ = await start_api_server(app, config.api_host, config.api_port)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    logger.info(f"Site search started with {len(config.sites)} configured site(s).")

    try:
        await shutdown_event.wait()
    except asyncio.CancelledError:
        pass
    finally:
        if orchestrator.is_running:
            await orchestrator.stop_all()

        await runner.shutdown()
        await runner.cleanup()

        await close_database()
        logger.info("Site search stopped.")


# -------------------------------
# ENTRYPOINT
# -------------------------------
def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
