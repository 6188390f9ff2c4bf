from loguru import logger
from tortoise import Tortoise

from sitesearch.utils.db_utils import sqlite_file_path, to_tortoise_dsn

MODELS_MODULE = "sitesearch.storage.models"


async def init_database(database_url: str) -> None:
    """
    Connect Tortoise ORM and create or verify the index tables.
    """
    db_url = to_tortoise_dsn(database_url)

    sqlite_path = sqlite_file_path(db_url)
    if sqlite_path is not None:
        sqlite_path.parent.mkdir(parents=True, exist_ok=True)

    logger.info("Initializing database and ORM models...")

    await Tortoise.init(
        db_url=db_url,
        modules={"models": [MODELS_MODULE]},
    )

    await Tortoise.generate_schemas(safe=True)
    logger.info("Index tables created or verified.")


async def close_database() -> None:
    await Tortoise.close_connections()
