"""Утилита для первичной инициализации базы данных."""

from __future__ import annotations

import asyncio
from pathlib import Path

from loguru import logger
from sqlalchemy.engine import make_url

from config.settings import get_settings
from cryptoflash.db import get_engine, init_db
from cryptoflash.logging_config import setup_logging


async def _run() -> None:
    dsn = get_settings().database.dsn
    database = make_url(dsn).database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)
    await init_db()
    await get_engine().dispose()
    logger.info("Таблицы созданы: {dsn}", dsn=dsn)


def main() -> None:
    cfg = get_settings().logging
    setup_logging(json=cfg.json_logs, level=cfg.level)
    asyncio.run(_run())


if __name__ == "__main__":
    main()
