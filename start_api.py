#!/usr/bin/env python3
"""Container entry point: wait for the database, migrate, seed, then exec uvicorn.

Host, port, worker count and whether to seed all come from ``settings``.
"""
import logging
import os
import sys

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from turnstile.core.config import settings
from turnstile.core.logging import configure_logging

logger = logging.getLogger("turnstile.start")


def migrate() -> None:
    cfg = Config(os.path.join(os.path.dirname(os.path.abspath(__file__)), "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    command.upgrade(cfg, "head")


def seed() -> None:
    # fresh engine: the app engine may have been created while alembic loaded env.py
    seed_engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
    try:
        from turnstile.seed import run as run_seed
        run_seed(sessionmaker(autocommit=False, autoflush=False, bind=seed_engine)())
    finally:
        seed_engine.dispose()


def uvicorn_argv() -> list[str]:
    argv = [sys.executable, "-m", "uvicorn", "turnstile.main:app",
            "--host", settings.API_HOST, "--port", str(settings.API_PORT)]
    if settings.API_WORKERS > 1:
        argv += ["--workers", str(settings.API_WORKERS)]
    return argv


def main() -> None:
    configure_logging()
    import wait_for_db  # noqa: F401  blocks until Postgres answers

    migrate()
    if settings.SEED_ON_START:
        seed()
    else:
        logger.info("SEED_ON_START is off, skipping seed")
    argv = uvicorn_argv()
    logger.info(f"starting API on {settings.API_HOST}:{settings.API_PORT}")
    os.execv(sys.executable, argv)


if __name__ == "__main__":
    main()
