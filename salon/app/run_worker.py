"""Runtime entrypoint for the notifications worker."""
import argparse
import asyncio
import os
from contextlib import suppress

from salon.app.core.db import init_db
from salon.app.core.logger import configure_logging
from salon.app.core.notifications import create_bot
from salon.app.workers.notifications import start_notifications_worker

logger = configure_logging()


async def main(create_schema: bool = False) -> None:
    bot = create_bot()
    if bot is None:
        logger.error("BOT_TOKEN is not set")
        raise SystemExit(1)

    if create_schema:
        await init_db()

    stop_event = asyncio.Event()
    stop_notify = await start_notifications_worker(bot)
    logger.info("Worker running; press Ctrl+C to stop")

    try:
        await stop_event.wait()
    finally:
        try:
            await stop_notify()
        except Exception:
            logger.exception("main: stop_notify failed during shutdown")
        await bot.session.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(prog="run_worker.py")
    parser.add_argument(
        "--init-db",
        action="store_true",
        default=os.getenv("RUN_INIT_DB", "0").lower() in {"1", "true", "yes"},
        help="create missing tables before starting (dev only; use alembic in production)",
    )
    args = parser.parse_args()

    with suppress(KeyboardInterrupt, SystemExit):
        asyncio.run(main(create_schema=args.init_db))
