import asyncio
import sys

from aiohttp import web

from api.app import create_app
from api.context import RENTALS
from config.settings import settings
from database.connection import engine, init_db
from database.redis import redis_client
from utils.logger import app_logger
from workers.expiry_worker import expiry_sweep_worker


async def main():
    app_logger.info("Application starting up...")
    try:
        await init_db()
        await redis_client.ping()
        app_logger.info("Database and Redis initialized successfully.")
    except Exception as e:
        app_logger.critical(f"Initialization failed: {e}")
        sys.exit(1)

    app = create_app()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.HOST, settings.PORT)
    await site.start()
    app_logger.info(f"API server started on {settings.HOST}:{settings.PORT}.")

    sweep_task = None
    if settings.EXPIRY_SWEEP_ENABLED:
        sweep_task = asyncio.create_task(expiry_sweep_worker(app[RENTALS]))

    try:
        # Serve until the process is interrupted.
        await asyncio.Event().wait()
    finally:
        app_logger.warning("Shutdown sequence initiated...")
        if sweep_task is not None:
            sweep_task.cancel()
            await asyncio.gather(sweep_task, return_exceptions=True)
        await runner.cleanup()
        await redis_client.aclose()
        await engine.dispose()
        app_logger.info("Shutdown complete.")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        app_logger.warning("Application was stopped manually.")
