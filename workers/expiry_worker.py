import asyncio

from config.settings import settings
from services.rental_service import RentalService
from utils.logger import app_logger


async def expiry_sweep_worker(rentals: RentalService, interval: int = None):
    """
    Periodically expires rentals whose deadline has passed, so abandoned
    slots are released even if the buyer never polls again.
    """
    interval = interval or settings.EXPIRY_SWEEP_INTERVAL
    app_logger.info(f"Expiry Sweep Worker started (every {interval}s).")
    while True:
        try:
            expired = await rentals.expire_lapsed()
            if expired:
                app_logger.info(f"Expiry sweep released {expired} rental(s).")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            app_logger.opt(exception=e).critical(f"Critical error in Expiry Sweep Worker: {e}")

        await asyncio.sleep(interval)
