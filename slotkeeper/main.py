import asyncio
import logging

from fastapi import FastAPI

from slotkeeper.infrastructure.config import settings
from slotkeeper.infrastructure.database import Base, engine
from slotkeeper.presentation.routers import router
from slotkeeper.services.reservation_service import get_engine, seed_facilities_service

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="slotkeeper")

_background: set[asyncio.Task] = set()


async def _sweep_periodically(interval: float) -> None:
    reservation_engine = get_engine()
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(reservation_engine.sweep_expired)
        except Exception:
            logger.exception("Periodic sweep failed; retrying in %.0fs", interval)


@app.on_event("startup")
def _seed_facilities_on_startup() -> None:
    """
    Register the seed layouts for facilities that have none yet
    """
    seed_facilities_service(get_engine(), settings.seed_path)


@app.on_event("startup")
async def _start_sweeper() -> None:
    if settings.sweep_interval_seconds <= 0:
        logger.info("Periodic sweep disabled")
        return
    task = asyncio.create_task(_sweep_periodically(settings.sweep_interval_seconds))
    _background.add(task)


@app.on_event("shutdown")
async def _stop_sweeper() -> None:
    for task in _background:
        task.cancel()
    await asyncio.gather(*_background, return_exceptions=True)
    _background.clear()


Base.metadata.create_all(bind=engine)
app.include_router(router)
