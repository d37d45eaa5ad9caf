import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.v1.router import api_router
from src.config import get_settings, settings
from src.core.dependencies import get_notification_sink
from src.database import async_session_maker, init_db
from src.services import events, reservation

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def run_maintenance_once() -> None:
    """Expire unpaid bookings, then relay pending outbox events."""
    async with async_session_maker() as session:
        try:
            await reservation.expire_unpaid_reservations(session, settings=get_settings())
            await session.commit()
        except Exception:
            await session.rollback()
            raise

    async with async_session_maker() as session:
        try:
            await events.dispatch_pending_events(session, get_notification_sink())
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def _maintenance_loop(interval_seconds: int) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await run_maintenance_once()
        except Exception as exc:
            # Next tick retries; a failed sweep must not stop the service
            logger.exception("Maintenance run failed: %s", exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    task = None
    interval = get_settings().sweep_interval_seconds
    if interval > 0:
        task = asyncio.create_task(_maintenance_loop(interval))
    yield
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task


app = FastAPI(
    title=settings.app_name,
    description="Vehicle rental booking, pricing and reservation lifecycle API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


def run():
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
