import asyncio
from typing import Optional

import structlog
from fastapi import FastAPI
from sqlmodel import Session

from finance_common.log import configure_logging

from . import config
from .aggregator import get_aggregator
from .db import engine, init_db
from .errors import register_error_handlers
from .events import SYNC_COMPLETED, publisher
from .routes import accounts, analytics, banking, internal, transactions
from .sync import SyncAlreadyRunning, SyncService

configure_logging("account-service")
logger = structlog.get_logger(__name__)

app = FastAPI(title="account-service")
register_error_handlers(app)

app.include_router(accounts.router)
app.include_router(transactions.router)
app.include_router(banking.router)
app.include_router(analytics.router)
app.include_router(internal.router)

sync_task: Optional[asyncio.Task] = None


def run_sync_all() -> Optional[dict]:
    with Session(engine) as session:
        try:
            return SyncService(session, get_aggregator()).sync_all()
        except SyncAlreadyRunning:
            logger.info("sync_all_skipped", reason="running elsewhere")
            return None


async def periodic_sync(interval_minutes: int):
    while True:
        try:
            result = await asyncio.to_thread(run_sync_all)
            if result:
                await publisher.publish(SYNC_COMPLETED, {"scope": "all", **result})
        except Exception:
            logger.exception("periodic_sync_failed")
        await asyncio.sleep(interval_minutes * 60)


@app.on_event("startup")
async def on_start():
    global sync_task
    init_db()
    if config.EVENTS_ENABLED:
        try:
            await publisher.connect()
        except Exception as e:
            logger.warning("event_publisher_unavailable", error=str(e))
    if config.SYNC_INTERVAL_MINUTES > 0:
        sync_task = asyncio.create_task(periodic_sync(config.SYNC_INTERVAL_MINUTES))
        logger.info("auto_sync_started", interval_minutes=config.SYNC_INTERVAL_MINUTES)


@app.on_event("shutdown")
async def on_shutdown():
    if sync_task:
        sync_task.cancel()
        logger.info("auto_sync_stopped")
    await publisher.close()


@app.get("/health")
def health():
    return {"status": "ok"}
