from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s [%(name)s] %(message)s",
    stream=sys.stdout,
)

from fastapi import FastAPI

from transfer_metrics.db.session import init_db
from transfer_metrics.routers.metrics import router as metrics_router
from transfer_metrics.settings import get_settings

settings = get_settings()
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    from transfer_metrics.services.scheduler import start_scheduler, stop_scheduler

    init_db()
    if settings.scheduler_enabled:
        start_scheduler()
    else:
        log.info("Background scheduler disabled (SCHEDULER_ENABLED=false)")
    yield
    stop_scheduler()


app = FastAPI(title="Transfer Metrics", version=settings.app_version, lifespan=lifespan)

app.include_router(metrics_router)


@app.get("/health")
def health():
    return {"ok": True, "version": settings.app_version}
