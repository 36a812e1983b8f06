from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from app.core.errors import install_exception_handlers
from app.core.middleware import RequestContextMiddleware
from app.db.base import Base
from app.db.session import engine

# Register models
from app.db import models  # noqa: F401

from services.assembly.api import router as assembly_router
from services.material_queue.api import router as queue_router, card_router as queue_card_router
from services.traceability.api import router as traceability_router

MES_LOG_LEVEL = os.getenv("MES_LOG_LEVEL", "INFO").upper()
MES_CREATE_SCHEMA = os.getenv("MES_CREATE_SCHEMA", "false").lower() == "true"

logging.basicConfig(
    level=getattr(logging, MES_LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("mes")

app = FastAPI(title="Tank MES Genealogy")
app.add_middleware(RequestContextMiddleware)
install_exception_handlers(app)

app.include_router(assembly_router)
app.include_router(queue_router)
app.include_router(queue_card_router)
app.include_router(traceability_router)


@app.on_event("startup")
async def _startup():
    # Dev-friendly schema creation; use `alembic upgrade head` everywhere else
    if MES_CREATE_SCHEMA:
        Base.metadata.create_all(bind=engine)
        logger.info("schema created from metadata")


@app.get("/health")
def health():
    return {"ok": True}
