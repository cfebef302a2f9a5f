import logging

from fastapi import FastAPI

from loki_check.config import settings
from loki_check.api.verify import router as verify_router

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

app = FastAPI(title="Loki Check")

app.include_router(verify_router, prefix="/api/logs", tags=["logs"])

logger.info("Loki Check configured for %s", settings.loki_url)


@app.get("/health")
async def health():
    return {"status": "ok"}
