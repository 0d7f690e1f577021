from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import logging

from charterx.config.config import Config
from charterx.routes import (
    analysis_routes,
    contract_routes,
    document_extraction_routes,
    recommendation_routes,
    system_health_routes,
)
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="CharterX - Charter Party Contract Assembly and Review",
    version="1.0.0",
    description="Merge base contract, fixture recap and negotiated clauses; analyze, redline and export"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(contract_routes.router)
app.include_router(analysis_routes.router)
app.include_router(recommendation_routes.router)
app.include_router(document_extraction_routes.router)
app.include_router(system_health_routes.router)

logger.info("=" * 80)
logger.info("CharterX - Charter Party Contract pipeline")
logger.info("=" * 80)
logger.info(f"Text generation model: {Config.GEMINI_MODEL}")
logger.info(f"Minimum input length: {Config.MIN_INPUT_LENGTH} chars")
logger.info(f"Session TTL: {Config.SESSION_TTL_SECONDS}s (in-memory only)")
logger.info(f"Export page: {Config.PAGE_SIZE}, {Config.PAGE_MARGIN_MM}mm margins")
logger.info("=" * 80)


if __name__ == "__main__":
    uvicorn.run("charterx.main:app", host=Config.HOST, port=Config.PORT, reload=Config.DEBUG)
