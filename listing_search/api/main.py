"""
FastAPI application for marketplace listing search.
"""

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import os

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
import uvicorn

from listing_search import __version__
from listing_search.config import get_search_settings
from listing_search.db import close_db, get_http_session, get_pg_pool, get_redis, init_db
from listing_search.service import build_orchestrator
from .cache import SearchResultCache
from .dependencies import get_metrics_registry
from .routers import search
from .schemas import HealthResponse

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    logger.info("Starting listing search API...")
    settings = get_search_settings()
    await init_db(settings)

    registry = CollectorRegistry()
    app.state.metrics_registry = registry
    app.state.orchestrator = build_orchestrator(
        settings, get_pg_pool(), get_http_session(), registry=registry
    )
    app.state.search_cache = SearchResultCache(
        get_redis(),
        ttl_seconds=settings.cache.ttl_seconds,
        enabled=settings.cache.enabled,
    )
    logger.info("Search engine initialized")

    yield

    # Shutdown
    logger.info("Shutting down listing search API...")
    await close_db()


app = FastAPI(
    title="Listing Search API",
    description="Hybrid full-text and geographic search over marketplace listings",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    return HealthResponse(status="ok", version=__version__)


@app.get("/metrics")
async def metrics(registry: CollectorRegistry = Depends(get_metrics_registry)):
    """Prometheus scrape endpoint"""
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)


app.include_router(search.router, prefix="/api", tags=["search"])


def run():
    """Serve the API with uvicorn"""
    uvicorn.run(
        "listing_search.api.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
    )


if __name__ == "__main__":
    run()
