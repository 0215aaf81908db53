"""
FastAPI application entry point for the AdGate API.

Wires logging, the database pool lifecycle, CORS and the routers. The rule
evaluation endpoints work without a database; persistence endpoints need
DATABASE_URL.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import asyncpg
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adgate.api import api_router
from adgate.core.database import close_db, init_db

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    On startup open the database pool; on shutdown close it.

    A failed pool init is logged and startup continues so the pure
    evaluation endpoints stay available.
    """
    logger.info("AdGate API starting")
    try:
        await init_db()
    except (RuntimeError, OSError, asyncpg.PostgresError) as e:
        logger.error(f"Failed to initialize database: {e}")

    yield

    logger.info("AdGate API shutting down")
    await close_db()


app = FastAPI(
    title="AdGate API",
    version="1.0.0",
    description=(
        "Decision-gating service for ad creative analysis. Decides whether a "
        "creative may be scored, at what confidence, which analysis systems may "
        "speak, and whether recommendations are specific enough to show."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring and load balancer probes."""
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {
        "name": "AdGate API",
        "version": "1.0.0",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "adgate.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
