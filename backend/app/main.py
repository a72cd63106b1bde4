"""Application bootstrap for the Photo Embedding Atlas API.

This module wires the FastAPI application, attaches middleware, and exposes small lifecycle utilities.

Functions:
    lifespan(app: FastAPI): Initialise database state and the shared embedding client, then yield control back to FastAPI.
    health_check(): Lightweight readiness check used by monitoring and local smoke tests.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import api_router
from app.core.config import get_settings
from app.db.session import init_db
from app.services.vertex_client import VertexEmbeddingService

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    async with httpx.AsyncClient(timeout=settings.vertex_request_timeout) as client:
        app.state.embedding_generator = VertexEmbeddingService(client=client, settings=settings)
        yield
        app.state.embedding_generator = None


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    generator = getattr(app.state, "embedding_generator", None)
    return {
        "status": "ok",
        "embedding_generator_configured": bool(generator is not None and generator.is_configured),
    }
