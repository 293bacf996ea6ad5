"""
Document Registry FastAPI Application

A REST API server for the document registry.
Provides endpoints for importing, routing and validating project documents.
"""

import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from docregistry import __version__
from docregistry.config import Config
from docregistry.models import (
    ClassificationResult,
    EngineStats,
    ImportReport,
    RegistryEntry,
    RouteReport,
    ValidationReport,
)
from docregistry.services.lifecycle_manager import LifecycleManager
from docregistry.utils.exceptions import (
    DocumentReadError,
    NotFoundError,
    PlacementConflict,
)
from docregistry.utils.logger import get_logger, setup_logging

# Global engine instance
engine: LifecycleManager | None = None
logger = get_logger(__name__)


# Pydantic models for API
class ImportRequest(BaseModel):
    """Request model for importing a document tree."""

    root: str | None = Field(default=None, description="Directory to scan (default: documents root)")


class RouteRequest(BaseModel):
    """Request model for routing a document."""

    content: str | None = Field(default=None, description="Document content")
    path: str | None = Field(default=None, description="File path or filename hint")
    register: bool = Field(default=False, description="Register the file at path after routing")


class ValidateRequest(BaseModel):
    """Request model for validation."""

    include_healthy: bool = Field(default=True, description="Include healthy entries in the report")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    engine_initialized: bool
    registry_path: str
    document_count: int
    tokenizer: str
    classifier: str


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    global engine

    # Load configuration from environment, optionally layered over a YAML file
    config = Config.from_env_or_yaml(os.getenv("DOCREG_CONFIG"))

    setup_logging(
        level=config.logging.level,
        log_to_file=config.logging.log_to_file,
        log_dir=config.logging.log_dir,
        file_rotation=config.logging.file_rotation,
        file_retention=config.logging.file_retention,
        compression=config.logging.compression,
        serialize=config.logging.serialize,
    )

    logger.info("Starting document registry server")
    engine = LifecycleManager.from_config(config)

    yield

    logger.info("Shutting down document registry server")
    await engine.close()
    engine = None
    logger.info("Cleanup complete")


# Create FastAPI app
app = FastAPI(
    title="Document Registry API",
    description="Document registry with tiered routing, JSON twins and health validation",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_engine() -> LifecycleManager:
    if not engine:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    if not engine:
        return HealthResponse(
            status="initializing",
            engine_initialized=False,
            registry_path="",
            document_count=0,
            tokenizer="",
            classifier="",
        )
    return HealthResponse(
        status="healthy",
        engine_initialized=True,
        registry_path=str(engine.registry.path),
        document_count=engine.registry.registry.document_count,
        tokenizer=engine.state.tokenizer.name,
        classifier=engine.config.classifier.provider,
    )


@app.get("/stats", response_model=EngineStats)
async def get_stats():
    """
    Registry statistics.

    Token totals per category, JSON coverage and token savings, plus
    router tier usage and folder creation counters.
    """
    return _require_engine().stats()


@app.get("/map")
async def get_map() -> dict[str, list[dict[str, Any]]]:
    """Category -> documents listing."""
    return _require_engine().document_map()


@app.get("/search", response_model=list[RegistryEntry])
async def search(q: str):
    """Find registered documents whose id, path or summary contains q."""
    return _require_engine().search(q)


@app.post("/validate", response_model=ValidationReport)
async def validate(request: ValidateRequest | None = None):
    """
    Validate every registered document.

    Reports broken, stale, incomplete, misplaced and missing-dependency
    entries. The most severe issue becomes the entry status.
    """
    manager = _require_engine()
    try:
        report = await manager.validate()
    except Exception as e:
        logger.error(f"Error validating registry: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e

    if request is not None and not request.include_healthy:
        report.entries = [e for e in report.entries if e.issues]
    return report


@app.post("/import", response_model=ImportReport)
async def import_documents(request: ImportRequest | None = None):
    """Import all unregistered documents under a directory."""
    manager = _require_engine()
    root = request.root if request else None
    if root is not None and not os.path.isdir(root):
        raise HTTPException(status_code=400, detail=f"Not a directory: {root}")
    try:
        return await manager.import_documents(root)
    except Exception as e:
        logger.error(f"Error importing documents: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e


@app.post("/route", response_model=ClassificationResult | RouteReport)
async def route(request: RouteRequest):
    """
    Route a document to a category.

    With register=true the file at path is also registered; otherwise the
    content is only classified.
    """
    manager = _require_engine()
    if request.register:
        if not request.path:
            raise HTTPException(status_code=400, detail="path is required to register")
        try:
            return await manager.route_document(request.path, request.content)
        except (DocumentReadError, NotFoundError) as e:
            raise HTTPException(status_code=404, detail=e.message) from e
        except PlacementConflict as e:
            raise HTTPException(status_code=409, detail=e.message) from e

    if request.content is None and request.path is None:
        raise HTTPException(status_code=400, detail="content or path is required")
    return await manager.classify(request.content or "", request.path)
