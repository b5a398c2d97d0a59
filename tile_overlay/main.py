# tile_overlay/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
import logging
import os
import re

from tile_overlay.config.settings import settings
from tile_overlay.delivery.api.templates import router
from tile_overlay.domain.template_manager import TemplateManager
from tile_overlay.infrastructure.storage.backends import KeyValueFileStore, StorageChain

logger = logging.getLogger("uvicorn.error")


def build_storage(data_dir=None) -> StorageChain:
    """Primary store scoped by script name, then the fixed-name backup store."""
    data_dir = Path(data_dir or settings.DATA_DIR)
    script_slug = re.sub(r"[^\w\-]+", "_", settings.SCRIPT_NAME).strip("_") or "templates"
    return StorageChain([
        KeyValueFileStore(data_dir / f"{script_slug}.json", settings.PRIMARY_STORAGE_KEY),
        KeyValueFileStore(data_dir / settings.FALLBACK_STORAGE_FILE, settings.FALLBACK_STORAGE_KEY),
    ])


@asynccontextmanager
async def lifespan(app: FastAPI):
    max_workers = min(4, os.cpu_count() or 1)
    app.state.executor = ThreadPoolExecutor(max_workers=max_workers)
    logger.info(f"Service '{settings.PROJECT_NAME}' starting (mode: {settings.ENVIRONMENT}).")
    logger.info(f"Shared ThreadPoolExecutor created with {max_workers} workers.")

    manager = TemplateManager(build_storage(), executor=app.state.executor)
    # Templates must be in place before the first tile arrives
    try:
        await manager.load_from_storage()
        logger.info("Templates imported.")
    except Exception as e:
        logger.error(f"Template import failed: {e}", exc_info=True)
    app.state.template_manager = manager

    yield
    logger.info("Shutting down ThreadPoolExecutor...")
    app.state.executor.shutdown(wait=True)
    logger.info("Service stopped.")


app = FastAPI(
    title="Tile Overlay Service",
    description="Chunks pixel-art templates onto the canvas tile grid and composites them over live tiles",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    return {"message": "Tile Overlay Service", "version": "1.0.0", "status": "ok"}


@app.get("/health")
async def health_check():
    manager = getattr(app.state, "template_manager", None)
    return {
        "status": "ok",
        "templates_loaded": len(manager.templates_array) if manager else 0,
    }
