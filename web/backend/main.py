import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from stream_minion.core.config import ensure_directories, load_config
from stream_minion.core.output import setup_loguru
from stream_minion.manager import CacheManager


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = load_config()
    ensure_directories(config)
    setup_loguru(
        log_file=Path(config.logging.log_file) if config.logging.log_file else None,
        level=config.logging.level,
        console_output=config.logging.console_output,
    )

    manager = CacheManager.from_config(config)
    manager.start()
    app.state.manager = manager
    logger.info("Stream Minion API started")
    try:
        yield
    finally:
        manager.close()


app = FastAPI(title="Stream Minion Web API", version="0.1.0", lifespan=lifespan)

# CORS: Allow environment override for production
allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "")
allowed_origins = (
    allowed_origins_env.split(",")
    if allowed_origins_env
    else ["http://localhost:5173"]  # Dev default
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
from web.backend.routers import cache, downloads, stream

app.include_router(stream.router, prefix="/api", tags=["stream"])
app.include_router(cache.router, prefix="/api", tags=["cache"])
app.include_router(downloads.router, prefix="/api", tags=["downloads"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
