from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from config.engine_config import get_engine_config
from init_db import init_database
from api import cache, transcode, watches, jobs, clips, notifications, settings
from dependencies import get_services
from services.worker_pool import worker_pool
import logging
from logging.handlers import RotatingFileHandler
import sys

# Configure logging with rotating file handler
LOG_DIR = get_engine_config().log_dir
LOG_DIR.mkdir(parents=True, exist_ok=True)
LOG_FILE = LOG_DIR / "engine.log"

# Create formatters and handlers
log_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

# File handler with rotation (10MB per file, keep 5 backups)
file_handler = RotatingFileHandler(
    LOG_FILE,
    maxBytes=10 * 1024 * 1024,  # 10MB
    backupCount=5,
    encoding='utf-8'
)
file_handler.setFormatter(log_formatter)
file_handler.setLevel(logging.INFO)

# Console handler
console_handler = logging.StreamHandler(sys.stdout)
console_handler.setFormatter(log_formatter)
console_handler.setLevel(logging.INFO)

# Configure root logger
root_logger = logging.getLogger()
root_logger.setLevel(logging.INFO)
root_logger.addHandler(file_handler)
root_logger.addHandler(console_handler)

logger = logging.getLogger(__name__)
logger.info(f"Logging initialized: {LOG_FILE}")

# Initialize database on startup
init_database()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown"""
    logger.info("Starting background services...")
    services = get_services()
    logger.info(f"Storage root: {services.config.storage_root}")
    logger.info(f"Proxy cache: {services.config.proxy_dir}")

    await worker_pool.start(services)

    yield

    logger.info("Shutting down background services...")
    await worker_pool.stop()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="HLS Cache Engine API",
    description="Cached HLS and proxy transcoding with range-request streaming",
    version="1.0.0",
    lifespan=lifespan
)

# Players on other origins fetch manifests and segments directly
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["Content-Length", "Content-Range", "Accept-Ranges"],
)

# Include API routers
app.include_router(cache.router, prefix="/api", tags=["cache"])
app.include_router(transcode.router, prefix="/api", tags=["transcode"])
app.include_router(watches.router, prefix="/api", tags=["watches"])
app.include_router(jobs.router, prefix="/api", tags=["jobs"])
app.include_router(clips.router, prefix="/api", tags=["clips"])
app.include_router(notifications.router, prefix="/api", tags=["notifications"])
app.include_router(settings.router, prefix="/api", tags=["settings"])


@app.get("/api/health")
def health_check():
    """Health check endpoint"""
    return {
        "status": "ok",
        "service": "HLS Cache Engine API",
        "version": "1.0.0"
    }


if __name__ == "__main__":
    import uvicorn
    from constants import ServerConfig

    logger.info(f"🚀 Starting HLS Cache Engine on http://{ServerConfig.HOST}:{ServerConfig.PORT}...")
    uvicorn.run(app, host=ServerConfig.HOST, port=ServerConfig.PORT)
