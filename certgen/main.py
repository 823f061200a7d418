# certgen/main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from concurrent.futures import ThreadPoolExecutor
import threading
import logging
import os

from certgen.config.database import init_db
from certgen.config.settings import settings
from certgen.delivery.api.certificates import router
from certgen.domain.certificate_service import CertificateService
from certgen.infrastructure.database.repository import CertificateRepository
from certgen.infrastructure.render.exporter import RasterExporter
from certgen.infrastructure.render.fonts import FontRegistry

logger = logging.getLogger("uvicorn.error")

# --- Lazy service bootstrap state ---
_service_lock = threading.Lock()
_service_ready = False


def _ensure_service(app: FastAPI) -> None:
    global _service_ready
    with _service_lock:  # Always acquire lock first
        if _service_ready:
            return
        logger.info("Memulai inisialisasi CertificateService (lazy-init)...")
        app.state.certificate_service = CertificateService(
            repository=CertificateRepository(),
            exporter=RasterExporter(FontRegistry()),
            cpu_executor=app.state.cpu_executor,
            io_executor=app.state.io_executor,
        )
        _service_ready = True
        logger.info("Inisialisasi service selesai.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # rendering is sequential per batch, a small pool is enough
    cpu_workers = min(2, os.cpu_count() or 1)
    app.state.cpu_executor = ThreadPoolExecutor(max_workers=cpu_workers)
    app.state.io_executor = ThreadPoolExecutor(max_workers=4)
    logger.info(f"Service '{settings.PROJECT_NAME}' dimulai (mode: {settings.ENVIRONMENT}).")
    logger.info(f"ThreadPoolExecutor dibuat: {cpu_workers} worker render, 4 worker upload.")
    app.state.db_ready = await init_db()
    yield
    logger.info("Menutup ThreadPoolExecutor...")
    app.state.cpu_executor.shutdown(wait=True)
    app.state.io_executor.shutdown(wait=True)
    logger.info("Service berhenti.")


app = FastAPI(
    title="Certificate Generator Service",
    description="Certificate template layout and bulk rendering service",
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


# Lazy-load only for API routes
@app.middleware("http")
async def lazy_boot(request: Request, call_next):
    # Inisialisasi service hanya jika path request berada di bawah API_V1_STR
    if request.url.path.startswith(settings.API_V1_STR):
        _ensure_service(request.app)
    return await call_next(request)


app.include_router(router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    return {"message": settings.PROJECT_NAME, "version": "1.0.0", "status": "ok"}


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": settings.PROJECT_NAME, "service_ready": _service_ready}
