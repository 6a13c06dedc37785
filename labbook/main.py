from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .api import router
from .config import settings
from .core.logging_config import setup_logging
from .core.middleware import RequestTracingMiddleware
from .db import SessionLocal, init_db

_READ_ONLY_BYPASS_METHODS = {"GET", "HEAD", "OPTIONS"}


def _read_app_version() -> str:
    version_file = Path(__file__).resolve().parents[1] / "VERSION"
    try:
        value = version_file.read_text(encoding="utf-8").strip()
        return value or "0.1.0"
    except Exception:
        return "0.1.0"


if settings.DATABASE_URL.startswith("sqlite") or bool(settings.DB_AUTO_CREATE_ALL):
    init_db()
setup_logging()

app = FastAPI(
    title="LabBook",
    description="Booking engine for institute lab equipment and manpower",
    version=_read_app_version(),
)
app.add_middleware(RequestTracingMiddleware)


@app.middleware("http")
async def maintenance_mode_middleware(request: Request, call_next):
    if bool(settings.MAINTENANCE_READ_ONLY) and request.method.upper() not in _READ_ONLY_BYPASS_METHODS:
        retry_after = str(max(1, int(settings.MAINTENANCE_RETRY_AFTER_SECONDS)))
        return JSONResponse(
            status_code=503,
            content={"detail": "Service is in read-only mode"},
            headers={"Retry-After": retry_after},
        )
    return await call_next(request)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if bool(settings.SECURITY_HEADERS_ENABLED):
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Cache-Control", "no-store")
    return response


@app.get("/ping")
def ping():
    return {"ok": True}


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/health/ready")
def ready():
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception:
        return JSONResponse(status_code=503, content={"status": "not_ready", "checks": {"db": "error"}})
    return {"status": "ready", "checks": {"db": "ok"}}


app.include_router(router)
