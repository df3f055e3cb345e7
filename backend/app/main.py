from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from psycopg import errors as pg_errors
import time
import uuid
from datetime import datetime, timezone
from .routers.vendor_invoices import router as vendor_invoices_router
from .routers.vendor_invoice_documents import router as vendor_invoice_documents_router
from .routers.advance_payments import router as advance_payments_router
from .routers.cost_code_divisions import router as cost_code_divisions_router
from .config import settings
from .db import get_conn, close_pools
from .logs import json_log
from .store import StoreError

SERVICE_NAME = "payables-backend"

app = FastAPI(title="Vendor Invoices API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _error_response(status_code: int, detail: str, exc: Exception, **extra) -> JSONResponse:
    content = {"detail": detail, **extra}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(StoreError)
def _store_error(req: Request, exc: StoreError):
    rid = _current_request_id(req)
    json_log(
        "error",
        "store.error",
        request_id=rid,
        table=exc.table,
        op=exc.op,
        sqlstate=exc.sqlstate,
        error=exc.message,
    )
    detail = {409: "conflict", 400: "invalid value"}.get(exc.status_code, "storage error")
    return _error_response(exc.status_code, detail, exc, request_id=rid)


# Constraint/cast errors raised outside the Store still get a 4xx.
@app.exception_handler(pg_errors.InvalidTextRepresentation)
def _invalid_text_representation(_req: Request, exc: Exception):
    return _error_response(400, "invalid value", exc)


@app.exception_handler(pg_errors.ForeignKeyViolation)
def _foreign_key_violation(_req: Request, exc: Exception):
    return _error_response(400, "invalid reference", exc)


@app.exception_handler(pg_errors.UniqueViolation)
def _unique_violation(_req: Request, exc: Exception):
    return _error_response(409, "conflict", exc)


@app.exception_handler(pg_errors.CheckViolation)
def _check_violation(_req: Request, exc: Exception):
    return _error_response(400, "constraint violation", exc)


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.env in {"local", "dev"} and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    return _error_response(500, "internal error", exc, request_id=rid)


# Correlation id + basic structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as exc:
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=dur_ms,
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if not path.startswith("/health"):
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=dur_ms,
        )
    return response

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# Document routes first so "/vendor-invoices/documents/..." never reads as an invoice uuid.
app.include_router(vendor_invoice_documents_router)
app.include_router(vendor_invoices_router)
app.include_router(advance_payments_router)
app.include_router(cost_code_divisions_router)


@app.on_event("shutdown")
def _shutdown():
    close_pools()


def _db_health():
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, str(exc)


@app.get("/health")
def health(req: Request):
    request_id = _current_request_id(req)
    ok, err = _db_health()
    content = {
        "status": "ok" if ok else "degraded",
        "env": settings.env,
        "db": "ok" if ok else "down",
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": request_id,
    }
    if ok:
        return content
    if settings.env in {"local", "dev"}:
        content["error"] = err
    return JSONResponse(status_code=503, content=content)


@app.get("/health/live")
def health_live(req: Request):
    return {
        "status": "ok",
        "env": settings.env,
        "service": SERVICE_NAME,
        "request_id": _current_request_id(req),
    }


@app.get("/meta")
def meta():
    return {
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "env": settings.env,
        "uptime_seconds": int((datetime.now(timezone.utc) - STARTED_AT_UTC).total_seconds()),
        "started_at": STARTED_AT_UTC.isoformat(),
    }
