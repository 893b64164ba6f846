import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, File, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .config import Settings, get_settings
from .engine import build_rules, reconcile
from .errors import CsvCompareError, PayloadTooLargeError, ReconciliationInputError, UnsupportedFileError
from .logging_config import setup_logging
from .models import (
    CompareRequest,
    CompareResponse,
    ExportRequest,
    HealthResponse,
    PreviewRequest,
    TablePreview,
    UploadedFile,
    UploadResponse,
)
from .normalize import decode_upload
from .rules import DEFAULT_EXPORT_FILENAME
from .tabular import ensure_field_size_limit, parse_csv, preview_csv, serialize_csv

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Compare"])


def current_settings(request: Request) -> Settings:
    return request.app.state.settings


def export_filename(requested: Optional[str]) -> str:
    """Base name of the requested filename, always ending in .csv."""
    name = PurePosixPath((requested or "").replace("\\", "/")).name
    name = name.replace('"', "").strip()
    if not name:
        return DEFAULT_EXPORT_FILENAME
    if not name.lower().endswith(".csv"):
        name = f"{name}.csv"
    return name


async def _read_csv_upload(upload: UploadFile, limit: int) -> UploadedFile:
    filename = upload.filename or ""
    if not (filename.lower().endswith(".csv") or upload.content_type == "text/csv"):
        raise UnsupportedFileError("Only CSV files are allowed")

    raw = await upload.read(limit + 1)
    if len(raw) > limit:
        raise PayloadTooLargeError(f"{filename} exceeds the {limit} byte upload limit")

    text, report = decode_upload(raw)
    return UploadedFile(name=filename, size=len(raw), encoding=report["decode_used"], data=text)


@router.post("/upload", response_model=UploadResponse)
async def upload_files(
    file1: Optional[UploadFile] = File(None),
    file2: Optional[UploadFile] = File(None),
    settings: Settings = Depends(current_settings),
):
    if file1 is None or file2 is None:
        raise ReconciliationInputError("Both CSV files are required")

    first = await _read_csv_upload(file1, settings.MAX_UPLOAD_BYTES)
    second = await _read_csv_upload(file2, settings.MAX_UPLOAD_BYTES)
    logger.info(f"Received {first.name} ({first.size} bytes) and {second.name} ({second.size} bytes)")

    return UploadResponse(files={"file1": first, "file2": second})


@router.post("/preview", response_model=TablePreview)
async def preview(payload: PreviewRequest, settings: Settings = Depends(current_settings)):
    if not payload.csv_data:
        raise ReconciliationInputError("CSV data is required")

    max_rows = settings.PREVIEW_ROWS if payload.max_rows is None else payload.max_rows
    return await run_in_threadpool(preview_csv, payload.csv_data, max_rows)


@router.post("/compare", response_model=CompareResponse)
async def compare(payload: CompareRequest):
    if not payload.file1_data or not payload.file2_data or payload.comparison_rules is None:
        raise ReconciliationInputError("Missing required data for comparison")

    rules = build_rules(payload.comparison_rules)

    # The tables are independent until the engine needs both.
    first, second = await asyncio.gather(
        run_in_threadpool(parse_csv, payload.file1_data),
        run_in_threadpool(parse_csv, payload.file2_data),
    )
    result = await run_in_threadpool(reconcile, first, second, rules)

    return CompareResponse(
        matches=result.matches,
        unmatched=result.unmatched,
        statistics=result.statistics,
        first_header=result.first_header,
        second_header=result.second_header,
        warnings={"file1": list(first.warnings), "file2": list(second.warnings)},
    )


@router.post("/export")
async def export_csv(payload: ExportRequest):
    if payload.data is None or payload.headers is None:
        raise ReconciliationInputError("Data and headers are required for export")

    content = serialize_csv(payload.data, payload.headers)
    filename = export_filename(payload.filename)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


class RequestSizeLimitMiddleware:
    """
    Reject request bodies larger than ``max_bytes`` with a 413.

    The body is counted as it arrives, so chunked requests without a
    Content-Length header are held to the same limit. Accepted bodies are
    replayed to the application unchanged.
    """

    def __init__(self, app: ASGIApp, max_bytes: int):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        buffered: list[Message] = []
        received = 0
        more_body = True
        while more_body:
            message = await receive()
            buffered.append(message)
            if message["type"] != "http.request":
                break
            received += len(message.get("body", b""))
            if received > self.max_bytes:
                logger.warning(f"{scope['method']} {scope['path']} rejected: body over {self.max_bytes} bytes")
                response = JSONResponse(
                    status_code=413,
                    content={"detail": f"Request body exceeds {self.max_bytes} bytes"},
                )
                await response(scope, receive, send)
                return
            more_body = message.get("more_body", False)

        async def replay() -> Message:
            if buffered:
                return buffered.pop(0)
            return await receive()

        await self.app(scope, replay, send)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    # /api/compare carries whole files inline, so one cell may be as large as the request.
    ensure_field_size_limit(settings.MAX_REQUEST_BYTES)

    app = FastAPI(
        title=settings.API_TITLE,
        description="Reconcile two CSV files with prioritized column-equality rules",
        version=settings.API_VERSION,
    )
    app.state.settings = settings

    # Middleware added last runs first: CORS wraps everything, including 413s.
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=settings.MAX_REQUEST_BYTES)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)")
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CsvCompareError)
    async def csv_compare_error_handler(request: Request, exc: CsvCompareError):
        logger.warning(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc), "detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        detail = str(exc) if settings.DEBUG else "Internal server error"
        return JSONResponse(status_code=500, content={"detail": detail})

    @app.get("/health", response_model=HealthResponse)
    def health():
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    app.include_router(router)
    return app


app = create_app()
