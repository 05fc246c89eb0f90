"""
FastAPI application for the Whisper Upload Gateway.

This module wires the HTTP boundary: the upload endpoint that runs one
transcription job per request, a health endpoint, request logging and the
exception handlers that turn every failure into a flat JSON error body.
"""

import asyncio
import threading
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.api_models import ErrorResponse, HealthResponse, TranscribeResponse
from app.config import settings
from app.errors import InvalidRequestError, TranscriptionJobError, UploadTooLargeError
from app.logging_config import setup_logging, get_logger, log_with_context
from app.transcription_service import TranscriptionService

# Configure structured logging
setup_logging(
    log_level=settings.log_level.value,
    log_file=settings.log_file,
    use_json=settings.log_json,
    token_env=settings.hf_token_env
)
logger = get_logger(__name__)

MAX_UPLOAD_SIZE_MB = settings.max_upload_size_mb
MAX_UPLOAD_SIZE_BYTES = settings.get_max_upload_size_bytes()
UPLOAD_CHUNK_SIZE = 1024 * 1024  # 1 MB
DISCONNECT_POLL_SECONDS = 0.5

# Global transcription service instance
transcription_service: Optional[TranscriptionService] = None


def get_transcription_service() -> TranscriptionService:
    """Return the global service, creating it if the lifespan did not run."""
    global transcription_service
    if transcription_service is None:
        transcription_service = TranscriptionService()
    return transcription_service


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Manage application lifespan events.

    Creates the transcription service on startup. The service holds no
    per-job state, so there is nothing to drain on shutdown.
    """
    global transcription_service

    logger.info("Whisper Upload Gateway starting up...")
    logger.info(settings.display())

    transcription_service = TranscriptionService()
    log_with_context(
        logger,
        "info",
        "Transcription service created",
        worker_script=str(transcription_service.script_path),
        workspace=str(transcription_service.workspace.directory)
    )

    yield

    logger.info("Whisper Upload Gateway shutting down...")


app = FastAPI(
    title="Whisper Upload Gateway",
    description="""
    Upload a media file and receive its transcription, optionally with speaker diarization.

    Transcription is performed by an external engine script run as a subprocess
    for every request. The engine's JSON output is returned unmodified.

    ## Workflow

    1. `POST /api/transcribe` with multipart fields `mediaFile` (file) and
       optionally `diarize=true`
    2. The request blocks until the engine finishes (bounded by the job timeout)
    3. Success returns `{"transcription": ...}`; failures return
       `{"error": ..., "details": ...}` with captured engine output
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    license_info={
        "name": "MIT License",
        "url": "https://opensource.org/licenses/MIT",
    },
)

# Configure CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.

    Logs request details (method, URL, client) and response details
    (status code, processing time) for debugging and monitoring.
    """
    log_with_context(
        logger,
        "info",
        "Incoming request",
        method=request.method,
        path=request.url.path,
        client=request.client.host if request.client else "unknown"
    )

    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time

    log_with_context(
        logger,
        "info",
        "Request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2)
    )

    return response


# Exception handlers for consistent error responses

@app.exception_handler(TranscriptionJobError)
async def transcription_job_exception_handler(
    request: Request,
    exc: TranscriptionJobError
) -> JSONResponse:
    """
    Map pipeline errors to their status code and a flat error body.
    """
    log_with_context(
        logger,
        "warning" if exc.status_code < 500 else "error",
        "Transcription request failed",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
        error_message=exc.message
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response()
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """
    Handle request validation errors with consistent error format.

    Returns 400 Bad Request with error details.
    """
    log_with_context(
        logger,
        "warning",
        "Validation error",
        path=request.url.path,
        method=request.method,
        errors=str(exc.errors())
    )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Invalid request data",
            "details": str(exc.errors())
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """
    Handle all other exceptions with consistent error format.

    Returns 500 Internal Server Error for unexpected errors.
    """
    log_with_context(
        logger,
        "error",
        "API Error",
        path=request.url.path,
        method=request.method,
        error=exc
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "An unexpected error occurred.",
            "details": str(exc)
        }
    )


@app.get(
    "/api/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="Check whether the engine can be run"
)
def health_check() -> HealthResponse:
    """
    Report whether an interpreter was found and the engine script exists.

    Status is "healthy" when both are present, otherwise "degraded".
    The interpreter check runs on every call.

    Example:
        ```bash
        curl http://localhost:8000/api/health
        ```
    """
    health = get_transcription_service().check_health()
    healthy = health["runtime"] is not None and health["worker_script_found"]
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        runtime=health["runtime"],
        worker_script_found=health["worker_script_found"]
    )


async def watch_disconnect(request: Request, cancel_event: threading.Event) -> None:
    """Set cancel_event as soon as the client goes away."""
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.warning(f"Client disconnected, cancelling job for {request.url.path}")
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


async def stop_watcher(watcher: asyncio.Task) -> None:
    """Wait for a cancelled disconnect watcher so its failures are logged, not lost."""
    try:
        await watcher
    except asyncio.CancelledError:
        pass
    except Exception as e:
        log_with_context(logger, "warning", "Disconnect watcher failed", error=e)


async def read_upload(media_file: UploadFile) -> bytes:
    """
    Read the upload in chunks, enforcing the size limit.

    Raises:
        UploadTooLargeError: If the upload exceeds MAX_UPLOAD_SIZE_BYTES
    """
    chunks = []
    size = 0
    while True:
        chunk = await media_file.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        size += len(chunk)
        if size > MAX_UPLOAD_SIZE_BYTES:
            raise UploadTooLargeError(
                f"File size exceeds maximum limit of {MAX_UPLOAD_SIZE_MB} MB"
            )
        chunks.append(chunk)
    return b"".join(chunks)


@app.post(
    "/api/transcribe",
    response_model=TranscribeResponse,
    status_code=status.HTTP_200_OK,
    tags=["Transcription"],
    summary="Transcribe an uploaded media file",
    responses={
        400: {"model": ErrorResponse, "description": "No media file uploaded"},
        413: {"model": ErrorResponse, "description": "Upload exceeds the size limit"},
        500: {"model": ErrorResponse, "description": "Engine, runtime or workspace failure"},
    }
)
async def transcribe(
    request: Request,
    media_file: Optional[UploadFile] = File(
        None,
        alias="mediaFile",
        description="Media file to transcribe"
    ),
    diarize: Optional[str] = Form(
        None,
        description='Set to "true" to request speaker diarization'
    )
) -> TranscribeResponse:
    """
    Transcribe an uploaded media file with the external engine.

    The engine runs synchronously for this request, bounded by the job
    timeout. If the client disconnects, the engine is killed and the job's
    temporary files are removed.

    Example (curl):
        ```bash
        curl -X POST http://localhost:8000/api/transcribe \\
             -F "mediaFile=@meeting.mp3" -F "diarize=true"
        ```
    """
    if media_file is None:
        raise InvalidRequestError()

    payload = await read_upload(media_file)
    if not media_file.filename and not payload:
        raise InvalidRequestError()

    diarize_requested = diarize == "true"
    log_with_context(
        logger,
        "info",
        "Received media file",
        file_name=media_file.filename,
        file_size=len(payload),
        content_type=media_file.content_type,
        diarize=diarize_requested
    )

    service = get_transcription_service()
    cancel_event = threading.Event()
    watcher = asyncio.create_task(watch_disconnect(request, cancel_event))
    try:
        result = await run_in_threadpool(
            service.transcribe,
            media_file.filename,
            payload,
            diarize_requested,
            cancel_event
        )
    finally:
        watcher.cancel()
        await stop_watcher(watcher)

    return TranscribeResponse(transcription=result)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
