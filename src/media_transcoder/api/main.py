from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware

from media_transcoder.jobs.errors import JobNotFound, QueueClosed, QueueFull
from media_transcoder.jobs.models import format_timestamp, utcnow
from media_transcoder.service import TranscoderService

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100


def parse_limit(raw: Optional[str]) -> int:
    """Clamp ?limit= to 1..100; missing, invalid or < 1 means the default."""
    try:
        limit = int(raw) if raw is not None else DEFAULT_LIST_LIMIT
    except ValueError:
        return DEFAULT_LIST_LIMIT
    if limit > MAX_LIST_LIMIT:
        return MAX_LIST_LIMIT
    if limit < 1:
        return DEFAULT_LIST_LIMIT
    return limit


def parse_offset(raw: Optional[str]) -> int:
    try:
        offset = int(raw) if raw is not None else 0
    except ValueError:
        return 0
    return max(0, offset)


def create_app(service: TranscoderService, manage_lifecycle: bool = True) -> FastAPI:
    """Build the HTTP surface around a TranscoderService.

    With ``manage_lifecycle`` the app starts the service (recovery, then
    workers) on startup and stops it gracefully on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_lifecycle:
            await asyncio.to_thread(service.start)
        yield
        if manage_lifecycle:
            await asyncio.to_thread(service.stop)
            service.close()

    app = FastAPI(title="Media Transcoder", lifespan=lifespan)
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Origin", "Content-Type", "Accept", "X-API-Key"],
        max_age=86400,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"
        client = request.client.host if request.client else "-"
        logger.info(
            "%3d | %8.1fms | %15s | %-7s %s",
            response.status_code, elapsed_ms, client, request.method, path,
        )
        return response

    api_key = service.config.server.api_key

    async def require_api_key(x_api_key: Optional[str] = Header(default=None)):
        if api_key is None:
            return
        if not x_api_key:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing API key")
        if x_api_key != api_key:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid API key")

    # --- API ENDPOINTS ---

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "timestamp": format_timestamp(utcnow())}

    @app.post("/api/v1/jobs", status_code=status.HTTP_202_ACCEPTED, dependencies=[Depends(require_api_key)])
    async def create_job(file: Optional[UploadFile] = File(default=None)):
        """Accept a video upload and queue it for transcoding."""
        if file is None or not file.filename:
            raise HTTPException(status_code=400, detail="no file provided")

        try:
            job = await asyncio.to_thread(service.submit, file.filename, file.file)
        except (QueueFull, QueueClosed):
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="job queue is full, please try again later",
            )
        except OSError as e:
            logger.error("Failed to save upload %s: %s", file.filename, e)
            raise HTTPException(status_code=500, detail="failed to save file")
        finally:
            await file.close()

        return {"job": job.to_response().model_dump(mode="json")}

    @app.get("/api/v1/jobs", dependencies=[Depends(require_api_key)])
    async def list_jobs(limit: Optional[str] = None, offset: Optional[str] = None):
        """List live jobs, newest first."""
        limit_value = parse_limit(limit)
        offset_value = parse_offset(offset)
        jobs, total = await asyncio.to_thread(service.list_jobs, limit_value, offset_value)
        return {
            "jobs": [j.model_dump(mode="json") for j in jobs],
            "total": total,
            "limit": limit_value,
            "offset": offset_value,
        }

    @app.get("/api/v1/jobs/{job_id}", dependencies=[Depends(require_api_key)])
    async def get_job(job_id: str):
        try:
            job = await asyncio.to_thread(service.get_job, job_id)
        except JobNotFound:
            raise HTTPException(status_code=404, detail="job not found")
        return {"job": job.model_dump(mode="json")}

    @app.delete("/api/v1/jobs/{job_id}", dependencies=[Depends(require_api_key)])
    async def delete_job(job_id: str):
        """Cancel (if still active), remove local files and soft delete."""
        try:
            await asyncio.to_thread(service.delete, job_id)
        except JobNotFound:
            raise HTTPException(status_code=404, detail="job not found")
        return {"message": "job deleted"}

    return app
