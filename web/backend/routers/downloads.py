"""Permanent download endpoints for Stream Minion Web API."""

import time
import uuid
from enum import Enum
from threading import Lock
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel

from stream_minion.domain.streaming import InvalidIdentifierError, parse_track_id
from stream_minion.manager import CacheManager

from ..deps import get_manager

router = APIRouter()

# Job storage (in-memory for single-instance deployment)
# Jobs are cleaned up after JOB_TTL_SECONDS to prevent memory leaks
_jobs: dict[str, dict] = {}
_jobs_lock = Lock()
JOB_TTL_SECONDS = 3600  # 1 hour


class JobStatus(str, Enum):
    """Status of a download job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class DownloadRequest(BaseModel):
    """Request model for a permanent download."""

    track_id: str
    title: str
    artist: str
    album: str = ""
    artwork_url: Optional[str] = None


class DownloadJobResponse(BaseModel):
    """Response model for job creation."""

    job_id: str
    status: JobStatus


class DownloadJobStatusResponse(BaseModel):
    """Response model for job status polling."""

    job_id: str
    status: JobStatus
    track_id: str
    path: Optional[str] = None  # Saved file when completed
    error: Optional[str] = None  # Error message if failed


# Job management functions


def _cleanup_old_jobs() -> None:
    """Remove jobs older than JOB_TTL_SECONDS. Must be called with _jobs_lock held."""
    cutoff = time.time() - JOB_TTL_SECONDS
    expired_ids = [
        job_id for job_id, job in _jobs.items() if job.get("created_at", 0) < cutoff
    ]
    for job_id in expired_ids:
        del _jobs[job_id]
    if expired_ids:
        logger.debug(f"Cleaned up {len(expired_ids)} expired download jobs")


def create_job(track_id: str) -> str:
    """Create a new download job and return its ID."""
    job_id = str(uuid.uuid4())
    with _jobs_lock:
        _cleanup_old_jobs()
        _jobs[job_id] = {
            "status": JobStatus.PENDING,
            "track_id": track_id,
            "path": None,
            "error": None,
            "created_at": time.time(),
        }
    return job_id


def update_job(job_id: str, **kwargs) -> None:
    """Update job status and metadata."""
    with _jobs_lock:
        if job_id in _jobs:
            _jobs[job_id].update(kwargs)


def get_job(job_id: str) -> Optional[dict]:
    """Get job status without internal fields."""
    with _jobs_lock:
        job = _jobs.get(job_id)
        if job:
            return {k: v for k, v in job.items() if k != "created_at"}
        return None


def run_download(job_id: str, manager: CacheManager, request: DownloadRequest) -> None:
    """Background task performing the download."""
    update_job(job_id, status=JobStatus.RUNNING)

    result = manager.download(
        request.track_id,
        title=request.title,
        artist=request.artist,
        album=request.album,
        artwork_url=request.artwork_url,
    )

    if result.success:
        update_job(job_id, status=JobStatus.COMPLETED, path=str(result.path))
    else:
        update_job(job_id, status=JobStatus.FAILED, error=result.error)


@router.post("/downloads", response_model=DownloadJobResponse, status_code=202)
def start_download(
    request: DownloadRequest,
    background_tasks: BackgroundTasks,
    manager: CacheManager = Depends(get_manager),
):
    """Start a permanent download in the background."""
    try:
        track_id = parse_track_id(request.track_id)
    except InvalidIdentifierError as e:
        raise HTTPException(status_code=400, detail=str(e))

    job_id = create_job(track_id)
    background_tasks.add_task(run_download, job_id, manager, request)
    logger.info(f"Queued download job {job_id} for {track_id}")
    return DownloadJobResponse(job_id=job_id, status=JobStatus.PENDING)


@router.get("/downloads/{job_id}", response_model=DownloadJobStatusResponse)
def get_download_status(job_id: str):
    """Poll a download job."""
    job = get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return DownloadJobStatusResponse(job_id=job_id, **job)
