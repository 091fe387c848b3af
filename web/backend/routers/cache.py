"""Prefetch, protection and cache maintenance endpoints."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException

from stream_minion.domain.streaming import InvalidIdentifierError
from stream_minion.manager import CacheManager

from ..deps import get_manager
from ..schemas import (
    InvalidateResponse,
    PrefetchResponse,
    PrefetchStatusResponse,
    ProtectedResponse,
    SweepResponse,
    TrackIdsRequest,
)

router = APIRouter()


@router.post("/prefetch", response_model=PrefetchResponse)
def prefetch(request: TrackIdsRequest, manager: CacheManager = Depends(get_manager)):
    return PrefetchResponse(queued=manager.prefetch_videos(request.ids))


@router.delete("/prefetch")
def clear_prefetch(manager: CacheManager = Depends(get_manager)):
    return {"cleared": manager.clear_prefetch_queue()}


@router.get("/prefetch/status", response_model=PrefetchStatusResponse)
def prefetch_status(manager: CacheManager = Depends(get_manager)):
    return manager.get_prefetch_status()


@router.put("/protected", response_model=ProtectedResponse)
def update_protected(request: TrackIdsRequest, manager: CacheManager = Depends(get_manager)):
    """Replace the set of tracks the janitor must never evict."""
    manager.update_protected_song_ids(request.ids)
    return ProtectedResponse(protected_count=len(manager.protected))


@router.delete("/cache/{track_id}", response_model=InvalidateResponse)
def invalidate(track_id: str, manager: CacheManager = Depends(get_manager)):
    try:
        return manager.invalidate(track_id)
    except InvalidIdentifierError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/cache/sweep", response_model=SweepResponse)
def sweep(manager: CacheManager = Depends(get_manager)):
    return asdict(manager.sweep_cache())


@router.get("/cache/stats")
def cache_stats(manager: CacheManager = Depends(get_manager)):
    return manager.stats()
