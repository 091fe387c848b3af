"""Playable stream references for the protocol handler and other consumers."""

from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse, RedirectResponse
from loguru import logger

from stream_minion.domain.streaming import (
    AllProvidersExhaustedError,
    InvalidIdentifierError,
    parse_track_id,
)
from stream_minion.manager import CacheManager

from ..deps import get_manager
from ..schemas import ResolvedStreamResponse, StreamReference

router = APIRouter()

MEDIA_TYPES = {
    ".m4a": "audio/mp4",
    ".opus": "audio/ogg",
    ".webm": "audio/webm",
}


def _validated_id(track_id: str) -> str:
    try:
        return parse_track_id(track_id)
    except InvalidIdentifierError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/stream/{track_id}/url", response_model=StreamReference)
def get_stream_reference(track_id: str, manager: CacheManager = Depends(get_manager)):
    """Return a cached file path or a network URL for the track."""
    normalized = _validated_id(track_id)
    reference = manager.get_stream_url(normalized)
    if reference is None:
        raise HTTPException(status_code=404, detail=f"Could not resolve {normalized}")
    return StreamReference(track_id=normalized, reference=reference)


@router.get("/stream/{track_id}/formats", response_model=ResolvedStreamResponse)
def get_stream_formats(track_id: str, manager: CacheManager = Depends(get_manager)):
    """Return every playable format the resolver found."""
    normalized = _validated_id(track_id)
    try:
        stream = manager.resolve(normalized)
    except AllProvidersExhaustedError as e:
        logger.warning(str(e))
        raise HTTPException(status_code=404, detail=f"Could not resolve {normalized}")

    return ResolvedStreamResponse(
        track_id=stream.track_id,
        provider=stream.provider,
        title=stream.title,
        duration=stream.duration,
        expires_at=stream.expires_at,
        cached=stream.cached,
        formats=[f.to_dict() for f in stream.formats],
    )


@router.get("/stream/{track_id}")
def get_stream(track_id: str, manager: CacheManager = Depends(get_manager)):
    """Serve the cached file, or redirect to the network URL."""
    normalized = _validated_id(track_id)
    reference = manager.get_stream_url(normalized)
    if reference is None:
        raise HTTPException(status_code=404, detail=f"Could not resolve {normalized}")

    if reference.startswith("http"):
        return RedirectResponse(reference, status_code=307)

    path = Path(reference)
    return FileResponse(path, media_type=MEDIA_TYPES.get(path.suffix, "application/octet-stream"))
