from typing import Optional

from pydantic import BaseModel, Field


class StreamReference(BaseModel):
    track_id: str
    reference: str  # Local file path or network URL


class AudioFormatInfo(BaseModel):
    codec: str
    bitrate: int
    duration: int
    url: Optional[str] = None
    size: int = 0
    mime_type: str = ""
    quality: str = ""
    itag: int = 0


class ResolvedStreamResponse(BaseModel):
    track_id: str
    provider: Optional[str] = None
    title: Optional[str] = None
    duration: Optional[int] = None
    expires_at: float
    cached: bool
    formats: list[AudioFormatInfo]


class TrackIdsRequest(BaseModel):
    ids: list[str] = Field(default_factory=list)


class PrefetchResponse(BaseModel):
    queued: int  # Ids actually added to the queue


class PrefetchStatusResponse(BaseModel):
    queued: int
    active: int
    cached_ids: list[str]
    in_flight: list[str]


class ProtectedResponse(BaseModel):
    protected_count: int


class InvalidateResponse(BaseModel):
    track_id: str
    metadata: bool
    files: int


class SweepResponse(BaseModel):
    deleted_by_age: list[str]
    deleted_by_size: list[str]
    freed_bytes: int
    failed: int
    remaining_bytes: int
    protected_bytes: int
    expired_metadata: int
