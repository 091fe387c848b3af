from fastapi import Request

from stream_minion.manager import CacheManager


def get_manager(request: Request) -> CacheManager:
    """FastAPI dependency for the cache manager created at startup."""
    return request.app.state.manager
