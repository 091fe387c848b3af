"""Domain layer: stream resolution and audio caching."""
