"""
Stream resolution across a tiered provider chain.

Resolution order:
1. Metadata cache (no network)
2. Sticky provider, alone, if one is remembered
3. Each tier in order: race tiers run concurrently and take the first
   success, sequential tiers stop at the first provider that answers with a
   playable format
Failures are collected per tier and only surface together, once every tier
has been tried.
"""

import dataclasses
import sqlite3
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Optional, Protocol

from loguru import logger

from .exceptions import (
    AllProvidersExhaustedError,
    NoPlayableFormatsError,
    ProviderError,
    ProviderTimeoutError,
)
from .identifiers import parse_track_id
from .models import MP4A, ResolvedStream
from .providers.base import RACE, ProviderTier, StreamProvider
from .selection import DEFAULT_TTL_SECONDS, EXPIRY_MARGIN_SECONDS, compute_expires_at

MIN_ATTEMPT_WORKERS = 16


class StreamMetadataStore(Protocol):
    """What the resolver needs from a metadata cache."""

    def get(self, track_id: str) -> Optional[ResolvedStream]: ...

    def put(self, track_id: str, stream: ResolvedStream, ttl: Optional[float] = None) -> None: ...


class StickyProvider:
    """Remembers the provider that produced the last success.

    Advisory only: a sticky provider that fails is forgotten and the normal
    chain takes over.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._provider: Optional[StreamProvider] = None

    def get(self) -> Optional[StreamProvider]:
        with self._lock:
            return self._provider

    def remember(self, provider: StreamProvider) -> None:
        with self._lock:
            self._provider = provider

    def forget(self, provider: Optional[StreamProvider] = None) -> None:
        """Clear the sticky provider, or only if it is still provider."""
        with self._lock:
            if provider is None or self._provider is provider:
                self._provider = None


class StreamResolver:
    """Turns track identifiers into ResolvedStreams.

    Args:
        tiers: Provider tiers in priority order
        metadata_cache: Optional persistent cache consulted before any network call
        sticky: Shared sticky-provider holder (one is created if omitted)
        preferred_codec: Codec picked first when selecting the best format
        default_ttl: Cache lifetime in seconds for URLs without an expire parameter
        expiry_margin: Seconds subtracted from a URL's own expiry
        race_grace: Extra seconds any attempt may run beyond its provider's timeout
        clock: Wall clock returning Unix timestamps
        max_workers: Size of the attempt thread pool (threads are created on demand)
    """

    def __init__(
        self,
        tiers: list[ProviderTier],
        metadata_cache: Optional[StreamMetadataStore] = None,
        sticky: Optional[StickyProvider] = None,
        preferred_codec: str = MP4A,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        expiry_margin: float = EXPIRY_MARGIN_SECONDS,
        race_grace: float = 1.0,
        clock: Callable[[], float] = time.time,
        max_workers: Optional[int] = None,
    ):
        self.tiers = tiers
        self.metadata_cache = metadata_cache
        self.sticky = sticky or StickyProvider()
        self.preferred_codec = preferred_codec
        self.default_ttl = default_ttl
        self.expiry_margin = expiry_margin
        self.race_grace = race_grace
        self.clock = clock

        if max_workers is None:
            race_width = max(
                (len(t.providers) for t in tiers if t.mode == RACE), default=1
            )
            # Room for several concurrent resolves plus abandoned attempts
            max_workers = max(MIN_ATTEMPT_WORKERS, race_width * 4)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="resolver"
        )

    def resolve(self, raw_id: str) -> ResolvedStream:
        """Resolve an identifier to a playable stream.

        Raises:
            InvalidIdentifierError: If the identifier is malformed
            AllProvidersExhaustedError: If every provider failed
        """
        track_id = parse_track_id(raw_id)

        if self.metadata_cache is not None:
            try:
                cached = self.metadata_cache.get(track_id)
            except sqlite3.Error as e:
                logger.error(f"Metadata cache read failed for {track_id}, resolving: {e}")
                cached = None
            if cached is not None:
                logger.debug(f"Metadata cache hit for {track_id}")
                return cached

        reasons: dict[str, list[str]] = {}

        sticky = self.sticky.get()
        if sticky is not None:
            sticky_reasons = reasons.setdefault("sticky", [])
            winner = self._run([sticky], track_id, sticky_reasons)
            if winner is not None:
                stream, provider = winner
                return self._accept(track_id, stream, provider)
            self.sticky.forget(sticky)
            logger.info(f"Sticky provider {sticky.name} failed for {track_id}, using full chain")

        for tier in self.tiers:
            providers = [p for p in tier.providers if p is not sticky]
            tier_reasons = reasons.setdefault(tier.name, [])
            if not providers:
                continue

            if tier.mode == RACE:
                winner = self._run(providers, track_id, tier_reasons)
            else:
                winner = self._sequence(providers, track_id, tier_reasons)

            if winner is not None:
                stream, provider = winner
                return self._accept(track_id, stream, provider)

            logger.info(f"Tier {tier.name} failed for {track_id}")

        logger.warning(f"All providers exhausted for {track_id}: {reasons}")
        raise AllProvidersExhaustedError(track_id, reasons)

    def _attempt(self, provider: StreamProvider, track_id: str) -> ResolvedStream:
        logger.debug(f"Trying {provider.name} for {track_id}")
        stream = provider.resolve(track_id, timeout=provider.timeout)
        if not stream.playable_formats:
            raise NoPlayableFormatsError(f"{provider.name}: no playable formats")
        return stream

    def _record_failure(self, provider: StreamProvider, track_id: str, error: Exception) -> str:
        if isinstance(error, ProviderError):
            logger.debug(f"{provider.name} failed for {track_id}: {error}")
        else:
            logger.opt(exception=error).warning(
                f"Unexpected error from {provider.name} for {track_id}"
            )
        return f"{provider.name}: {error}"

    def _timed_attempt(
        self, provider: StreamProvider, track_id: str, started: dict[int, float]
    ) -> ResolvedStream:
        started[id(provider)] = time.monotonic()
        return self._attempt(provider, track_id)

    def _run(
        self,
        providers: list[StreamProvider],
        track_id: str,
        tier_reasons: list[str],
    ) -> Optional[tuple[ResolvedStream, StreamProvider]]:
        """Run providers concurrently and return the first success.

        Each attempt gets provider.timeout + race_grace from the moment it
        starts running. An attempt still queued for a thread gets the same
        window again to start. Attempts past their deadline are abandoned.
        """
        submitted_at = time.monotonic()
        started: dict[int, float] = {}
        futures: dict[Future, StreamProvider] = {
            self._executor.submit(self._timed_attempt, provider, track_id, started): provider
            for provider in providers
        }
        pending = set(futures)

        def deadline(future: Future) -> float:
            provider = futures[future]
            window = provider.timeout + self.race_grace
            start = started.get(id(provider))
            return start + window if start is not None else submitted_at + 2 * window

        try:
            while pending:
                now = time.monotonic()
                for future in [f for f in pending if not f.done() and deadline(f) <= now]:
                    pending.discard(future)
                    provider = futures[future]
                    error = ProviderTimeoutError(
                        f"no answer within {provider.timeout + self.race_grace:.1f}s"
                    )
                    tier_reasons.append(self._record_failure(provider, track_id, error))
                    future.cancel()
                if not pending:
                    break

                remaining = min(deadline(f) for f in pending) - now
                done, pending = wait(
                    pending, timeout=max(remaining, 0.0), return_when=FIRST_COMPLETED
                )
                for future in done:
                    provider = futures[future]
                    try:
                        return future.result(), provider
                    except Exception as e:
                        tier_reasons.append(self._record_failure(provider, track_id, e))
            return None
        finally:
            # Running losers finish on their own request timeouts
            for future in pending:
                future.cancel()

    def _sequence(
        self,
        providers: list[StreamProvider],
        track_id: str,
        tier_reasons: list[str],
    ) -> Optional[tuple[ResolvedStream, StreamProvider]]:
        """Try providers one at a time in order, each under its own deadline."""
        for provider in providers:
            winner = self._run([provider], track_id, tier_reasons)
            if winner is not None:
                return winner
        return None

    def _accept(
        self, track_id: str, stream: ResolvedStream, provider: StreamProvider
    ) -> ResolvedStream:
        best = stream.best_format(self.preferred_codec)
        others = sorted(
            (f for f in stream.playable_formats if f is not best),
            key=lambda f: f.bitrate_bps,
            reverse=True,
        )
        expires_at = compute_expires_at(
            best, self.clock(), default_ttl=self.default_ttl, margin=self.expiry_margin
        )
        resolved = dataclasses.replace(
            stream,
            track_id=track_id,
            formats=(best, *others),
            expires_at=expires_at,
            provider=provider.name,
            cached=False,
        )

        if self.metadata_cache is not None:
            try:
                self.metadata_cache.put(track_id, resolved)
            except sqlite3.Error as e:
                logger.error(f"Failed to cache stream metadata for {track_id}: {e}")

        self.sticky.remember(provider)
        logger.info(
            f"Resolved {track_id} via {provider.name} "
            f"({best.codec} {best.bitrate_bps // 1000} kbps)"
        )
        return resolved

    def close(self) -> None:
        """Stop accepting attempts and drop queued ones."""
        self._executor.shutdown(wait=False, cancel_futures=True)
