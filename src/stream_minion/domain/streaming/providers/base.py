"""
Provider interface for stream resolution backends.

Every upstream (a Piped instance, one Innertube client variant, the yt-dlp
extractor) is wrapped in an object exposing the same single method, so the
resolver can race or cascade them without knowing which API sits behind it.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

import requests

from ..models import ResolvedStream

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


@runtime_checkable
class StreamProvider(Protocol):
    """Protocol defining the contract every stream provider follows.

    Attributes:
        name: Stable identifier, used for logging and sticky-provider tracking
        timeout: Default per-attempt timeout in seconds
    """

    name: str
    timeout: float

    def resolve(self, track_id: str, timeout: Optional[float] = None) -> ResolvedStream:
        """Resolve a normalized track id to its audio formats.

        Implementations must bound their own network calls by timeout and
        release connections before returning or raising.

        Raises:
            ProviderError: On any failure (including empty format lists)
        """
        ...


def create_session(user_agent: str = BROWSER_USER_AGENT) -> requests.Session:
    """Create an HTTP session with the headers upstream APIs expect."""
    session = requests.Session()
    session.headers.update({"User-Agent": user_agent})
    return session


RACE = "race"
SEQUENTIAL = "sequential"


@dataclass
class ProviderTier:
    """An ordered group of providers tried together.

    A race tier runs its providers concurrently and takes the first success;
    a sequential tier tries them one at a time in list order.
    """

    name: str
    providers: list[StreamProvider]
    mode: str = SEQUENTIAL

    def __post_init__(self) -> None:
        if self.mode not in (RACE, SEQUENTIAL):
            raise ValueError(f"Unknown tier mode: {self.mode!r}")
