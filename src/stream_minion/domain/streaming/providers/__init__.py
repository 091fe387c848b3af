"""Stream providers and the tiered chain built from configuration."""

from loguru import logger

from ....core.config import ResolverConfig
from .base import RACE, SEQUENTIAL, ProviderTier, StreamProvider, create_session
from .innertube import INNERTUBE_CLIENTS, InnertubeClient, InnertubeProvider
from .piped import PipedProvider
from .ytdlp import YtDlpProvider


def build_provider_tiers(config: ResolverConfig) -> list[ProviderTier]:
    """Build the provider chain: Piped race, Innertube sequence, yt-dlp fallback.

    Unknown Innertube client names are skipped with a warning.
    """
    tiers = [
        ProviderTier(
            name="piped",
            providers=[
                PipedProvider(url, timeout=config.piped_timeout_seconds)
                for url in config.piped_instances
            ],
            mode=RACE,
        )
    ]

    innertube = []
    for client_name in config.innertube_clients:
        if client_name not in INNERTUBE_CLIENTS:
            logger.warning(f"Unknown Innertube client {client_name!r}, skipping")
            continue
        innertube.append(
            InnertubeProvider.from_client_name(
                client_name, timeout=config.innertube_timeout_seconds
            )
        )
    tiers.append(ProviderTier(name="innertube", providers=innertube, mode=SEQUENTIAL))

    if config.ytdlp_enabled:
        tiers.append(
            ProviderTier(
                name="ytdlp",
                providers=[YtDlpProvider(timeout=config.ytdlp_timeout_seconds)],
                mode=SEQUENTIAL,
            )
        )

    return tiers


__all__ = [
    "RACE",
    "SEQUENTIAL",
    "ProviderTier",
    "StreamProvider",
    "create_session",
    "INNERTUBE_CLIENTS",
    "InnertubeClient",
    "InnertubeProvider",
    "PipedProvider",
    "YtDlpProvider",
    "build_provider_tiers",
]
