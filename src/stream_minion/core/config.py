"""
Configuration management for Stream Minion
"""

import os
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

VALID_CODECS = {"mp4a", "opus"}

DEFAULT_PIPED_INSTANCES = [
    "https://pipedapi.in.projectsegfau.lt",
    "https://pipedapi.darkness.services",
    "https://api.piped.yt",
    "https://pipedapi.adminforge.de",
    "https://pipedapi.kavin.rocks",
]

DEFAULT_INNERTUBE_CLIENTS = [
    "ANDROID_MUSIC",
    "IOS",
    "TVHTML5_SIMPLY_EMBEDDED_PLAYER",
    "WEB_REMIX",
]


def _default_cache_dir() -> str:
    return str(Path(tempfile.gettempdir()) / "stream-minion-audio-cache")


@dataclass
class CacheConfig:
    """Configuration for the on-disk audio cache and its janitor."""

    directory: str = field(default_factory=_default_cache_dir)
    max_size_mb: int = 4096
    max_age_days: int = 20  # Unprotected files unused this long are deleted
    cleanup_interval_minutes: int = 60
    min_file_bytes: int = 100_000  # Smaller payloads are treated as truncated
    freshness_hours: int = 168
    download_timeout_seconds: float = 30.0
    cache_on_play: bool = True  # Download full payload before handing out a path

    def validate(self) -> None:
        """Validate cache configuration values.

        Raises:
            ValueError: If configuration values are invalid
        """
        if self.max_size_mb <= 0:
            raise ValueError(f"max_size_mb must be positive, got {self.max_size_mb}")
        if self.max_age_days <= 0:
            raise ValueError(f"max_age_days must be positive, got {self.max_age_days}")
        if self.cleanup_interval_minutes <= 0:
            raise ValueError(
                f"cleanup_interval_minutes must be positive, got {self.cleanup_interval_minutes}"
            )
        if self.min_file_bytes < 0:
            raise ValueError(f"min_file_bytes cannot be negative, got {self.min_file_bytes}")
        if self.download_timeout_seconds <= 0:
            raise ValueError("download_timeout_seconds must be positive")


@dataclass
class ResolverConfig:
    """Configuration for the provider chain."""

    preferred_codec: str = "mp4a"
    piped_instances: List[str] = field(
        default_factory=lambda: list(DEFAULT_PIPED_INSTANCES)
    )
    piped_timeout_seconds: float = 5.0
    innertube_clients: List[str] = field(
        default_factory=lambda: list(DEFAULT_INNERTUBE_CLIENTS)
    )
    innertube_timeout_seconds: float = 8.0
    ytdlp_enabled: bool = True
    ytdlp_timeout_seconds: float = 30.0
    default_ttl_hours: float = 6.0  # Used when a URL carries no expire parameter
    expiry_margin_minutes: float = 5.0
    race_grace_seconds: float = 1.0

    def validate(self) -> None:
        """Validate resolver configuration values.

        Raises:
            ValueError: If configuration values are invalid
        """
        if self.preferred_codec not in VALID_CODECS:
            raise ValueError(
                f"Invalid preferred codec: {self.preferred_codec!r}. "
                f"Valid codecs are: {VALID_CODECS}"
            )
        for name in ("piped_timeout_seconds", "innertube_timeout_seconds", "ytdlp_timeout_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.default_ttl_hours <= 0:
            raise ValueError("default_ttl_hours must be positive")


@dataclass
class PrefetchConfig:
    """Configuration for background prefetching."""

    enabled: bool = True
    workers: int = 2

    def validate(self) -> None:
        if self.workers < 1:
            raise ValueError(f"prefetch workers must be at least 1, got {self.workers}")


@dataclass
class DownloadsConfig:
    """Configuration for permanent downloads into the library folder."""

    folder: Optional[str] = None  # Default: <data dir>/Downloads


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = (
        None  # Custom log file path (default: ~/.local/share/stream-minion/stream-minion.log)
    )
    console_output: bool = False


@dataclass
class WebConfig:
    """Configuration for the HTTP API."""

    host: str = "127.0.0.1"
    port: int = 8642


@dataclass
class Config:
    """Main configuration object."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    prefetch: PrefetchConfig = field(default_factory=PrefetchConfig)
    downloads: DownloadsConfig = field(default_factory=DownloadsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    web: WebConfig = field(default_factory=WebConfig)


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        return Path(config_home) / "stream-minion"
    return Path.home() / ".config" / "stream-minion"


def _find_project_config() -> Optional[Path]:
    """Find config.toml in project root by looking for pyproject.toml.

    Returns:
        Path to config.toml in project root, or None if not found
    """
    current = Path(__file__).resolve().parent
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            config_path = parent / "config.toml"
            if config_path.exists():
                return config_path
            return None
    return None


def get_config_path() -> Path:
    """Get the main configuration file path.

    Checks for config.toml in the following order:
    1. Project root (detected via pyproject.toml) - for development
    2. Current working directory
    3. XDG_CONFIG_HOME/stream-minion (or ~/.config/stream-minion)
    """
    project_config = _find_project_config()
    if project_config:
        return project_config

    local_config = Path.cwd() / "config.toml"
    if local_config.exists():
        return local_config

    return get_config_dir() / "config.toml"


def get_data_dir() -> Path:
    """Get the data directory path."""
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "stream-minion"
    return Path.home() / ".local" / "share" / "stream-minion"


def get_downloads_dir(config: Config) -> Path:
    """Resolve the folder permanent downloads are written to."""
    if config.downloads.folder:
        return Path(config.downloads.folder).expanduser()
    return get_data_dir() / "Downloads"


def create_default_config() -> str:
    """Create a default configuration TOML content."""
    return """
# Stream Minion Configuration

[cache]
# Directory holding cached audio payloads (default: system temp dir)
# directory = "/tmp/stream-minion-audio-cache"

# Size budget for unprotected files, in MB
max_size_mb = 4096

# Delete unprotected files unused for this many days
max_age_days = 20

# How often the janitor sweeps the cache
cleanup_interval_minutes = 60

# Payloads smaller than this are treated as truncated downloads
min_file_bytes = 100000

# Cached files older than this are not served (they stay until the janitor runs)
freshness_hours = 168

# Maximum time for a single payload download
download_timeout_seconds = 30

# Download the full payload before returning a playable reference
cache_on_play = true

[resolver]
# Preferred codec: mp4a or opus
preferred_codec = "mp4a"

# Piped API instances raced in parallel (most reliable first)
piped_instances = [
    "https://pipedapi.in.projectsegfau.lt",
    "https://pipedapi.darkness.services",
    "https://api.piped.yt",
    "https://pipedapi.adminforge.de",
    "https://pipedapi.kavin.rocks",
]
piped_timeout_seconds = 5

# Innertube client variants, tried in order
innertube_clients = ["ANDROID_MUSIC", "IOS", "TVHTML5_SIMPLY_EMBEDDED_PLAYER", "WEB_REMIX"]
innertube_timeout_seconds = 8

# Last-resort yt-dlp extraction
ytdlp_enabled = true
ytdlp_timeout_seconds = 30

# Cache lifetime when a stream URL carries no expiry
default_ttl_hours = 6

# Expire cached formats this long before the URL itself expires
expiry_margin_minutes = 5

[prefetch]
enabled = true

# Maximum concurrent background downloads
workers = 2

[downloads]
# Folder for permanent downloads (default: ~/.local/share/stream-minion/Downloads)
# folder = "~/Music/Downloads"

[logging]
# Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
level = "INFO"

# Custom log file path (default: ~/.local/share/stream-minion/stream-minion.log)
# log_file = "/path/to/stream-minion.log"

# Also output logs to console
console_output = false

[web]
host = "127.0.0.1"
port = 8642
""".strip()


def _parse_config(toml_data: dict) -> Config:
    """Build a Config from parsed TOML, falling back to defaults per section."""
    config = Config()

    if "cache" in toml_data:
        cache_data = toml_data["cache"]
        directory = cache_data.get("directory")
        config.cache = CacheConfig(
            directory=str(Path(directory).expanduser()) if directory else config.cache.directory,
            max_size_mb=cache_data.get("max_size_mb", config.cache.max_size_mb),
            max_age_days=cache_data.get("max_age_days", config.cache.max_age_days),
            cleanup_interval_minutes=cache_data.get(
                "cleanup_interval_minutes", config.cache.cleanup_interval_minutes
            ),
            min_file_bytes=cache_data.get("min_file_bytes", config.cache.min_file_bytes),
            freshness_hours=cache_data.get("freshness_hours", config.cache.freshness_hours),
            download_timeout_seconds=cache_data.get(
                "download_timeout_seconds", config.cache.download_timeout_seconds
            ),
            cache_on_play=cache_data.get("cache_on_play", config.cache.cache_on_play),
        )
        try:
            config.cache.validate()
        except ValueError as e:
            print(f"Warning: Invalid cache configuration: {e}")
            print("Using default cache configuration.")
            config.cache = CacheConfig()

    if "resolver" in toml_data:
        resolver_data = toml_data["resolver"]
        config.resolver = ResolverConfig(
            preferred_codec=resolver_data.get(
                "preferred_codec", config.resolver.preferred_codec
            ),
            piped_instances=resolver_data.get(
                "piped_instances", config.resolver.piped_instances
            ),
            piped_timeout_seconds=resolver_data.get(
                "piped_timeout_seconds", config.resolver.piped_timeout_seconds
            ),
            innertube_clients=resolver_data.get(
                "innertube_clients", config.resolver.innertube_clients
            ),
            innertube_timeout_seconds=resolver_data.get(
                "innertube_timeout_seconds", config.resolver.innertube_timeout_seconds
            ),
            ytdlp_enabled=resolver_data.get("ytdlp_enabled", config.resolver.ytdlp_enabled),
            ytdlp_timeout_seconds=resolver_data.get(
                "ytdlp_timeout_seconds", config.resolver.ytdlp_timeout_seconds
            ),
            default_ttl_hours=resolver_data.get(
                "default_ttl_hours", config.resolver.default_ttl_hours
            ),
            expiry_margin_minutes=resolver_data.get(
                "expiry_margin_minutes", config.resolver.expiry_margin_minutes
            ),
            race_grace_seconds=resolver_data.get(
                "race_grace_seconds", config.resolver.race_grace_seconds
            ),
        )
        try:
            config.resolver.validate()
        except ValueError as e:
            print(f"Warning: Invalid resolver configuration: {e}")
            print("Using default resolver configuration.")
            config.resolver = ResolverConfig()

    if "prefetch" in toml_data:
        prefetch_data = toml_data["prefetch"]
        config.prefetch = PrefetchConfig(
            enabled=prefetch_data.get("enabled", config.prefetch.enabled),
            workers=prefetch_data.get("workers", config.prefetch.workers),
        )
        try:
            config.prefetch.validate()
        except ValueError as e:
            print(f"Warning: Invalid prefetch configuration: {e}")
            config.prefetch = PrefetchConfig()

    if "downloads" in toml_data:
        folder = toml_data["downloads"].get("folder")
        config.downloads = DownloadsConfig(
            folder=str(Path(folder).expanduser()) if folder else None
        )

    if "logging" in toml_data:
        logging_data = toml_data["logging"]
        log_file = logging_data.get("log_file")
        if log_file:
            log_file = str(Path(log_file).expanduser())
        config.logging = LoggingConfig(
            level=logging_data.get("level", config.logging.level).upper(),
            log_file=log_file,
            console_output=logging_data.get(
                "console_output", config.logging.console_output
            ),
        )

    if "web" in toml_data:
        web_data = toml_data["web"]
        config.web = WebConfig(
            host=web_data.get("host", config.web.host),
            port=web_data.get("port", config.web.port),
        )

    return config


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides on top of file values."""
    cache_dir = os.environ.get("STREAM_MINION_CACHE_DIR")
    if cache_dir:
        config.cache.directory = str(Path(cache_dir).expanduser())

    piped_instances = os.environ.get("STREAM_MINION_PIPED_INSTANCES")
    if piped_instances:
        config.resolver.piped_instances = [
            url.strip() for url in piped_instances.split(",") if url.strip()
        ]

    log_level = os.environ.get("STREAM_MINION_LOG_LEVEL")
    if log_level:
        config.logging.level = log_level.upper()

    return config


def load_config() -> Config:
    """Load configuration from file or create default.

    Environment variables override TOML values:
    - STREAM_MINION_CACHE_DIR
    - STREAM_MINION_PIPED_INSTANCES (comma separated)
    - STREAM_MINION_LOG_LEVEL
    """
    from dotenv import load_dotenv

    env_path = get_config_dir() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    config_path = get_config_path()

    if not config_path.exists():
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_default_config())
        print(f"Created default configuration at: {config_path}")
        return _apply_env_overrides(Config())

    try:
        with open(config_path, "rb") as f:
            toml_data = tomllib.load(f)
        return _apply_env_overrides(_parse_config(toml_data))

    except (OSError, tomllib.TOMLDecodeError) as e:
        print(f"Error loading configuration from {config_path}: {e}")
        print("Using default configuration.")
        return _apply_env_overrides(Config())


def ensure_directories(config: Optional[Config] = None) -> None:
    """Ensure all necessary directories exist."""
    get_config_dir().mkdir(parents=True, exist_ok=True)
    get_data_dir().mkdir(parents=True, exist_ok=True)
    if config is not None:
        Path(config.cache.directory).mkdir(parents=True, exist_ok=True)
