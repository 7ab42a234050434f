"""Configuration and environment settings for the archiver."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


class ConfigError(ValueError):
    """Raised when a configuration value is invalid."""


def _env_list(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"{name} must be >= 0")
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class FourChanConfig:
    """4chan API configuration.  Respects the 1-request-per-second guideline."""
    api_base: str = "https://a.4cdn.org"
    media_base: str = "https://i.4cdn.org"
    request_delay: float = 1.0  # seconds between permit grants
    timeout: float = 30.0
    user_agent: str = "chan-archiver/1.0"

    @classmethod
    def from_env(cls) -> FourChanConfig:
        return cls(
            api_base=os.getenv("API_BASE", "https://a.4cdn.org").rstrip("/"),
            media_base=os.getenv("MEDIA_BASE", "https://i.4cdn.org").rstrip("/"),
            request_delay=_env_float("REQUEST_DELAY", 1.0),
        )


@dataclass(frozen=True)
class WatchConfig:
    boards: tuple[str, ...] = ()  # empty: every board listed in boards.json
    keywords: tuple[str, ...] = ()
    download_all: bool = False
    base_interval: float = 60.0
    max_interval: float = 3 * 60 * 60.0
    search_interval: float = 120.0
    download_media: bool = True

    def __post_init__(self) -> None:
        if self.base_interval <= 0:
            raise ConfigError("base_interval must be > 0")
        if self.max_interval < self.base_interval:
            raise ConfigError("max_interval must be >= base_interval")
        if self.search_interval <= 0:
            raise ConfigError("search_interval must be > 0")

    @classmethod
    def from_env(cls) -> WatchConfig:
        return cls(
            boards=_env_list("BOARDS"),
            keywords=_env_list("SEARCHTERM"),
            download_all=_env_bool("DOWNLOAD_ALL"),
            base_interval=_env_float("POLL_INTERVAL", 60.0),
            max_interval=_env_float("MAX_POLL_INTERVAL", 3 * 60 * 60.0),
            search_interval=_env_float("SEARCH_INTERVAL", 120.0),
        )


@dataclass(frozen=True)
class StorageConfig:
    output_dir: str = "downloads"
    db_path: str = "downloaded_threads.db"

    @classmethod
    def from_env(cls) -> StorageConfig:
        return cls(
            output_dir=os.getenv("DOWNLOADFOLDER", "downloads"),
            db_path=os.getenv("DB_PATH", "downloaded_threads.db"),
        )


@dataclass
class ArchiverConfig:
    fourchan: FourChanConfig = field(default_factory=FourChanConfig.from_env)
    watch: WatchConfig = field(default_factory=WatchConfig.from_env)
    storage: StorageConfig = field(default_factory=StorageConfig.from_env)
