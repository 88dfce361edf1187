"""Configuration helpers bound to python-decouple."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from importlib import metadata
from pathlib import Path

from decouple import Config as DecoupleConfig, RepositoryEmpty, RepositoryEnv

try:
    _VERSION = metadata.version("gridsplit")
except metadata.PackageNotFoundError:  # pragma: no cover - running from a checkout
    _VERSION = "0.0.0"

DEFAULT_USER_AGENT = f"gridsplit/{_VERSION}"


@dataclass(frozen=True, slots=True)
class Settings:
    """Runtime knobs for acquisition, encoding fan-out and logging."""

    env_path: str
    encode_concurrency: int
    fetch_timeout_s: float
    max_source_bytes: int
    user_agent: str
    autorotate: bool
    log_level: str
    max_pixels: int = 178_956_970


def load_config(env_path: str = ".env") -> DecoupleConfig:
    """Return a decouple config object anchored to the repository .env file.

    Environment variables always win; a missing file falls back to them alone.
    """

    if Path(env_path).exists():
        return DecoupleConfig(RepositoryEnv(env_path))
    return DecoupleConfig(RepositoryEmpty())


def build_settings(env_path: str = ".env") -> Settings:
    config = load_config(env_path)
    return Settings(
        env_path=env_path,
        encode_concurrency=config("GRIDSPLIT_ENCODE_CONCURRENCY", cast=int, default=4),
        fetch_timeout_s=config("GRIDSPLIT_FETCH_TIMEOUT_S", cast=float, default=30.0),
        max_source_bytes=config("GRIDSPLIT_MAX_SOURCE_BYTES", cast=int, default=50_000_000),
        user_agent=config("GRIDSPLIT_USER_AGENT", default=DEFAULT_USER_AGENT),
        autorotate=config("GRIDSPLIT_AUTOROTATE", cast=bool, default=True),
        log_level=config("GRIDSPLIT_LOG_LEVEL", default="INFO").upper(),
        max_pixels=config("GRIDSPLIT_MAX_PIXELS", cast=int, default=178_956_970),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings singleton."""

    return build_settings()
