from __future__ import annotations

import os

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


DEFAULT_BASE_URL = "https://api.glowmarkt.com/api/v0-1"
DEFAULT_APP_ID = "b0f1b774-a586-4f72-9edd-27ead8aa7a8d"   # Bright app id
DEFAULT_PERIOD = "PT30M"
DEFAULT_FUNCTION = "sum"
MAX_QUERY_DAYS = 10     # the readings endpoint rejects wider windows
TOKEN_SAFETY_MARGIN = 500   # seconds


class ConfigError(RuntimeError):
    pass


def env(name: str, default: str | None = None) -> str:
    v = os.getenv(name, default)
    if v is None or v == "":
        raise ConfigError(f"Missing required env var: {name}")
    return v


def optional_env(name: str) -> Optional[str]:
    v = os.getenv(name)
    return v if v else None


@dataclass(frozen=True)
class GlowmarktSettings:
    base_url: str = DEFAULT_BASE_URL
    application_id: str = DEFAULT_APP_ID
    period: str = DEFAULT_PERIOD
    function: str = DEFAULT_FUNCTION
    max_span_days: int = MAX_QUERY_DAYS
    timeout: float = 30

    @property
    def auth_url(self) -> str:
        return f"{self.base_url}/auth"

    @property
    def entity_url(self) -> str:
        return f"{self.base_url}/virtualentity"

    def readings_url(self, resource_id: str) -> str:
        return f"{self.base_url}/resource/{resource_id}/readings"

    @classmethod
    def from_env(cls) -> "GlowmarktSettings":
        return cls(
            base_url=env("GLOWMARKT_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
            application_id=env("GLOWMARKT_APP_ID", DEFAULT_APP_ID),
        )


@dataclass(frozen=True)
class InfluxSettings:
    url: str
    token: str
    bucket: str         # "database" in InfluxDB 1.x terms
    org: str = "-"

    @classmethod
    def from_env(cls) -> "InfluxSettings":
        return cls(
            url=env("INFLUX_URI"),
            token=env("INFLUX_TOKEN"),
            bucket=env("INFLUX_DATABASE"),
            org=env("INFLUX_ORG", "-"),
        )


def token_cache_path() -> Optional[Path]:
    v = optional_env("TOKEN_CACHE_FILE")
    return Path(v) if v else None
