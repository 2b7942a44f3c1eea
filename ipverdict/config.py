"""Configuration utilities for ipverdict."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .providers.dns import DEFAULT_DNSBL_ZONES
from .providers.network import DEFAULT_VPN_PORTS

load_dotenv()

DEFAULT_VPN_RANGES = Path(__file__).resolve().parent / "data" / "vpn_ranges.json"


class Settings(BaseSettings):
    """Environment-backed settings for the detection service."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    data_directory: Path = Field(default=Path("./data"))
    history_key: Optional[str] = None
    history_max_records: int = Field(default=10_000, ge=1)
    vpn_ranges_path: Path = Field(default=DEFAULT_VPN_RANGES)

    cache_ttl: int = Field(default=3600, ge=0)
    detection_timeout: float = Field(default=20.0, gt=0)
    provider_timeout: float = Field(default=5.0, gt=0)
    dns_timeout: float = Field(default=3.0, gt=0)

    vpn_ports: Annotated[List[int], NoDecode] = Field(default_factory=lambda: list(DEFAULT_VPN_PORTS))
    port_probe_timeout_ms: int = Field(default=500, gt=0)
    latency_samples: int = Field(default=5, ge=1)
    latency_port: int = Field(default=443, gt=0, le=65535)
    dnsbl_zones: Annotated[List[str], NoDecode] = Field(default_factory=lambda: list(DEFAULT_DNSBL_ZONES))

    abuseipdb_api_key: Optional[str] = None
    ipqualityscore_api_key: Optional[str] = None
    proxycheck_api_key: Optional[str] = None
    ipinfo_token: Optional[str] = None
    maxmind_account_id: Optional[int] = None
    maxmind_license_key: Optional[str] = None
    geoip_database_path: Optional[Path] = None

    ip_api_enabled: bool = True
    rdap_enabled: bool = True
    rdap_url: str = "https://rdap.org/ip/"
    port_scan_enabled: bool = True
    latency_enabled: bool = True
    dns_enabled: bool = True

    verdict_threshold: float = Field(default=50.0, ge=0, le=100)
    bulk_max_ips: int = Field(default=100, ge=1)
    bulk_concurrency: int = Field(default=5, ge=1)
    bulk_max_jobs: int = Field(default=1000, ge=1)
    bulk_retention_seconds: float = Field(default=3600.0, gt=0)
    log_level: str = "INFO"

    @field_validator("vpn_ports", "dnsbl_zones", mode="before")
    @classmethod
    def _split_list(cls, value):
        if isinstance(value, str):
            parts = [part.strip() for part in value.replace("\n", ",").split(",")]
            return [part for part in parts if part]
        return value

    @field_validator("data_directory", "vpn_ranges_path", mode="before")
    @classmethod
    def _expand_path(cls, value):
        if isinstance(value, str):
            return Path(value).expanduser()
        if isinstance(value, Path):
            return value.expanduser()
        raise ValueError("expected a filesystem path")

    @field_validator("geoip_database_path", mode="before")
    @classmethod
    def _optional_path(cls, value):
        if value in (None, ""):
            return None
        if isinstance(value, str):
            return Path(value).expanduser()
        return value

    @field_validator(
        "history_key",
        "abuseipdb_api_key",
        "ipqualityscore_api_key",
        "proxycheck_api_key",
        "ipinfo_token",
        "maxmind_license_key",
        "maxmind_account_id",
        mode="before",
    )
    @classmethod
    def _blank_as_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value):
        if isinstance(value, str):
            return value.strip().upper() or "INFO"
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()


__all__ = ["DEFAULT_VPN_RANGES", "Settings", "get_settings"]
