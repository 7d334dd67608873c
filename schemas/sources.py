# edgeguard/schemas/sources.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utils.duration import parse_duration


class RefreshingSourceConfig(BaseModel):
    """
    Options shared by sources that refresh their ranges in the background.
    Non-positive durations fall back to the source defaults.
    """
    model_config = ConfigDict(extra="forbid")

    source: Optional[str] = Field(None, description="Registered name of the source")
    interval: float = Field(0, description="Refresh interval in seconds, 0 means default (1 hour)")
    timeout: float = Field(0, description="Per-request fetch timeout in seconds, 0 means default (15 seconds)")

    @field_validator("interval", "timeout", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> float:
        return parse_duration(value)


class RemoteSourceConfig(RefreshingSourceConfig):
    urls: List[str] = Field(..., min_length=1, description="Endpoints serving line-delimited CIDR lists")

    @field_validator("urls")
    @classmethod
    def _check_urls(cls, urls: List[str]) -> List[str]:
        for url in urls:
            if not url.lower().startswith(("http://", "https://")):
                raise ValueError(f"Unsupported URL scheme: {url!r}")
        return urls


class StaticSourceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: Optional[str] = None
    ranges: List[str] = Field(default_factory=list, description="CIDR prefixes, bare IPs or 'private_ranges'")


class DynamicRemoteIPConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: Optional[Dict[str, Any]] = Field(None, description="Nested source config, the 'source' key names the source")


class TrustedProxiesConfig(BaseModel):
    """The `trusted_proxies` section of the application configuration."""
    matcher: str = Field("dynamic_remote_ip", description="Registered name of the request matcher")
    source: Optional[Dict[str, Any]] = Field(None, description="Nested source config passed to the matcher")
    client_ip_headers: List[str] = Field(
        default_factory=lambda: ["CF-Connecting-IP", "X-Forwarded-For"],
        description="Headers carrying the client IP, tried in order, only honoured for trusted peers",
    )


class SourceStatus(BaseModel):
    name: str = Field(..., description="Registered name of the source")
    prefix_count: int = Field(0, description="Number of prefixes in the current snapshot")
    last_refreshed: Optional[datetime] = Field(None, description="Time of the last successful fetch")
    last_error: Optional[str] = Field(None, description="Message of the last failed fetch")
    last_error_at: Optional[datetime] = Field(None, description="Time of the last failed fetch")


class IPRangesView(BaseModel):
    prefixes: List[str] = Field(default_factory=list, description="Current trusted prefixes")
    status: Optional[SourceStatus] = None


class IPCheckResult(BaseModel):
    ip: str = Field(..., description="The address that was checked")
    matched: bool = Field(..., description="Whether the address lies in a trusted range")


class ClientIPView(BaseModel):
    peer: Optional[str] = Field(None, description="Address of the connecting peer")
    client_ip: Optional[str] = Field(None, description="Resolved client address")
    trusted_proxy: bool = Field(False, description="Whether the peer is a trusted proxy")
