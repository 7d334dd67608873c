# edgeguard/schemas/__init__.py
from .common import UnifiedAPIResponse
from .sources import (
    RefreshingSourceConfig,
    RemoteSourceConfig,
    StaticSourceConfig,
    DynamicRemoteIPConfig,
    TrustedProxiesConfig,
    SourceStatus,
    IPRangesView,
    IPCheckResult,
    ClientIPView,
)
__all__ = [
    "UnifiedAPIResponse",
    "RefreshingSourceConfig",
    "RemoteSourceConfig",
    "StaticSourceConfig",
    "DynamicRemoteIPConfig",
    "TrustedProxiesConfig",
    "SourceStatus",
    "IPRangesView",
    "IPCheckResult",
    "ClientIPView",
]
