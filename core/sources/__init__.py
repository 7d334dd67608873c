# edgeguard/core/sources/__init__.py
from .base import IIPRangeSource
from .remote import RemoteIPRangeSource, CloudflareIPRangeSource, DEFAULT_INTERVAL, DEFAULT_TIMEOUT
from .static import StaticIPRangeSource

__all__ = [
    "IIPRangeSource",
    "RemoteIPRangeSource",
    "CloudflareIPRangeSource",
    "StaticIPRangeSource",
    "DEFAULT_INTERVAL",
    "DEFAULT_TIMEOUT",
]
