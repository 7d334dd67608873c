# edgeguard/core/matchers/__init__.py
from .base import IRequestMatcher
from .dynamic_remote_ip import DynamicRemoteIPMatcher

__all__ = [
    "IRequestMatcher",
    "DynamicRemoteIPMatcher",
]
