# api/dependencies.py
from fastapi import Request

from core.config import ConfigManager
from core.matchers.dynamic_remote_ip import DynamicRemoteIPMatcher
from utils.errors import ErrorCode
from utils.exceptions import APIError


def get_config(request: Request) -> ConfigManager:
    if not hasattr(request.app.state, 'config'):
        raise APIError(error=ErrorCode.COMMON_SERVICE_UNAVAILABLE, override_message="Configuration service not available.")
    return request.app.state.config

def get_ip_matcher(request: Request) -> DynamicRemoteIPMatcher:
    matcher = getattr(request.app.state, 'ip_matcher', None)
    if matcher is None:
        raise APIError(error=ErrorCode.IP_MATCHER_UNAVAILABLE)
    return matcher
