# api/middleware.py
import logging
from typing import Any, Optional, Sequence, Tuple

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.matchers.base import IRequestMatcher
from utils.exceptions import InvalidAddressError
from utils.ip import parse_peer_address

logger = logging.getLogger(f"edgeguard.{__name__}")

DEFAULT_CLIENT_IP_HEADERS = ("CF-Connecting-IP", "X-Forwarded-For")


def resolve_client_ip(request: Any,
                      matcher: Optional[IRequestMatcher],
                      client_ip_headers: Sequence[str] = DEFAULT_CLIENT_IP_HEADERS) -> Tuple[Optional[str], bool]:
    """
    Resolves the client address of a request.
    Forwarded headers are only honoured when the matcher accepts the peer;
    otherwise the peer address itself is the client.
    Returns:
        Tuple[Optional[str], bool]: The client address and whether the peer is a trusted proxy.
    """
    peer = request.client.host if request.client else None
    if matcher is None or not matcher.matches(request):
        return peer, False

    for header in client_ip_headers:
        value = request.headers.get(header)
        if not value:
            continue
        # X-Forwarded-For: client, proxy1, proxy2
        candidate = value.split(",")[0].strip()
        try:
            return str(parse_peer_address(candidate)), True
        except InvalidAddressError as e:
            logger.warning(f"Ignoring {header} from trusted proxy {peer}: {e}")
    return peer, True


class TrustedProxyMiddleware(BaseHTTPMiddleware):
    """
    Sets `request.state.client_ip` and `request.state.trusted_proxy` using the
    matcher stored on `app.state.ip_matcher`.
    """
    def __init__(self, app, client_ip_headers: Optional[Sequence[str]] = None):
        super().__init__(app)
        self._client_ip_headers = tuple(client_ip_headers) if client_ip_headers else None

    async def dispatch(self, request: Request, call_next):
        matcher = getattr(request.app.state, "ip_matcher", None)
        headers = self._client_ip_headers or getattr(request.app.state, "client_ip_headers", DEFAULT_CLIENT_IP_HEADERS)
        client_ip, trusted = resolve_client_ip(request, matcher, headers)
        request.state.client_ip = client_ip
        request.state.trusted_proxy = trusted
        return await call_next(request)
