# api/internal/ip_ranges.py
import logging

from fastapi import APIRouter, Depends, Query, Request

from api.dependencies import get_ip_matcher
from core.matchers.dynamic_remote_ip import DynamicRemoteIPMatcher
from schemas.common import UnifiedAPIResponse
from schemas.sources import ClientIPView, IPCheckResult, IPRangesView
from utils.errors import ErrorCode
from utils.exceptions import APIError, InvalidAddressError
from utils.ip import parse_peer_address


router = APIRouter()

logger = logging.getLogger(f"edgeguard.{__name__}")


@router.get(
        "",
        response_model=UnifiedAPIResponse[IPRangesView],
        response_model_exclude_none=True,
        summary="Current Trusted IP Ranges"
)
async def list_ip_ranges(
    request: Request,
    matcher: DynamicRemoteIPMatcher = Depends(get_ip_matcher)
):
    """
    Lists the prefixes currently served by the trusted IP range source.
    """
    prefixes = [str(prefix) for prefix in matcher.get_ranges(request)]
    status = matcher.source.get_status() if matcher.source is not None else None
    return UnifiedAPIResponse(
        success=True,
        message=f"{len(prefixes)} trusted IP ranges.",
        data=IPRangesView(prefixes=prefixes, status=status)
    )


@router.get(
        "/check",
        response_model=UnifiedAPIResponse[IPCheckResult],
        response_model_exclude_none=True,
        summary="Check Address"
)
async def check_ip(
    ip: str = Query(..., description="IP address, optionally with port or zone"),
    matcher: DynamicRemoteIPMatcher = Depends(get_ip_matcher)
):
    """
    Tells whether an address lies in one of the current trusted ranges.
    """
    try:
        address = parse_peer_address(ip)
    except InvalidAddressError as e:
        raise APIError(error=ErrorCode.IP_INVALID_ADDRESS, details={"ip": ip}, override_message=str(e))
    return UnifiedAPIResponse(
        success=True,
        data=IPCheckResult(ip=str(address), matched=matcher.match_address(ip))
    )


@router.get(
        "/whoami",
        response_model=UnifiedAPIResponse[ClientIPView],
        response_model_exclude_none=True,
        summary="Resolved Client Address"
)
async def whoami(request: Request):
    """
    Shows how the current request's client address was resolved.
    """
    return UnifiedAPIResponse(
        success=True,
        data=ClientIPView(
            peer=request.client.host if request.client else None,
            client_ip=getattr(request.state, "client_ip", None),
            trusted_proxy=getattr(request.state, "trusted_proxy", False),
        )
    )
