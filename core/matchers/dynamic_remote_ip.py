# edgeguard/core/matchers/dynamic_remote_ip.py
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from core.sources.base import IIPRangeSource
from schemas.sources import DynamicRemoteIPConfig
from utils.exceptions import InvalidAddressError
from utils.ip import Prefix, parse_peer_address, remote_addr_from_request
from .base import IRequestMatcher

if TYPE_CHECKING:
    from core.context import ProvisionContext


class DynamicRemoteIPMatcher(IRequestMatcher):
    """
    Matches requests whose peer address lies in one of the prefixes currently
    served by the configured IP range source.
    Fails closed: an unparsable peer address, a missing source or an empty
    snapshot never match.
    """

    NAME = "dynamic_remote_ip"
    CONFIG_MODEL = DynamicRemoteIPConfig

    def __init__(self, config: Optional[Dict[str, Any]] = None, source: Optional[IIPRangeSource] = None):
        super().__init__(config)
        self.source_config: Optional[Dict[str, Any]] = self.config.source
        self.source: Optional[IIPRangeSource] = source
        self.logger = logging.getLogger(f"edgeguard.{__name__}")

    def provision(self, ctx: "ProvisionContext") -> None:
        self.logger = ctx.logger(f"matchers.{self.NAME}")
        if self.source is None and self.source_config is not None:
            self.source = ctx.load_source(self.source_config)

    def validate(self) -> List[str]:
        if self.source is None and self.source_config is None:
            return [f"Matcher '{self.NAME}' has no IP range source configured, it will never match"]
        return []

    def matches(self, request: Any) -> bool:
        return self.match_address(remote_addr_from_request(request), request)

    def match_address(self, address: str, request: Any = None) -> bool:
        """
        Tests a raw peer address ("ip", "ip:port", "[ipv6%zone]:port").
        """
        try:
            remote_ip = parse_peer_address(address)
        except InvalidAddressError as e:
            self.logger.error(f"Getting remote IP: {e}")
            return False

        if self.source is None:
            return False

        for ip_range in self.source.get_ranges(request):
            if ip_range.contains(remote_ip):
                return True
        return False

    def get_ranges(self, request: Any = None) -> Sequence[Prefix]:
        if self.source is None:
            return ()
        return self.source.get_ranges(request)
