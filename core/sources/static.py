# edgeguard/core/sources/static.py
import ipaddress
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from schemas.sources import StaticSourceConfig
from utils.exceptions import ConfigurationError, MalformedRangeError
from utils.ip import Prefix, parse_prefix
from .base import IIPRangeSource

if TYPE_CHECKING:
    from core.context import ProvisionContext

# Expanded from the "private_ranges" shorthand
PRIVATE_RANGES = (
    "192.168.0.0/16",
    "172.16.0.0/12",
    "10.0.0.0/8",
    "127.0.0.1/8",
    "fd00::/8",
    "::1/128",
)


def _parse_entry(entry: str) -> List[Prefix]:
    entry = entry.strip()
    if entry == "private_ranges":
        return [parse_prefix(p) for p in PRIVATE_RANGES]
    if "/" not in entry:
        # a bare address is a single-host prefix
        try:
            address = ipaddress.ip_address(entry)
        except ValueError as e:
            raise MalformedRangeError(entry, str(e)) from e
        return [Prefix(address, address.max_prefixlen)]
    return [parse_prefix(entry)]


class StaticIPRangeSource(IIPRangeSource):
    """A fixed list of prefixes taken from configuration."""

    NAME = "static"
    CONFIG_MODEL = StaticSourceConfig

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        prefixes: List[Prefix] = []
        for entry in self.config.ranges:
            try:
                prefixes.extend(_parse_entry(entry))
            except MalformedRangeError as e:
                raise ConfigurationError(f"Invalid range in '{self.NAME}' IP range source: {e}") from e
        self._ranges: Tuple[Prefix, ...] = tuple(prefixes)
        self.logger = logging.getLogger(f"edgeguard.{__name__}")

    def provision(self, ctx: "ProvisionContext") -> None:
        self.logger = ctx.logger(f"ip_sources.{self.NAME}")
        self.logger.info(f"Static IP ranges configured. Count: {len(self._ranges)}")

    def get_ranges(self, request: Any = None) -> Tuple[Prefix, ...]:
        return self._ranges
