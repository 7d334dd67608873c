# edgeguard/utils/ip.py
import ipaddress
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Tuple, Union

from .exceptions import InvalidAddressError, MalformedRangeError

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


@dataclass(frozen=True)
class Prefix:
    """
    A CIDR block as an (address, length) pair.
    The address is kept as written (host bits are not cleared), containment
    is computed against the masked network.
    """
    address: IPAddress
    length: int

    def __post_init__(self):
        if not 0 <= self.length <= self.address.max_prefixlen:
            raise ValueError(
                f"Prefix length {self.length} out of range for IPv{self.address.version} address"
            )

    @property
    def version(self) -> int:
        return self.address.version

    @cached_property
    def network(self) -> IPNetwork:
        return ipaddress.ip_interface(f"{self.address}/{self.length}").network

    def contains(self, address: IPAddress) -> bool:
        """True if `address` is in this block. Addresses of the other family never are."""
        if address.version != self.address.version:
            return False
        return address in self.network

    def __str__(self) -> str:
        return f"{self.address}/{self.length}"


def parse_prefix(text: str) -> Prefix:
    """Parses a single `address/length` literal."""
    addr_part, sep, len_part = text.partition("/")
    if not sep:
        raise MalformedRangeError(text, "missing prefix length")
    if "%" in addr_part:
        raise MalformedRangeError(text, "zone not allowed in prefix")
    try:
        address = ipaddress.ip_address(addr_part)
    except ValueError as e:
        raise MalformedRangeError(text, str(e)) from e

    # no sign, no leading zeros, ASCII digits only
    if not (len_part.isascii() and len_part.isdigit()) or (len(len_part) > 1 and len_part[0] == "0"):
        raise MalformedRangeError(text, f"bad prefix length {len_part!r}")
    length = int(len_part)
    if length > address.max_prefixlen:
        raise MalformedRangeError(text, f"prefix length {length} too large")
    return Prefix(address, length)


def parse_prefix_list(body: str) -> Tuple[Prefix, ...]:
    """
    Parses a line-delimited CIDR list, skipping blank lines.
    Args:
        body (str): Text body, one prefix per line.
    Returns:
        Tuple[Prefix, ...]: The prefixes in input order.
    Raises:
        MalformedRangeError: On the first non-blank line that is not a prefix.
    """
    prefixes = []
    for line in body.splitlines():
        line = line.strip()
        if not line:
            continue
        prefixes.append(parse_prefix(line))
    return tuple(prefixes)


def split_host_port(hostport: str) -> Tuple[str, str]:
    """
    Splits "host:port" or "[host]:port" into host and port.
    Raises ValueError when no port is present or the address is ambiguous
    (e.g. a bare IPv6 literal).
    """
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise ValueError("missing ']' in address")
        rest = hostport[end + 1:]
        if not rest:
            raise ValueError("missing port in address")
        if not rest.startswith(":"):
            raise ValueError("unexpected text after ']' in address")
        host, port = hostport[1:end], rest[1:]
        if "[" in host:
            raise ValueError("unexpected '[' in address")
    else:
        host, sep, port = hostport.rpartition(":")
        if not sep:
            raise ValueError("missing port in address")
        if ":" in host:
            raise ValueError("too many colons in address")
        if "[" in host or "]" in host:
            raise ValueError("unexpected bracket in address")
    if ":" in port or "[" in port or "]" in port:
        raise ValueError("bad port in address")
    return host, port


def parse_peer_address(raw: str) -> IPAddress:
    """
    Parses a peer address such as "203.0.113.5:443", "[2001:db8::1%eth0]:443"
    or a bare IP literal. Port and zone are discarded.
    Raises:
        InvalidAddressError: If what remains is not an IPv4/IPv6 literal.
    """
    if not isinstance(raw, str):
        raise InvalidAddressError(repr(raw), "not a string")
    try:
        host, _ = split_host_port(raw)
    except ValueError:
        host = raw
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    host, _, _ = host.partition("%")
    try:
        return ipaddress.ip_address(host)
    except ValueError as e:
        raise InvalidAddressError(raw, str(e)) from e


def remote_addr_from_request(request: Any) -> str:
    """
    Returns the raw "host:port" peer string of a Starlette/FastAPI request.
    Plain strings are returned unchanged; a request without client info yields "".
    """
    if isinstance(request, str):
        return request
    client = getattr(request, "client", None)
    if client is None or not client.host:
        return ""
    host, port = client.host, client.port
    if port is None:
        return host
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"
