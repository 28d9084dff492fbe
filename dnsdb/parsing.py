"""Line canonicalization and IP/CIDR range encoding."""

import ipaddress
from typing import Iterable, Iterator, Tuple

from .errors import AddressParseFailed, PrefixTooBroad

COMMENT_DELIMITER = b"#"
CIDR_DELIMITER = "/"
ZONE_DELIMITER = "%"


def _parse_ip(address: str):
    if ZONE_DELIMITER in address:
        raise AddressParseFailed(f"Scoped address {address!r} is not accepted")
    try:
        return ipaddress.ip_address(address)
    except ValueError as e:
        raise AddressParseFailed(str(e)) from e


def canonical_line(line: bytes) -> bytes:
    """Drop everything from the first '#' and trim surrounding whitespace."""
    return line.split(COMMENT_DELIMITER, 1)[0].strip()


def parse_lines(lines: Iterable[bytes]) -> Iterator[bytes]:
    """Yield non-empty canonical lines; CRLF endings are removed by the trim."""
    for line in lines:
        item = canonical_line(line)
        if item:
            yield item


def encode_address(token: str) -> Tuple[bytes, bytes]:
    """Encode a single IPv4/IPv6 literal as (upper, lower) with upper == lower."""
    packed = _parse_ip(token).packed
    return packed, packed


def encode_cidr(token: str, ipv4_min_prefix: int, ipv6_min_prefix: int) -> Tuple[bytes, bytes]:
    """Encode an ``addr/prefixlen`` block as (broadcast, network) address bytes.

    Host bits are ignored, so 10.1.2.3/8 covers the same range as 10.0.0.0/8.
    Netmask forms such as 10.0.0.0/255.255.0.0 are rejected.
    """
    address, prefix = token.split(CIDR_DELIMITER, 1)
    if not prefix.isdigit():
        raise AddressParseFailed(f"Invalid prefix length in {token!r}")
    _parse_ip(address)
    try:
        network = ipaddress.ip_network(token, strict=False)
    except ValueError as e:
        raise AddressParseFailed(str(e)) from e

    minimum = ipv4_min_prefix if network.version == 4 else ipv6_min_prefix
    if network.prefixlen < minimum:
        raise PrefixTooBroad(
            f"IPv{network.version} mask limit reached for range {token} "
            f"(minimum prefix /{minimum}), ignoring"
        )
    return network.broadcast_address.packed, network.network_address.packed


def encode_range(item: bytes, ipv4_min_prefix: int, ipv6_min_prefix: int) -> Tuple[bytes, bytes]:
    """Encode a canonical line holding an address or a CIDR into (upper, lower)."""
    try:
        token = item.decode('ascii')
    except UnicodeDecodeError as e:
        raise AddressParseFailed(f"Non-ASCII address {item!r}") from e

    if CIDR_DELIMITER in token:
        return encode_cidr(token, ipv4_min_prefix, ipv6_min_prefix)
    return encode_address(token)
