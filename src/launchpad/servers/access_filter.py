from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Iterable, List, Optional, Tuple, Union

logger = logging.getLogger("launchpad.access_filter")

WILDCARD = "*"

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def parse_ip(value: object) -> Optional[IPAddress]:
    """Brief: Parse value as an IP address, unwrapping IPv4-mapped IPv6.

    Inputs:
      - value: str/IP object (or anything else).

    Outputs:
      - IPv4Address/IPv6Address, or None when value is not an IP literal.
        IPv6 scope ids (``fe80::1%eth0``) are ignored.
    """

    if value is None:
        return None
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        ip = value
    else:
        text = str(value).strip()
        if text.startswith("[") and text.endswith("]"):
            text = text[1:-1]
        text = text.split("%", 1)[0]
        try:
            ip = ipaddress.ip_address(text)
        except ValueError:
            return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def resolve_host(hostname: str) -> List[IPAddress]:
    """Brief: Resolve hostname to every address DNS/hosts returns for it.

    Inputs:
      - hostname: Host name to resolve.

    Outputs:
      - list of addresses (deduplicated, resolver order). Raises OSError
        (socket.gaierror) when the name does not resolve.
    """

    out: List[IPAddress] = []
    for _family, _type, _proto, _canon, sockaddr in socket.getaddrinfo(
        hostname, None, proto=socket.IPPROTO_TCP
    ):
        ip = parse_ip(sockaddr[0])
        if ip is not None and ip not in out:
            out.append(ip)
    return out


class AddressFilter:
    """
    Decides whether a remote address may talk to the control server.

    Entries are literal IPs, hostnames (resolved on every check), or ``*``.
    Loopback clients are always allowed regardless of the entries.

    Example use:
        >>> f = AddressFilter(["192.168.1.20"])
        >>> f.is_allowed("192.168.1.20"), f.is_allowed("10.0.0.1")
        (True, False)
        >>> f.is_allowed("127.0.0.1")
        True
    """

    def __init__(self, entries: Iterable[str]) -> None:
        self.entries: Tuple[str, ...] = tuple(
            str(e).strip() for e in entries if e is not None and str(e).strip()
        )

    def is_allowed(self, remote_address: object) -> bool:
        ip = parse_ip(remote_address)
        if ip is None:
            return False
        if ip.is_loopback:
            return True

        if WILDCARD in self.entries:
            return True

        hostnames = []
        for entry in self.entries:
            allowed_ip = parse_ip(entry)
            if allowed_ip is None:
                hostnames.append(entry)
            elif allowed_ip == ip:
                logger.debug("Access allowed for %s (address: %s)", ip, entry)
                return True

        for entry in hostnames:
            try:
                resolved = resolve_host(entry)
            except (OSError, UnicodeError) as exc:
                logger.debug("Could not resolve allow-list host %s: %s", entry, exc)
                continue
            if ip in resolved:
                logger.debug("Access allowed for %s (host: %s)", ip, entry)
                return True

        return False
