import ipaddress

# Blocked IPv4 networks (private, loopback, link-local, CGNAT, benchmarking,
# multicast and everything above it)
BLOCKED_IPV4_NETWORKS = [
    ipaddress.IPv4Network("0.0.0.0/8"),
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("127.0.0.0/8"),
    ipaddress.IPv4Network("169.254.0.0/16"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
    ipaddress.IPv4Network("100.64.0.0/10"),
    ipaddress.IPv4Network("198.18.0.0/15"),
    ipaddress.IPv4Network("224.0.0.0/3"),
]

IPV6_ULA = ipaddress.IPv6Network("fc00::/7")
IPV6_LINK_LOCAL = ipaddress.IPv6Network("fe80::/10")
IPV6_6TO4 = ipaddress.IPv6Network("2002::/16")
IPV6_TEREDO = ipaddress.IPv6Network("2001::/32")


def is_private_ip(ip: str) -> bool:
    """Check if an IP address string is private, internal or reserved.

    Fail-closed: anything that cannot be parsed, or any IPv6 form not
    explicitly understood, is treated as private.

    Args:
        ip: Textual IPv4 or IPv6 address (no brackets, no port).

    Returns:
        True if the address must not be connected to.
    """
    if not isinstance(ip, str) or not ip:
        return True

    if ":" not in ip:
        return _is_private_ipv4(ip)

    try:
        addr = ipaddress.IPv6Address(ip)
    except ValueError:
        return True

    # ::ffff:a.b.c.d (in any spelling) is just an IPv4 address
    if addr.ipv4_mapped is not None:
        return _is_private_ipv4(str(addr.ipv4_mapped))

    if addr.is_loopback or addr.is_unspecified:
        return True
    if addr in IPV6_ULA or addr in IPV6_LINK_LOCAL:
        return True

    if addr in IPV6_6TO4 and _is_private_ipv4(str(addr.sixtofour)):
        return True

    # Teredo obfuscates the embedded IPv4; never decode it
    if addr in IPV6_TEREDO:
        return True

    tail = ip.rsplit(":", 1)[-1]
    if "." in tail:
        return _is_private_ipv4(tail)

    return True


def _is_private_ipv4(ip: str) -> bool:
    try:
        addr = ipaddress.IPv4Address(ip)
    except ValueError:
        return True
    return any(addr in network for network in BLOCKED_IPV4_NETWORKS)
