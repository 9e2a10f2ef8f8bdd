import asyncio
import ipaddress
import re
import socket
from urllib.parse import urlsplit

from config import settings
from exceptions import PolicyError, ResolutionError, ValidationError
from schemas import ResolvedTarget
from security.ip_classifier import is_private_ip
from utils.logging import get_logger

logger = get_logger("security.ssrf")

# Hostnames that only ever name internal infrastructure
BLOCKED_HOSTNAMES = {"localhost"}
BLOCKED_HOSTNAME_SUFFIXES = (
    ".local",
    ".internal",
    ".corp",
    ".lan",
    ".intranet",
    ".home",
)

CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def validate_request_url(url: str | None, max_length: int | None = None) -> str:
    """Validate the inbound ``url`` parameter before any network activity.

    Args:
        url: Raw query parameter value (None if absent or repeated).
        max_length: Longest accepted URL (defaults to settings.max_url_length).

    Returns:
        The URL, unchanged.

    Raises:
        ValidationError: With a short, caller-facing message for the
            first check that fails.
    """
    if not url:
        raise ValidationError("Missing url parameter")

    if max_length is None:
        max_length = settings.max_url_length
    if len(url) > max_length:
        raise ValidationError("URL too long")

    if CONTROL_CHARS.search(url):
        raise ValidationError("Invalid characters in URL")

    try:
        parsed = urlsplit(url)
        port = parsed.port
    except ValueError:
        raise ValidationError("Invalid URL")

    if not parsed.scheme or not parsed.hostname:
        raise ValidationError("Invalid URL")

    if parsed.scheme.lower() != "https":
        raise ValidationError("Only HTTPS URLs allowed")

    if parsed.username is not None or parsed.password is not None:
        raise ValidationError("Credentials in URL not allowed")

    if port is not None and port != 443:
        raise ValidationError("Non-standard ports not allowed")

    return url


def is_blocked_hostname(hostname: str) -> bool:
    """Cheap name-based check for internal hostnames (no DNS)."""
    name = hostname.lower()
    if name.endswith("."):
        name = name[:-1]
    return name in BLOCKED_HOSTNAMES or name.endswith(BLOCKED_HOSTNAME_SUFFIXES)


async def resolve_and_validate(hostname: str) -> list[str]:
    """Resolve a hostname and verify every address is public.

    Literal IPs are classified directly without DNS. Otherwise A records
    are tried first, then AAAA. A single private address rejects the whole
    host: the caller connects to whichever address it is handed, so a
    mixed answer is never partially trusted.

    Args:
        hostname: Host part of the URL (no brackets, no port).

    Returns:
        All resolved addresses, de-duplicated, in resolver order.

    Raises:
        PolicyError: Hostname is internal or resolves to a private address.
        ResolutionError: No A or AAAA records could be obtained.
    """
    if _is_ip_literal(hostname):
        if is_private_ip(hostname):
            logger.warning(
                "Blocked private IP literal",
                extra={"context": {"host": hostname}},
            )
            raise PolicyError(host=hostname)
        return [hostname]

    if is_blocked_hostname(hostname):
        logger.warning(
            "Blocked internal hostname",
            extra={"context": {"host": hostname}},
        )
        raise PolicyError(host=hostname)

    addresses = await _resolve_family(hostname, socket.AF_INET)
    if not addresses:
        addresses = await _resolve_family(hostname, socket.AF_INET6)
    if not addresses:
        raise ResolutionError(host=hostname)

    for address in addresses:
        if is_private_ip(address):
            logger.warning(
                "Hostname resolves to a private address",
                extra={"context": {"host": hostname, "resolved_ips": addresses}},
            )
            raise PolicyError(host=hostname, resolved_ip=address)

    return addresses


async def resolve_target(hostname: str) -> ResolvedTarget:
    """Resolve and validate ``hostname``, pinning to the first address."""
    addresses = await resolve_and_validate(hostname)
    return ResolvedTarget(hostname=hostname, addresses=addresses)


async def _resolve_family(hostname: str, family: int) -> list[str]:
    """Resolve one address family; an empty list means no usable records."""
    loop = asyncio.get_running_loop()
    try:
        addr_infos = await loop.getaddrinfo(
            hostname, None, family=family, type=socket.SOCK_STREAM
        )
    except (socket.gaierror, UnicodeError):
        return []

    addresses: list[str] = []
    for _family, _, _, _, sockaddr in addr_infos:
        address = sockaddr[0]
        if address not in addresses:
            addresses.append(address)
    return addresses


def _is_ip_literal(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True
