import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from config import settings
from exceptions import (
    ContentMismatchError,
    FetchError,
    FetchTimeoutError,
    PayloadTooLargeError,
    ProtocolError,
    RedirectError,
    UnsupportedImageTypeError,
    UpstreamError,
)
from schemas import ProxiedImage, ResolvedTarget
from security.ssrf import resolve_target
from utils.format_detect import (
    MIME_TYPES,
    is_safe_content_type,
    normalize_content_type,
    validate_magic_bytes,
)
from utils.logging import get_logger

logger = get_logger("url_fetch")

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
ACCEPT_HEADER = ", ".join(MIME_TYPES.values())


@dataclass
class PinnedResponse:
    """Final (non-redirect) upstream response plus how we got there."""

    response: httpx.Response
    url: httpx.URL
    target: ResolvedTarget
    redirects: int


class PinnedFetcher:
    """HTTPS GET pinned to pre-validated IPs, with manual redirect handling.

    Every hop is validated from scratch (scheme, hostname, all resolved
    IPs) and then connected to the literal pinned IP, with ``Host`` and
    TLS SNI set to the original hostname so the certificate is still
    checked against the name. The transport never resolves DNS itself, so
    a rebinding answer between validation and connect cannot take effect.

    A fresh client is used per hop: connection pools key on the IP-based
    URL and must not be shared across hostnames.
    """

    def __init__(
        self,
        max_redirects: int | None = None,
        timeout: float | None = None,
        max_bytes: int | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.max_redirects = (
            settings.max_redirects if max_redirects is None else max_redirects
        )
        self.timeout = settings.fetch_timeout_seconds if timeout is None else timeout
        self.max_bytes = settings.max_image_size_bytes if max_bytes is None else max_bytes
        self.user_agent = user_agent or settings.user_agent
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=False,
            verify=True,
            trust_env=False,  # no proxy from the environment
            transport=self._transport,
        )

    def _build_request(
        self,
        client: httpx.AsyncClient,
        url: httpx.URL,
        target: ResolvedTarget,
    ) -> httpx.Request:
        pinned_ip = target.pinned_ip

        request = client.build_request(
            "GET",
            url.copy_with(host=pinned_ip),
            headers={
                "User-Agent": self.user_agent,
                "Accept": ACCEPT_HEADER,
                # Body bytes must be the bytes on the wire for the size limit
                "Accept-Encoding": "identity",
            },
        )
        request.headers["Host"] = url.netloc.decode("ascii")
        if pinned_ip != url.host:
            request.extensions["sni_hostname"] = url.raw_host.decode("ascii")
        return request

    @asynccontextmanager
    async def open(self, url: str) -> AsyncIterator[PinnedResponse]:
        """Open a streamed response for ``url``, following redirects safely.

        The yielded response is closed when the context exits, whichever
        way it exits.

        Raises:
            ProtocolError: A hop is not HTTPS.
            PolicyError: A hop targets a private/internal address.
            ResolutionError: A hop's hostname does not resolve.
            RedirectError: Redirect limit exhausted, Location missing, or a
                redirect target carries credentials or a non-443 port.
            httpx.HTTPError: Transport failures, including timeouts.
        """
        current_url = _parse_url(url)
        redirects = 0

        while True:
            if current_url.scheme != "https":
                raise ProtocolError(url=str(current_url))
            if not current_url.host:
                raise RedirectError(url=str(current_url), reason="no host")
            if current_url.userinfo:
                raise RedirectError(url=url, reason="credentials in location")
            if current_url.port not in (None, 443):
                raise RedirectError(url=url, reason="non-standard port", port=current_url.port)

            target = await resolve_target(current_url.host)

            async with self._client() as client:
                request = self._build_request(client, current_url, target)
                response = await client.send(request, stream=True)
                try:
                    if response.status_code not in REDIRECT_STATUSES:
                        yield PinnedResponse(
                            response=response,
                            url=current_url,
                            target=target,
                            redirects=redirects,
                        )
                        return

                    if redirects >= self.max_redirects:
                        raise RedirectError(
                            url=url,
                            reason="too many redirects",
                            limit=self.max_redirects,
                        )

                    location = response.headers.get("location")
                    if not location:
                        raise RedirectError(url=str(current_url), reason="no location")
                finally:
                    await response.aclose()

            # Relative Location resolves against the hostname URL, not the IP
            next_url = _join_url(current_url, location)
            logger.debug(
                "Following redirect",
                extra={
                    "context": {
                        "from": str(current_url),
                        "to": str(next_url),
                        "status": response.status_code,
                    }
                },
            )
            current_url = next_url
            redirects += 1


def _parse_url(url: str) -> httpx.URL:
    try:
        return httpx.URL(url)
    except httpx.InvalidURL:
        raise ProtocolError(url=url, reason="unparseable")


def _join_url(base: httpx.URL, location: str) -> httpx.URL:
    try:
        return base.join(location)
    except httpx.InvalidURL:
        raise RedirectError(url=str(base), reason="invalid location")


async def read_body_with_limit(response: httpx.Response, max_bytes: int) -> bytes:
    """Stream a response body, aborting as soon as it exceeds ``max_bytes``.

    The body is never fully buffered before the check: the stream is
    closed on the first chunk that takes the running total over the limit.
    Chunks are counted after content decoding, so only identity-encoded
    responses give a limit on bytes actually received.

    Raises:
        PayloadTooLargeError: Body is larger than ``max_bytes``.
    """
    chunks: list[bytes] = []
    total = 0

    async for chunk in response.aiter_bytes():
        total += len(chunk)
        if total > max_bytes:
            await response.aclose()
            raise PayloadTooLargeError(read_bytes=total, limit=max_bytes)
        chunks.append(chunk)

    return b"".join(chunks)


async def fetch_image(url: str, fetcher: PinnedFetcher | None = None) -> ProxiedImage:
    """Fetch and validate a remote image under a single overall deadline.

    Args:
        url: Inbound URL, already checked by ``validate_request_url``.
        fetcher: Fetcher to use (a default one is built from settings).

    Returns:
        ProxiedImage with the validated content type.

    Raises:
        PicketError subclasses only; transport errors are mapped to
        FetchError and timeouts to FetchTimeoutError.
    """
    fetcher = fetcher or PinnedFetcher()

    try:
        return await asyncio.wait_for(_fetch_image(url, fetcher), timeout=fetcher.timeout)
    except asyncio.TimeoutError:
        logger.warning(
            f"Fetch timed out after {fetcher.timeout}s",
            extra={"context": {"url": url}},
        )
        raise FetchTimeoutError(url=url)


async def _fetch_image(url: str, fetcher: PinnedFetcher) -> ProxiedImage:
    max_bytes = fetcher.max_bytes

    try:
        async with fetcher.open(url) as upstream:
            response = upstream.response

            if not response.is_success:
                logger.warning(
                    f"Upstream returned HTTP {response.status_code}",
                    extra={"context": {"url": url, "final_url": str(upstream.url)}},
                )
                raise UpstreamError(url=url, http_status=response.status_code)

            # Compressed bodies would be inflated before the size limit sees them
            content_encoding = response.headers.get("content-encoding", "").strip().lower()
            if content_encoding not in ("", "identity"):
                logger.warning(
                    "Upstream ignored Accept-Encoding: identity",
                    extra={"context": {"url": url, "content_encoding": content_encoding}},
                )
                raise UpstreamError(url=url, content_encoding=content_encoding)

            content_type = normalize_content_type(response.headers.get("content-type"))
            if not is_safe_content_type(content_type):
                raise UnsupportedImageTypeError(url=url, content_type=content_type)

            # Advisory only; the streaming check below is what enforces the limit
            content_length = response.headers.get("content-length", "")
            if content_length.isdigit() and int(content_length) > max_bytes:
                raise PayloadTooLargeError(
                    file_size=int(content_length),
                    limit=max_bytes,
                )

            data = await read_body_with_limit(response, max_bytes)
            final_url = str(upstream.url)
            redirects = upstream.redirects

    except httpx.TimeoutException:
        raise FetchTimeoutError(url=url)
    except httpx.HTTPError as e:
        logger.warning(
            "Upstream fetch failed",
            extra={"context": {"url": url, "error": repr(e)}},
        )
        raise FetchError(url=url, reason=str(e))

    if not validate_magic_bytes(data, content_type):
        raise ContentMismatchError(
            url=url,
            content_type=content_type,
            leading_bytes=data[:12].hex(),
        )

    return ProxiedImage(
        content=data,
        content_type=content_type,
        final_url=final_url,
        redirects=redirects,
    )
