import socket
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from main import create_app
from utils.url_fetch import PinnedFetcher

PUBLIC_IP = "93.184.216.34"

# Smallest byte strings that carry each format's signature (>= 12 bytes)
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00" + b"\x00" * 32
PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR" + b"\x00" * 32
GIF_BYTES = b"GIF89a\x01\x00\x01\x00\x80\x00\x00" + b"\x00" * 32
WEBP_BYTES = b"RIFF\x24\x00\x00\x00WEBPVP8 " + b"\x00" * 32
AVIF_BYTES = b"\x00\x00\x00\x1cftypavif\x00\x00\x00\x00" + b"\x00" * 32


@pytest.fixture
def app():
    """Fresh application (and so fresh rate/concurrency counters)."""
    return create_app()


@pytest.fixture
def client(app):
    """FastAPI test client (does not raise server exceptions)."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def fake_dns():
    """Replace DNS with a table: ``fake_dns[host] = {AF_INET: [...]}``.

    Unknown hosts resolve to nothing. Every lookup is recorded in
    ``fake_dns["__calls__"]`` as ``(host, family)``.
    """
    records: dict = {"__calls__": []}

    async def resolve(hostname, family):
        records["__calls__"].append((hostname, family))
        return list(records.get(hostname, {}).get(family, []))

    with patch("security.ssrf._resolve_family", new=resolve):
        yield records


@pytest.fixture
def public_dns(fake_dns):
    """example.com and cdn.example.com resolve to one public IPv4."""
    fake_dns["example.com"] = {socket.AF_INET: [PUBLIC_IP]}
    fake_dns["cdn.example.com"] = {socket.AF_INET: ["93.184.216.35"]}
    return fake_dns


def make_fetcher(handler, **kwargs) -> PinnedFetcher:
    """PinnedFetcher whose upstream is an in-process httpx handler."""
    return PinnedFetcher(transport=httpx.MockTransport(handler), **kwargs)


def image_response(body: bytes, content_type: str, **kwargs) -> httpx.Response:
    return httpx.Response(200, content=body, headers={"content-type": content_type}, **kwargs)


def redirect_response(location: str, status: int = 302) -> httpx.Response:
    return httpx.Response(status, headers={"location": location})
