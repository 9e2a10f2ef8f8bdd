from pydantic import BaseModel, Field


class ResolvedTarget(BaseModel):
    """A hostname plus every address DNS returned for it, all validated."""

    hostname: str
    addresses: list[str] = Field(..., min_length=1)

    @property
    def pinned_ip(self) -> str:
        """Address the connection is pinned to for the whole request."""
        return self.addresses[0]


class ProxiedImage(BaseModel):
    """Internal result passed between the fetch pipeline and the response."""

    content: bytes
    content_type: str
    final_url: str
    redirects: int = 0

    @property
    def size(self) -> int:
        return len(self.content)


class ErrorResponse(BaseModel):
    """Standard error response. Deliberately carries no details."""

    error: str


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str = "ok"
    version: str
    active_fetches: int
    max_concurrent_fetches: int
