class PicketError(Exception):
    """Base exception for all Picket errors.

    ``message`` is the only text ever returned to the caller. Keyword details
    are kept for structured logging and never serialized into a response.
    """

    status_code: int = 500
    error_code: str = "internal_error"
    default_message: str = "Internal error"

    def __init__(self, message: str | None = None, **kwargs):
        self.message = message or self.default_message
        self.details = kwargs
        super().__init__(self.message)


class ValidationError(PicketError):
    """Malformed or disallowed inbound URL."""

    status_code = 400
    error_code = "invalid_url"
    default_message = "Invalid URL"


class PolicyError(PicketError):
    """Target is, or resolves to, a private/internal address."""

    status_code = 400
    error_code = "url_not_allowed"
    default_message = "URL not allowed"


class FetchError(PicketError):
    """Fetch failed for a reason the caller does not need to know."""

    status_code = 502
    error_code = "fetch_failed"
    default_message = "Fetch failed"


class ResolutionError(FetchError):
    """DNS resolution failed or returned no addresses."""

    error_code = "resolution_failed"


class ProtocolError(FetchError):
    """Non-HTTPS URL reached the fetcher (e.g. via a redirect hop)."""

    error_code = "protocol_not_allowed"


class RedirectError(FetchError):
    """Too many redirects, or a redirect without a Location header."""

    error_code = "redirect_failed"


class UpstreamError(PicketError):
    """Upstream answered with a non-2xx status."""

    status_code = 502
    error_code = "upstream_error"
    default_message = "Upstream error"


class UnsupportedImageTypeError(PicketError):
    """Declared Content-Type is not an allow-listed raster format."""

    status_code = 502
    error_code = "unsupported_image_type"
    default_message = "Unsupported image type"


class ContentMismatchError(PicketError):
    """Leading bytes do not match the declared Content-Type."""

    status_code = 502
    error_code = "content_mismatch"
    default_message = "Content does not match declared type"


class PayloadTooLargeError(PicketError):
    """Response body exceeds the maximum image size."""

    status_code = 502
    error_code = "image_too_large"
    default_message = "Image too large"


class FetchTimeoutError(PicketError):
    """Upstream did not answer within the fetch timeout."""

    status_code = 504
    error_code = "timeout"
    default_message = "Timeout"


class RateLimitError(PicketError):
    """Rate limit exceeded."""

    status_code = 429
    error_code = "rate_limit_exceeded"
    default_message = "Rate limit exceeded"


class CapacityError(PicketError):
    """Global concurrent fetch limit reached."""

    status_code = 503
    error_code = "service_overloaded"
    default_message = "Too many concurrent requests"
