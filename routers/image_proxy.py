from fastapi import APIRouter, Request
from fastapi.responses import Response

from exceptions import FetchError, PicketError
from schemas import ProxiedImage
from security.governor import RequestGovernor
from utils.logging import get_logger
from utils.url_fetch import fetch_image

router = APIRouter()

logger = get_logger("routers.image_proxy")

# Served bytes must never be interpreted as anything but an inert image
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "Content-Disposition": 'inline; filename="image"',
    "Content-Security-Policy": "default-src 'none'; style-src 'none'; script-src 'none'",
    "X-Frame-Options": "DENY",
    "Cross-Origin-Resource-Policy": "same-site",
    "Referrer-Policy": "no-referrer",
}


@router.get("/api/news-image")
async def news_image(request: Request):
    """Proxy a remote raster image.

    Query: ``url`` (exactly one, HTTPS). Responds with the raw image bytes
    and long-lived cache headers, or a JSON error (see exceptions.py).
    """
    governor: RequestGovernor = request.app.state.governor

    # A repeated parameter is treated the same as a missing one
    values = request.query_params.getlist("url")
    url = await governor.admit(request, values[0] if len(values) == 1 else None)

    async with governor.fetch_slot():
        try:
            image = await fetch_image(url, request.app.state.fetcher)
        except PicketError:
            raise
        except Exception:
            logger.exception(
                "Unexpected error while fetching image",
                extra={"request_id": getattr(request.state, "request_id", "")},
            )
            raise FetchError(url=url)

    return _build_image_response(image, request.app.state.settings.cache_max_age_seconds)


def _build_image_response(image: ProxiedImage, max_age: int) -> Response:
    """Raw bytes with cache and hardening headers."""
    return Response(
        content=image.content,
        media_type=image.content_type,
        headers={
            "Content-Length": str(image.size),
            "Cache-Control": f"public, max-age={max_age}, stale-while-revalidate={max_age * 2}",
            **SECURITY_HEADERS,
        },
    )
