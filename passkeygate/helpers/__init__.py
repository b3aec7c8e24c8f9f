from typing import Dict

from fastapi import Request

from passkeygate.core.config import settings
from passkeygate.core.models import RelyingParty


def get_relying_party(request: Request) -> RelyingParty:
    """
    Derives the relying party from the incoming request instead of static
    configuration, so every host the service is deployed under becomes a
    valid relying party automatically.

    The origin is the `Origin` header when the browser sent one, otherwise the
    scheme and host of the request URL. The rpID is the request hostname.
    """
    url = request.url
    origin = request.headers.get("origin") or f"{url.scheme}://{url.netloc}"
    return RelyingParty(name=settings.RP_NAME, id=url.hostname or "localhost", origin=origin)


def get_cors_headers(request: Request, methods: str = "POST, OPTIONS") -> Dict[str, str]:
    """
    CORS headers reflecting the caller's origin back, any origin is allowed.
    """
    return {
        "Content-Type": "application/json; charset=UTF-8",
        "Access-Control-Allow-Origin": request.headers.get("origin") or "*",
        "Access-Control-Allow-Methods": methods,
        "Access-Control-Allow-Headers": "Content-Type",
        "Access-Control-Max-Age": str(settings.CORS_MAX_AGE_SECONDS),
    }
