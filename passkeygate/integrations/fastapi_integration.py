import logging
from typing import Optional

from fastapi import Request

from passkeygate.core.clock import system_clock
from passkeygate.core.kv import create_store
from passkeygate.manager.asynchronous import PasskeyGateAsync

logger = logging.getLogger(__name__)


def build_passkey_service() -> PasskeyGateAsync:
    """Builds the service over the store selected by the settings."""
    return PasskeyGateAsync(create_store(system_clock), clock=system_clock)


def get_passkey_service(request: Request) -> PasskeyGateAsync:
    """
    FastAPI dependency returning the service attached to the application by
    `init_app`. The service is built lazily on first use when the app was
    wired without one.
    """
    service: Optional[PasskeyGateAsync] = getattr(request.app.state, "passkey_service", None)
    if service is None:
        logger.debug("No passkey service attached to the app, building one from settings.")
        service = build_passkey_service()
        request.app.state.passkey_service = service
    return service
