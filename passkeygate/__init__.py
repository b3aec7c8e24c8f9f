"""
PasskeyGate
===========

A small async passkey service for FastAPI: WebAuthn-style registration and
authentication ceremonies over a key-value store, with credential deletion
gated behind a short-lived management token.

- One JSON endpoint taking `{action, data}` and answering `{code, message?, data?}`.
- Relying party id and origin derived from each request, no static domain config.
- Users keyed by a deterministic hash of their username; re-registration replaces the passkey.
- Pluggable key-value store: SQLAlchemy async (SQLite/PostgreSQL) or in-memory.

Only the client data of a ceremony is verified (challenge, origin, type).
Attestation objects are stored verbatim and assertion signatures are not checked.
"""

__version__ = "1.0.0"
__description__ = "Passkey registration, authentication and management-token gated deletion"

from typing import Optional

from fastapi import FastAPI

from .core.config import settings, init_settings


def init_app(app: FastAPI, service=None):
    """
    Mounts the passkey router on an existing FastAPI app.
    :param app: the application
    :param service: a `PasskeyGateAsync` to serve requests with; built from settings on first request when omitted.
    :return:
    """
    from passkeygate.routers import passkey_router

    if service is not None:
        app.state.passkey_service = service
    app.include_router(passkey_router, prefix=settings.API_ROUTE)


def create_app(service=None, title: Optional[str] = None) -> FastAPI:
    """Creates a standalone FastAPI application serving the passkey API."""
    app = FastAPI(title=title or settings.RP_NAME, version=__version__)
    init_app(app, service)
    return app


__all__ = [
    "settings",
    "init_settings",
    "init_app",
    "create_app",
]
