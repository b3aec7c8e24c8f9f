from .passkey import passkey_router
