from typing import Optional

from passkeygate.core.config import settings
from passkeygate.core.encryption import EncryptionUtils


class IdentityHasher:
    """
    Maps a username to two stable, unrelated identifiers: the internal user id
    (storage key) and the assertion handle sent to authenticators as `user.id`.
    Both are deterministic so a re-registration reuses them and credential
    managers can replace the old passkey in place.
    """

    def __init__(self, user_namespace: Optional[str] = None, handle_namespace: Optional[str] = None):
        self.user_namespace = user_namespace or settings.USER_ID_NAMESPACE
        self.handle_namespace = handle_namespace or settings.ASSERTION_HANDLE_NAMESPACE
        if self.user_namespace == self.handle_namespace:
            raise ValueError("User id and assertion handle namespaces must differ.")

    def user_id(self, username: str) -> str:
        return EncryptionUtils.sha256_b64url(f"{self.user_namespace}:{username}")

    def assertion_handle(self, username: str) -> str:
        return EncryptionUtils.sha256_b64url(f"{self.handle_namespace}:{username}")
