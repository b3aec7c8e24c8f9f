"""
Typed accessors over the key-value store.

Composite operations (saving a credential and indexing it on its owner,
deleting a credential and unindexing it) are two separate writes. The store
has no cross-key transactions, so a failure between the writes leaves the
first one applied and the error is raised to the caller, never rolled back.
Readers tolerate the resulting drift: `get_for_user` skips index entries whose
credential record is gone or now belongs to another user.
"""

import logging
from typing import List, Optional, Type, TypeVar

from pydantic import ValidationError

from passkeygate.core.clock import Clock, now_ms, system_clock
from passkeygate.core.config import settings
from passkeygate.core.exceptions import StoreError
from passkeygate.core.kv import KeyValueStore
from passkeygate.core.models import User, Credential, Challenge, ManagementToken, StoredModel

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=StoredModel)


class _EntityManager:
    namespace = ""

    def __init__(self, kv: KeyValueStore):
        self._kv = kv

    def key(self, entity_id: str) -> str:
        return f"{settings.KV_KEY_PREFIX}{self.namespace}:{entity_id}"

    def _parse(self, model: Type[M], entity_id: str, document) -> Optional[M]:
        if document is None:
            return None
        try:
            return model.model_validate(document)
        except ValidationError as e:
            raise StoreError(f"Invalid {self.namespace} record '{entity_id}': {e.error_count()} field errors") from e


class UserManager(_EntityManager):
    namespace = "user"

    async def get(self, user_id: str) -> Optional[User]:
        return self._parse(User, user_id, await self._kv.get(self.key(user_id)))

    async def save(self, user: User) -> User:
        await self._kv.put(self.key(user.id), user.to_document())
        return user


class CredentialManager(_EntityManager):
    """Owns credential records and keeps each owner's credential index in step."""
    namespace = "credential"

    def __init__(self, kv: KeyValueStore, users: UserManager):
        super().__init__(kv)
        self._users = users

    async def get(self, credential_id: str) -> Optional[Credential]:
        return self._parse(Credential, credential_id, await self._kv.get(self.key(credential_id)))

    async def save(self, credential: Credential) -> Credential:
        """Persists the credential, then appends it to its owner's index if absent."""
        await self._kv.put(self.key(credential.id), credential.to_document())

        user = await self._users.get(credential.user_id)
        if user is None:
            logger.warning(f"Credential {credential.id} saved for missing user {credential.user_id}")
        elif user.add_credential(credential.id):
            await self._users.save(user)
        return credential

    async def get_for_user(self, user_id: str) -> List[Credential]:
        user = await self._users.get(user_id)
        if user is None:
            return []
        credentials = []
        for credential_id in user.credential_ids:
            credential = await self.get(credential_id)
            if credential is None:
                logger.debug(f"Skipping dangling credential {credential_id} on user {user_id}")
                continue
            if credential.user_id != user_id:
                logger.warning(f"Skipping credential {credential_id} indexed on user {user_id} but owned by another user")
                continue
            credentials.append(credential)
        return credentials

    async def delete(self, credential_id: str) -> bool:
        """Unindexes the credential from its owner, then deletes it. False if it did not exist."""
        credential = await self.get(credential_id)
        if credential is None:
            return False

        user = await self._users.get(credential.user_id)
        if user is not None:
            user.remove_credential(credential_id)
            await self._users.save(user)

        await self._kv.delete(self.key(credential_id))
        return True


class ChallengeManager(_EntityManager):
    namespace = "challenge"

    async def save(self, challenge_id: str, challenge: Challenge) -> None:
        await self._kv.put(self.key(challenge_id), challenge.to_document(), ttl=settings.CHALLENGE_TTL_SECONDS)

    async def consume(self, challenge_id: str) -> Optional[Challenge]:
        """Reads and destroys a challenge. None once expired or already consumed."""
        return self._parse(Challenge, challenge_id, await self._kv.pop(self.key(challenge_id)))


class ManagementTokenManager(_EntityManager):
    namespace = "mgmt_token"

    def __init__(self, kv: KeyValueStore, clock: Clock = system_clock):
        super().__init__(kv)
        self._clock = clock

    async def save(self, token_id: str, user_id: str) -> ManagementToken:
        token = ManagementToken(user_id=user_id, created_at=now_ms(self._clock))
        await self._kv.put(self.key(token_id), token.to_document(), ttl=settings.MANAGEMENT_TOKEN_TTL_SECONDS)
        return token

    async def validate(self, token_id: str, expected_user_id: str) -> bool:
        """True if the token exists and is bound to the user. The token stays valid until its TTL."""
        token = self._parse(ManagementToken, token_id, await self._kv.get(self.key(token_id)))
        if token is None:
            return False
        return token.user_id == expected_user_id


class PasskeyStore:
    """Entity store: the single owner of every persisted record."""

    def __init__(self, kv: KeyValueStore, clock: Clock = system_clock):
        self.kv = kv
        self.users = UserManager(kv)
        self.credentials = CredentialManager(kv, self.users)
        self.challenges = ChallengeManager(kv)
        self.management_tokens = ManagementTokenManager(kv, clock)
