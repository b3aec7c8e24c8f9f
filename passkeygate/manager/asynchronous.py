import logging
from typing import Optional, Tuple, List, Dict, Any

from pydantic import ValidationError

from passkeygate.core.clock import Clock, now_ms, system_clock
from passkeygate.core.encryption import EncryptionUtils, encryption_utils
from passkeygate.core.exceptions import (
    InvalidRequestError, ManagementTokenRequiredError, ChallengeExpiredError, VerificationError,
    UnknownCredentialError, UserNotFoundError, NoPasskeyError, CredentialNotFoundError,
    NotAuthorizedError, InvalidManagementTokenError
)
from passkeygate.core.hooks import HookManager, Events
from passkeygate.core.identity import IdentityHasher
from passkeygate.core.kv import KeyValueStore
from passkeygate.core.models import User, Credential, Challenge, RelyingParty
from passkeygate.core.passkeys import PasskeysCore, REGISTRATION_TYPE, AUTHENTICATION_TYPE
from passkeygate.manager.store import PasskeyStore

logger = logging.getLogger(__name__)


class PasskeyGateAsync:
    """
    High-level facade for every passkey ceremony and credential administration operation.

    Each call is stateless: context is rebuilt from the store on every request.
    The store, clock and random source are all injected, nothing is read from
    module globals at call time.
    """

    def __init__(
            self,
            kv: KeyValueStore,
            clock: Clock = system_clock,
            utils: EncryptionUtils = encryption_utils,
            hasher: Optional[IdentityHasher] = None,
            hooks: Optional[HookManager] = None,
    ):
        self.clock = clock
        self.store = PasskeyStore(kv, clock)
        self.utils = utils
        self.core = PasskeysCore(utils)
        self.identity = hasher or IdentityHasher()
        self.hooks = hooks or HookManager()

    def _now(self) -> int:
        return now_ms(self.clock)

    # --- Registration ---

    async def generate_registration_options(self, rp: RelyingParty, username: str, token: str) -> Dict[str, Any]:
        """
        Starts a registration ceremony. Re-registering wipes the user's existing
        credentials and rotates the stored token right away, whether or not the
        ceremony is ever finished.
        """
        if not username or not token:
            raise InvalidRequestError("Username and token are required")

        user_id = self.identity.user_id(username)
        user = await self.store.users.get(user_id)

        if user:
            for credential in await self.store.credentials.get_for_user(user_id):
                await self.store.credentials.delete(credential.id)
            # Re-read so the index emptied by the deletes is what gets written back.
            user = await self.store.users.get(user_id) or user
            user.token = token
            user.updated_at = self._now()
            await self.store.users.save(user)
            logger.info(f"Re-registration started for user {user_id}, previous passkeys removed")
        else:
            user = User(id=user_id, username=username, token=token, credential_ids=[], created_at=self._now())
            await self.store.users.save(user)
            logger.info(f"Created user {user_id}")
            await self.hooks.trigger(Events.USER_CREATED, user_id=user_id, username=username)

        challenge = self.core.new_challenge()
        assertion_handle = self.identity.assertion_handle(username)
        options = self.core.generate_registration_options(rp, assertion_handle, username, challenge)

        challenge_id = self.utils.gen_id()
        await self.store.challenges.save(challenge_id, Challenge(
            challenge=challenge,
            user_id=user_id,
            username=username,
            token=token,
            webauthn_user_id=assertion_handle,
            created_at=self._now(),
        ))
        return {"options": options, "challengeId": challenge_id}

    async def verify_registration(self, rp: RelyingParty, challenge_id: str, response: Dict[str, Any]) -> Dict[str, Any]:
        """Finishes a registration ceremony and stores the new credential."""
        challenge = await self._consume_challenge(challenge_id, response)
        self._verify(response, challenge, rp, REGISTRATION_TYPE)

        credential_id = response.get("id")
        if not credential_id or not isinstance(credential_id, str):
            raise VerificationError("Credential id missing from response")
        if challenge.user_id is None or challenge.token is None or challenge.webauthn_user_id is None:
            raise VerificationError("Challenge was not issued for a registration")

        existing = await self.store.credentials.get(credential_id)
        if existing is not None and existing.user_id != challenge.user_id:
            logger.warning(f"Rejected registration of credential {credential_id} owned by another user")
            raise VerificationError("Credential already registered to another user")

        attestation = response["response"]
        try:
            credential = Credential(
                id=credential_id,
                public_key=attestation.get("attestationObject"),
                counter=0,
                transports=attestation.get("transports") or [],
                device_type="multiDevice",
                backed_up=True,
                user_id=challenge.user_id,
                webauthn_user_id=challenge.webauthn_user_id,
                created_at=self._now(),
            )
        except ValidationError as e:
            logger.warning(f"Rejected registration response: {e.error_count()} field errors")
            raise VerificationError("Malformed response") from e
        await self.store.credentials.save(credential)

        # Second token refresh from the challenge context, in case another write landed after begin.
        user = await self.store.users.get(challenge.user_id)
        if user and challenge.token:
            user.token = challenge.token
            user.updated_at = self._now()
            await self.store.users.save(user)

        logger.info(f"Registered credential {credential_id} for user {challenge.user_id}")
        await self.hooks.trigger(Events.CREDENTIAL_REGISTERED, user_id=challenge.user_id, credential_id=credential_id)
        return {"verified": True, "credentialId": credential_id}

    # --- Authentication ---

    async def generate_authentication_options(self, rp: RelyingParty, username: Optional[str] = None) -> Dict[str, Any]:
        """
        Starts an authentication ceremony. With a username the allow-list names
        its credentials; without one the browser picks a discoverable passkey.
        """
        user_id = None
        allow_credentials: List[Dict[str, Any]] = []

        if username:
            user_id = self.identity.user_id(username)
            credentials = await self.store.credentials.get_for_user(user_id)
            if not credentials:
                raise NoPasskeyError("No passkey found for this user")
            allow_credentials = [credential.descriptor() for credential in credentials]

        challenge = self.core.new_challenge()
        options = self.core.generate_authentication_options(rp, challenge, allow_credentials)

        challenge_id = self.utils.gen_id()
        await self.store.challenges.save(challenge_id, Challenge(
            challenge=challenge, user_id=user_id, created_at=self._now()
        ))
        return {"options": options, "challengeId": challenge_id}

    async def verify_authentication(self, rp: RelyingParty, challenge_id: str, response: Dict[str, Any]) -> Dict[str, Any]:
        """
        Finishes an authentication ceremony and hands back the user's stored token,
        which is what lets a passkey stand in for typing the token.
        """
        credential, user = await self._verify_assertion(rp, challenge_id, response)

        credential.last_used_at = self._now()
        await self.store.credentials.save(credential)

        logger.info(f"User {user.id} authenticated with credential {credential.id}")
        await self.hooks.trigger(Events.USER_AUTHENTICATED, user_id=user.id, credential_id=credential.id)
        return {"verified": True, "username": user.username, "token": user.token}

    # --- Credential administration ---

    async def generate_management_token(self, rp: RelyingParty, challenge_id: str, response: Dict[str, Any]) -> Dict[str, Any]:
        """Same ceremony as authentication, but mints a short-lived deletion capability instead."""
        credential, user = await self._verify_assertion(rp, challenge_id, response)

        token_id = self.utils.gen_id()
        await self.store.management_tokens.save(token_id, credential.user_id)

        logger.info(f"Issued management token for user {credential.user_id}")
        await self.hooks.trigger(Events.MANAGEMENT_TOKEN_ISSUED, user_id=credential.user_id)
        return {"managementToken": token_id, "username": user.username}

    async def list_credentials(self, username: str) -> List[Dict[str, Any]]:
        if not username:
            raise InvalidRequestError("Username is required")
        credentials = await self.store.credentials.get_for_user(self.identity.user_id(username))
        return [credential.summary() for credential in credentials]

    async def delete_credential(self, credential_id: str, username: str, management_token: str) -> Dict[str, Any]:
        """
        Deletes a credential after checking ownership and the management token.
        The token is not consumed and stays usable until its TTL lapses.
        """
        if not credential_id or not username:
            raise InvalidRequestError("Credential ID and username are required")
        if not management_token:
            raise ManagementTokenRequiredError("Management token required, complete a passkey verification first")

        credential = await self.store.credentials.get(credential_id)
        if not credential:
            raise CredentialNotFoundError("Credential does not exist")

        user_id = self.identity.user_id(username)
        if credential.user_id != user_id:
            logger.warning(f"Rejected deletion of credential {credential_id} by non-owner {user_id}")
            raise NotAuthorizedError("Not authorized to delete this credential")

        if not await self.store.management_tokens.validate(management_token, user_id):
            raise InvalidManagementTokenError("Management token invalid or expired")

        await self.store.credentials.delete(credential_id)
        logger.info(f"Deleted credential {credential_id} of user {user_id}")
        await self.hooks.trigger(Events.CREDENTIAL_DELETED, user_id=user_id, credential_id=credential_id)
        return {"deleted": True}

    # --- Internals ---

    async def _consume_challenge(self, challenge_id: str, response: Dict[str, Any]) -> Challenge:
        if not challenge_id or not response:
            raise InvalidRequestError("Missing required parameters")
        challenge = await self.store.challenges.consume(challenge_id)
        if challenge is None:
            raise ChallengeExpiredError("Challenge expired or invalid")
        return challenge

    def _verify(self, response: Dict[str, Any], challenge: Challenge, rp: RelyingParty, expected_type: str):
        try:
            self.core.verify_client_data(response, challenge.challenge, rp, expected_type)
        except VerificationError as e:
            logger.warning(f"Rejected {expected_type} ceremony: {e.reason}")
            raise

    async def _verify_assertion(
            self, rp: RelyingParty, challenge_id: str, response: Dict[str, Any]
    ) -> Tuple[Credential, User]:
        """
        Shared pipeline of authentication and management-token issuance.
        The credential is looked up by the id the client asserts; it is not
        cross-checked against a user id bound to the challenge.
        """
        challenge = await self._consume_challenge(challenge_id, response)

        credential_id = response.get("id") if isinstance(response, dict) else None
        credential = await self.store.credentials.get(credential_id) if isinstance(credential_id, str) else None
        if not credential:
            raise UnknownCredentialError("Credential not found")

        user = await self.store.users.get(credential.user_id)
        if not user:
            raise UserNotFoundError("User not found")

        self._verify(response, challenge, rp, AUTHENTICATION_TYPE)
        return credential, user
