import json
import logging
from typing import List, Dict, Any, Optional

from passkeygate.core.config import settings
from passkeygate.core.encryption import EncryptionUtils, encryption_utils
from passkeygate.core.exceptions import VerificationError
from passkeygate.core.models import RelyingParty

logger = logging.getLogger(__name__)

REGISTRATION_TYPE = "webauthn.create"
AUTHENTICATION_TYPE = "webauthn.get"


class PasskeysCore:
    """
    Builds WebAuthn ceremony options and checks the client data a browser
    returns. Only `clientDataJSON` is verified (challenge, origin, type);
    attestation objects and assertion signatures are stored or ignored as-is.
    """

    def __init__(self, utils: EncryptionUtils = encryption_utils):
        self.utils = utils

    def new_challenge(self) -> str:
        return self.utils.gen_challenge(settings.CHALLENGE_LENGTH_BYTES)

    def generate_registration_options(
            self, rp: RelyingParty, assertion_handle: str, username: str, challenge: str
    ) -> dict:
        """Generate options for a passkey registration ceremony."""
        return {
            "rp": {"name": rp.name, "id": rp.id},
            "user": {
                "id": assertion_handle,
                "name": username,
                "displayName": username,
            },
            "challenge": challenge,
            "pubKeyCredParams": [
                {"type": "public-key", "alg": -7},  # ES256
                {"type": "public-key", "alg": -257},  # RS256
            ],
            "timeout": settings.CEREMONY_TIMEOUT_MS,
            "attestation": "none",
            # Left empty so a username can re-register after its old passkey was wiped.
            "excludeCredentials": [],
            "authenticatorSelection": {
                "residentKey": "preferred",
                "userVerification": "preferred",
                "authenticatorAttachment": "platform",
            },
        }

    def generate_authentication_options(
            self, rp: RelyingParty, challenge: str, allow_credentials: Optional[List[Dict[str, Any]]] = None
    ) -> dict:
        """Generate options for an authentication ceremony. No allow-list means a discoverable login."""
        return {
            "challenge": challenge,
            "timeout": settings.CEREMONY_TIMEOUT_MS,
            "rpId": rp.id,
            "userVerification": "preferred",
            "allowCredentials": allow_credentials or [],
        }

    def decode_client_data(self, response: dict) -> Dict[str, Any]:
        try:
            raw = self.utils.base64url_decode(response["response"]["clientDataJSON"])
            client_data = json.loads(raw.decode("utf-8"))
        except (KeyError, TypeError, ValueError) as e:
            raise VerificationError(f"Malformed client data ({e.__class__.__name__})")
        if not isinstance(client_data, dict):
            raise VerificationError("Malformed client data")
        return client_data

    def verify_client_data(
            self, response: dict, expected_challenge: str, rp: RelyingParty, expected_type: str
    ) -> Dict[str, Any]:
        """
        Checks challenge, then origin, then ceremony type, and returns the
        decoded client data. Raises VerificationError on the first mismatch.
        """
        client_data = self.decode_client_data(response)

        if client_data.get("challenge") != expected_challenge:
            raise VerificationError("Challenge mismatch")

        if client_data.get("origin") != rp.origin:
            if expected_type == REGISTRATION_TYPE:
                raise VerificationError(f"Origin mismatch: expected {rp.origin}, got {client_data.get('origin')}")
            raise VerificationError("Origin mismatch")

        if client_data.get("type") != expected_type:
            raise VerificationError("Invalid operation type")

        return client_data
