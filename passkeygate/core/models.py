"""
Entity models persisted in the key-value store.

Documents use camelCase keys (`credentialIds`, `webAuthnUserID`, ...), the
format browser clients and existing stored data already use. Timestamps are
integer milliseconds since the epoch.
"""

from typing import List, Optional, Any, Dict

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class StoredModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class User(StoredModel):
    id: str
    username: str
    token: str  # opaque caller secret, handed back after a successful authentication
    credential_ids: List[str] = Field(default_factory=list)
    created_at: int
    updated_at: Optional[int] = None

    def add_credential(self, credential_id: str) -> bool:
        """Appends to the ordered credential index. Returns False if already present."""
        if credential_id in self.credential_ids:
            return False
        self.credential_ids.append(credential_id)
        return True

    def remove_credential(self, credential_id: str):
        self.credential_ids = [cid for cid in self.credential_ids if cid != credential_id]


class Credential(StoredModel):
    id: str
    public_key: Optional[str] = None  # attestation object as sent by the client, never parsed
    counter: int = 0
    transports: List[str] = Field(default_factory=list)
    device_type: str = "multiDevice"
    backed_up: bool = True
    user_id: str
    webauthn_user_id: Optional[str] = Field(default=None, alias="webAuthnUserID")
    created_at: int
    last_used_at: Optional[int] = None

    def descriptor(self) -> Dict[str, Any]:
        """Entry for an `allowCredentials` list."""
        return {"id": self.id, "type": "public-key", "transports": list(self.transports)}

    def summary(self) -> Dict[str, Any]:
        """Public projection, no key material and no owner id."""
        return self.model_dump(
            by_alias=True, exclude_none=True,
            include={"id", "device_type", "backed_up", "created_at", "last_used_at"},
        )


class Challenge(StoredModel):
    """
    A pending ceremony. Registration challenges carry the username, token and
    assertion handle; authentication challenges carry at most a user id.
    """
    challenge: str
    user_id: Optional[str] = None
    username: Optional[str] = None
    token: Optional[str] = None
    webauthn_user_id: Optional[str] = Field(default=None, alias="webAuthnUserID")
    created_at: int


class ManagementToken(StoredModel):
    user_id: str
    created_at: int


class RelyingParty(BaseModel):
    """Relying party identity, derived per request."""
    name: str
    id: str
    origin: str
