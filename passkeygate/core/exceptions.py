from enum import IntEnum


class ResCode(IntEnum):
    """Envelope codes of the passkey API."""
    SUCCESS = 0
    FAIL = 1000
    NOT_FOUND = 1404


class PasskeyGateError(Exception):
    """Base exception for PasskeyGate. `code` is the envelope code it maps to."""
    code = ResCode.FAIL


class StoreError(PasskeyGateError):
    """Raised when the key-value store is unreachable, misconfigured or holds undecodable data."""
    pass


class InvalidRequestError(PasskeyGateError):
    """Raised when a required request field is missing."""
    pass


class ManagementTokenRequiredError(InvalidRequestError):
    """Raised when a deletion is attempted without a management token."""
    pass


class ChallengeExpiredError(PasskeyGateError):
    """Raised when a challenge id is unknown, already consumed or past its TTL."""
    pass


class VerificationError(PasskeyGateError):
    """
    Raised when the client data of a ceremony does not match what was issued.
    `reason` holds the bare cause, the message carries the public prefix.
    """

    def __init__(self, reason: str):
        super().__init__(f"Verification failed: {reason}")
        self.reason = reason


class UnknownCredentialError(PasskeyGateError):
    """Raised when an assertion names a credential that is not registered."""
    pass


class UserNotFoundError(PasskeyGateError):
    """Raised when a credential's owning user record is missing."""
    pass


class NotFoundError(PasskeyGateError):
    """Base for deliberate absence signals."""
    code = ResCode.NOT_FOUND


class NoPasskeyError(NotFoundError):
    """Raised when a username has no registered passkey."""
    pass


class CredentialNotFoundError(NotFoundError):
    """Raised when a credential targeted for deletion does not exist."""
    pass


class NotAuthorizedError(PasskeyGateError):
    """Raised when a user tries to act on a credential they do not own."""
    pass


class InvalidManagementTokenError(PasskeyGateError):
    """Raised when a management token is unknown, expired or bound to another user."""
    pass
