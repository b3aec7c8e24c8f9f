import base64
import hashlib
import logging
import secrets
import uuid
from typing import Callable

logger = logging.getLogger(__name__)

RandomSource = Callable[[int], bytes]


class EncryptionUtils:
    """
    Encoding helpers and random value generation for ceremonies.
    The random source is injectable so tests can pin challenges and ids.
    """

    def __init__(self, random_bytes: RandomSource = secrets.token_bytes):
        self.random_bytes = random_bytes

    def gen_challenge(self, length: int = 32) -> str:
        """
        Generates a random ceremony challenge, base64url encoded.
        """
        return self.base64url_encode(self.random_bytes(length))

    def gen_id(self) -> str:
        """
        Generates a random 128-bit identifier rendered as UUIDv4 hex without dashes.
        """
        return uuid.UUID(bytes=self.random_bytes(16), version=4).hex

    @staticmethod
    def sha256_b64url(text: str) -> str:
        """
        Hashes a string with SHA-256 and returns the digest as unpadded base64url.
        """
        return EncryptionUtils.base64url_encode(hashlib.sha256(text.encode('utf-8')).digest())

    @staticmethod
    def base64url_encode(data: bytes) -> str:
        """
        Encodes bytes to a base64url string without padding.
        """
        return base64.urlsafe_b64encode(data).rstrip(b'=').decode('utf-8')

    @staticmethod
    def base64url_decode(data: str) -> bytes:
        """
        Decodes a base64url string without padding to bytes.
        """
        padding = '=' * (4 - (len(data) % 4)) if len(data) % 4 != 0 else ''
        return base64.urlsafe_b64decode(data + padding)


encryption_utils = EncryptionUtils()
