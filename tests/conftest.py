import hashlib
import itertools
import json
import os

os.environ["KV_BACKEND"] = "memory"
os.environ["RP_NAME"] = "PasskeyGate Test"
os.environ["DATABASE_POOL_SIZE"] = "5"
os.environ["DATABASE_MAX_OVERFLOW"] = "5"

import pytest
from httpx import AsyncClient, ASGITransport

from passkeygate import create_app
from passkeygate.core.encryption import EncryptionUtils
from passkeygate.core.kv import MemoryKeyValueStore
from passkeygate.core.models import RelyingParty
from passkeygate.manager.asynchronous import PasskeyGateAsync

TEST_HOST = "passkeys.example.com"
TEST_ORIGIN = f"https://{TEST_HOST}"


class FakeClock:
    """Clock that only moves when a test tells it to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class CountingRandom:
    """Deterministic random source: every call returns fresh, distinct bytes."""

    def __init__(self):
        self._counter = itertools.count(1)

    def __call__(self, n: int) -> bytes:
        digest = hashlib.sha256(str(next(self._counter)).encode()).digest()
        return (digest * (n // len(digest) + 1))[:n]


def make_client_response(challenge, credential_id="cred-abc", origin=TEST_ORIGIN,
                         ceremony_type="webauthn.create", transports=None):
    """Builds what a browser would post back after navigator.credentials.create/get."""
    client_data = {"type": ceremony_type, "challenge": challenge, "origin": origin, "crossOrigin": False}
    return {
        "id": credential_id,
        "rawId": credential_id,
        "type": "public-key",
        "response": {
            "clientDataJSON": EncryptionUtils.base64url_encode(json.dumps(client_data).encode()),
            "attestationObject": "o2NmbXRkbm9uZWdhdHRTdG10oGhhdXRoRGF0YVgl",
            "transports": transports if transports is not None else ["internal", "hybrid"],
        },
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv(clock):
    return MemoryKeyValueStore(clock)


@pytest.fixture
def utils():
    return EncryptionUtils(random_bytes=CountingRandom())


@pytest.fixture
def service(kv, clock, utils):
    """A PasskeyGateAsync wired to an in-memory store, a fake clock and a deterministic random source."""
    return PasskeyGateAsync(kv, clock=clock, utils=utils)


@pytest.fixture
def rp():
    return RelyingParty(name="PasskeyGate Test", id=TEST_HOST, origin=TEST_ORIGIN)


@pytest.fixture
def client_response():
    return make_client_response


@pytest.fixture
async def registered(service, rp):
    """Registers 'alice' with credential 'cred-abc' and returns her begin payload."""
    begin = await service.generate_registration_options(rp, "alice", "tok-1")
    await service.verify_registration(
        rp, begin["challengeId"], make_client_response(begin["options"]["challenge"], "cred-abc")
    )
    return begin


@pytest.fixture
def app(service):
    """A FastAPI app serving the passkey API with the test service."""
    return create_app(service)


@pytest.fixture
async def fastapi_client(app):
    """Provide an AsyncClient for testing the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=TEST_ORIGIN) as client:
        yield client
