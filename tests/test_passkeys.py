import json

import pytest

from passkeygate.core.encryption import encryption_utils
from passkeygate.core.exceptions import VerificationError
from passkeygate.core.passkeys import PasskeysCore, REGISTRATION_TYPE, AUTHENTICATION_TYPE


@pytest.fixture
def passkeys_core(utils):
    """Provides a PasskeysCore instance for testing."""
    return PasskeysCore(utils)


def test_generate_registration_options(passkeys_core, rp):
    """
    Registration options carry the relying party, the assertion handle and an empty exclusion list.
    """
    options = passkeys_core.generate_registration_options(rp, "handle-123", "alice", "chal")

    assert options["rp"] == {"name": rp.name, "id": rp.id}
    assert options["user"] == {"id": "handle-123", "name": "alice", "displayName": "alice"}
    assert options["challenge"] == "chal"
    assert [p["alg"] for p in options["pubKeyCredParams"]] == [-7, -257]
    assert options["timeout"] == 60000
    assert options["attestation"] == "none"
    assert options["excludeCredentials"] == []
    assert options["authenticatorSelection"]["authenticatorAttachment"] == "platform"
    assert options["authenticatorSelection"]["residentKey"] == "preferred"


def test_generate_authentication_options(passkeys_core, rp):
    options = passkeys_core.generate_authentication_options(rp, "chal")
    assert options == {
        "challenge": "chal",
        "timeout": 60000,
        "rpId": rp.id,
        "userVerification": "preferred",
        "allowCredentials": [],
    }


def test_generate_auth_options_with_credentials(passkeys_core, rp):
    allow = [{"id": "c1", "type": "public-key", "transports": ["usb"]}]
    options = passkeys_core.generate_authentication_options(rp, "chal", allow)
    assert options["allowCredentials"] == allow


def test_new_challenge_is_32_random_bytes(passkeys_core):
    first, second = passkeys_core.new_challenge(), passkeys_core.new_challenge()
    assert first != second
    assert len(encryption_utils.base64url_decode(first)) == 32


def test_verify_client_data_success(passkeys_core, rp, client_response):
    response = client_response("chal", ceremony_type=AUTHENTICATION_TYPE)
    client_data = passkeys_core.verify_client_data(response, "chal", rp, AUTHENTICATION_TYPE)
    assert client_data["origin"] == rp.origin


def test_challenge_is_checked_before_origin_and_type(passkeys_core, rp, client_response):
    response = client_response("wrong", origin="https://evil.com", ceremony_type=AUTHENTICATION_TYPE)
    with pytest.raises(VerificationError, match="Challenge mismatch"):
        passkeys_core.verify_client_data(response, "chal", rp, REGISTRATION_TYPE)


def test_origin_is_checked_before_type(passkeys_core, rp, client_response):
    response = client_response("chal", origin="https://evil.com", ceremony_type=AUTHENTICATION_TYPE)
    with pytest.raises(VerificationError) as exc:
        passkeys_core.verify_client_data(response, "chal", rp, REGISTRATION_TYPE)
    assert exc.value.reason == f"Origin mismatch: expected {rp.origin}, got https://evil.com"
    assert str(exc.value).startswith("Verification failed: ")


def test_authentication_origin_mismatch_is_terse(passkeys_core, rp, client_response):
    response = client_response("chal", origin="https://evil.com", ceremony_type=AUTHENTICATION_TYPE)
    with pytest.raises(VerificationError) as exc:
        passkeys_core.verify_client_data(response, "chal", rp, AUTHENTICATION_TYPE)
    assert exc.value.reason == "Origin mismatch"


def test_verify_client_data_invalid_type(passkeys_core, rp, client_response):
    response = client_response("chal", ceremony_type=AUTHENTICATION_TYPE)
    with pytest.raises(VerificationError, match="Invalid operation type"):
        passkeys_core.verify_client_data(response, "chal", rp, REGISTRATION_TYPE)


@pytest.mark.parametrize("response", [
    {},
    {"response": {}},
    {"response": {"clientDataJSON": "%%%"}},
    {"response": {"clientDataJSON": encryption_utils.base64url_encode(b"not json")}},
    {"response": {"clientDataJSON": encryption_utils.base64url_encode(json.dumps([1, 2]).encode())}},
    "a string",
])
def test_malformed_client_data(passkeys_core, rp, response):
    with pytest.raises(VerificationError, match="Malformed client data"):
        passkeys_core.verify_client_data(response, "chal", rp, REGISTRATION_TYPE)
