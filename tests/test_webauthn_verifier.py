"""Unit tests for ceremony options and python-fido2 backed verification."""
from __future__ import annotations

import asyncio

import pytest
from fido2.utils import websafe_decode, websafe_encode

from conftest import ORIGIN, RP_ID
from ownerkey.core.config import WebAuthnConfig
from ownerkey.core.errors import (
    AssertionInvalidError,
    AttestationInvalidError,
    ChallengeExpiredError,
    CounterRegressionError,
    NoChallengeError,
    NoCredentialsError,
)
from ownerkey.schemas.credential import DeviceType, StoredChallenge, now_epoch_ms
from ownerkey.services.challenge import build_challenge
from ownerkey.services.webauthn import (
    CHALLENGE_BYTES,
    WebAuthnVerifier,
    check_counter,
    credential_id_from_response,
)
from virtual_authenticator import VirtualAuthenticator


def make_verifier(**overrides) -> WebAuthnVerifier:
    values = {"rp_id": RP_ID, "rp_name": "OwnerKey Test", "origin": ORIGIN}
    values.update(overrides)
    return WebAuthnVerifier(WebAuthnConfig(**values))


def register(verifier: WebAuthnVerifier, authenticator: VirtualAuthenticator, **kwargs):
    options, challenge = verifier.generate_registration_options([])
    response = authenticator.register(options["challenge"], **kwargs)
    return asyncio.run(verifier.verify_registration(response, build_challenge(challenge, 60), "Key"))


@pytest.mark.parametrize(
    ("stored", "reported", "expected"),
    [(0, 0, 0), (0, 1, 1), (5, 6, 6), (5, 500, 500)],
)
def test_counter_accepted(stored: int, reported: int, expected: int) -> None:
    assert check_counter(stored, reported) == expected


@pytest.mark.parametrize(("stored", "reported"), [(5, 5), (5, 4), (3, 0)])
def test_counter_regression_rejected(stored: int, reported: int) -> None:
    with pytest.raises(CounterRegressionError):
        check_counter(stored, reported)


def test_counterless_authenticator_rejected_when_counter_required() -> None:
    with pytest.raises(CounterRegressionError):
        check_counter(0, 0, require_counter=True)
    assert check_counter(0, 1, require_counter=True) == 1


def test_registration_options_shape() -> None:
    verifier = make_verifier(user_verification="required")
    options, challenge = verifier.generate_registration_options([])

    assert options["challenge"] == challenge
    assert len(websafe_decode(challenge)) == CHALLENGE_BYTES
    assert options["rp"] == {"id": RP_ID, "name": "OwnerKey Test"}
    assert options["attestation"] == "none"
    assert options["excludeCredentials"] == []
    assert [p["alg"] for p in options["pubKeyCredParams"]] == [-7, -257]
    assert options["authenticatorSelection"] == {
        "residentKey": "preferred",
        "requireResidentKey": False,
        "userVerification": "required",
        "authenticatorAttachment": "cross-platform",
    }


def test_challenges_are_fresh() -> None:
    verifier = make_verifier()
    first = verifier.generate_registration_options([])[1]
    second = verifier.generate_registration_options([])[1]
    assert first != second


def test_registration_options_without_attachment_preference() -> None:
    options, _ = make_verifier(authenticator_attachment=None).generate_registration_options([])
    assert "authenticatorAttachment" not in options["authenticatorSelection"]


def test_existing_credentials_are_excluded(authenticator: VirtualAuthenticator) -> None:
    verifier = make_verifier()
    stored = register(verifier, authenticator)
    options, _ = verifier.generate_registration_options([stored])
    assert options["excludeCredentials"] == [
        {"id": authenticator.credential_id_b64, "type": "public-key", "transports": ["usb"]}
    ]


def test_authentication_options(authenticator: VirtualAuthenticator) -> None:
    verifier = make_verifier()
    stored = register(verifier, authenticator)
    options, challenge = verifier.generate_authentication_options([stored])
    assert options == {
        "challenge": challenge,
        "rpId": RP_ID,
        "allowCredentials": [{"id": stored.id, "type": "public-key", "transports": ["usb"]}],
        "timeout": 60000,
        "userVerification": "preferred",
    }


def test_authentication_options_require_credentials() -> None:
    with pytest.raises(NoCredentialsError):
        make_verifier().generate_authentication_options([])


def test_registration_produces_credential(authenticator: VirtualAuthenticator) -> None:
    stored = register(make_verifier(), authenticator, transports=["usb", "nfc"])
    assert stored.id == authenticator.credential_id_b64
    assert stored.counter == 0
    assert stored.transports == ["usb", "nfc"]
    assert stored.device_type is DeviceType.CROSS_PLATFORM
    assert stored.backed_up is False
    assert stored.friendly_name == "Key"
    assert stored.created_at.tzinfo is not None
    assert stored.public_key


def test_registration_records_backup_and_platform() -> None:
    authenticator = VirtualAuthenticator(rp_id=RP_ID, origin=ORIGIN, backed_up=True, attachment="platform")
    stored = register(make_verifier(), authenticator)
    assert stored.backed_up is True
    assert stored.device_type is DeviceType.PLATFORM


def test_registration_requires_live_challenge(authenticator: VirtualAuthenticator) -> None:
    verifier = make_verifier()
    response = authenticator.register(websafe_encode(b"c" * 32))

    with pytest.raises(NoChallengeError) as missing:
        asyncio.run(verifier.verify_registration(response, None, "Key"))
    assert missing.value.code == "NO_CHALLENGE"

    expired = StoredChallenge(value=websafe_encode(b"c" * 32), expires_at=now_epoch_ms() - 1)
    with pytest.raises(ChallengeExpiredError):
        asyncio.run(verifier.verify_registration(response, expired, "Key"))


@pytest.mark.parametrize(
    "tamper",
    [
        {"origin": "https://evil.example"},
        {"rp_id": "evil.example"},
    ],
)
def test_registration_rejects_foreign_context(authenticator: VirtualAuthenticator, tamper: dict) -> None:
    verifier = make_verifier()
    _, challenge = verifier.generate_registration_options([])
    response = authenticator.register(challenge, **tamper)
    with pytest.raises(AttestationInvalidError):
        asyncio.run(verifier.verify_registration(response, build_challenge(challenge, 60), "Key"))


def test_registration_rejects_other_challenge(authenticator: VirtualAuthenticator) -> None:
    verifier = make_verifier()
    _, issued = verifier.generate_registration_options([])
    _, other = verifier.generate_registration_options([])
    response = authenticator.register(other)
    with pytest.raises(AttestationInvalidError):
        asyncio.run(verifier.verify_registration(response, build_challenge(issued, 60), "Key"))


def test_registration_rejects_garbage() -> None:
    verifier = make_verifier()
    _, challenge = verifier.generate_registration_options([])
    garbage = {"id": "abc", "rawId": "abc", "type": "public-key", "response": {"clientDataJSON": "!!"}}
    with pytest.raises(AttestationInvalidError):
        asyncio.run(verifier.verify_registration(garbage, build_challenge(challenge, 60), "Key"))


def test_authentication_returns_new_counter(authenticator: VirtualAuthenticator) -> None:
    verifier = make_verifier()
    stored = register(verifier, authenticator)
    _, challenge = verifier.generate_authentication_options([stored])
    assertion = authenticator.authenticate(challenge)
    counter = asyncio.run(verifier.verify_authentication(assertion, build_challenge(challenge, 60), stored))
    assert counter == 1


def test_authentication_rejects_bad_signature(authenticator: VirtualAuthenticator) -> None:
    verifier = make_verifier()
    stored = register(verifier, authenticator)
    _, challenge = verifier.generate_authentication_options([stored])
    assertion = authenticator.authenticate(challenge)
    assertion["response"]["signature"] = websafe_encode(b"\x30\x06\x02\x01\x01\x02\x01\x01")
    with pytest.raises(AssertionInvalidError):
        asyncio.run(verifier.verify_authentication(assertion, build_challenge(challenge, 60), stored))


def test_authentication_rejects_key_from_other_authenticator(authenticator: VirtualAuthenticator) -> None:
    verifier = make_verifier()
    stored = register(verifier, authenticator)
    impostor = VirtualAuthenticator(rp_id=RP_ID, origin=ORIGIN)
    impostor.credential_id = authenticator.credential_id
    _, challenge = verifier.generate_authentication_options([stored])
    with pytest.raises(AssertionInvalidError):
        asyncio.run(
            verifier.verify_authentication(impostor.authenticate(challenge), build_challenge(challenge, 60), stored)
        )


def test_authentication_rejects_replayed_counter(authenticator: VirtualAuthenticator) -> None:
    verifier = make_verifier()
    stored = register(verifier, authenticator).model_copy(update={"counter": 10})
    _, challenge = verifier.generate_authentication_options([stored])
    assertion = authenticator.authenticate(challenge, counter=10)
    with pytest.raises(CounterRegressionError) as excinfo:
        asyncio.run(verifier.verify_authentication(assertion, build_challenge(challenge, 60), stored))
    assert excinfo.value.code == "COUNTER_INVALID"


def test_credential_id_from_response() -> None:
    assert credential_id_from_response({"id": "abc="}) == "abc"
    assert credential_id_from_response({"rawId": " abc "}) == "abc"
    assert credential_id_from_response({"id": ""}) is None
    assert credential_id_from_response({"id": 42}) is None
    assert credential_id_from_response({}) is None
