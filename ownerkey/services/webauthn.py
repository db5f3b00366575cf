"""WebAuthn ceremony options and verification backed by python-fido2."""
from __future__ import annotations

import asyncio
import binascii
import hmac
import secrets
import struct
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

import structlog
from cryptography.exceptions import InvalidSignature
from fastapi.concurrency import run_in_threadpool
from fido2 import cbor
from fido2.attestation import Attestation
from fido2.attestation.base import InvalidAttestation
from fido2.cose import CoseKey
from fido2.server import Fido2Server
from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    Aaguid,
    AttestedCredentialData,
    AuthenticationResponse,
    PublicKeyCredentialParameters,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    RegistrationResponse,
)

from ownerkey.core.config import WebAuthnConfig
from ownerkey.core.errors import (
    AssertionInvalidError,
    AttestationInvalidError,
    ChallengeExpiredError,
    CounterRegressionError,
    NoChallengeError,
    NoCredentialsError,
    VerificationTimeoutError,
)
from ownerkey.core.security import normalize_credential_id
from ownerkey.schemas.credential import Credential, DeviceType, StoredChallenge, utcnow

logger = structlog.get_logger(__name__)

T = TypeVar("T")

CHALLENGE_BYTES = 32
SUPPORTED_ALGORITHMS = (-7, -257)  # ES256, RS256
OWNER_USER_ID = b"ownerkey-owner"
OWNER_USER_NAME = "owner"
OWNER_DISPLAY_NAME = "Owner"

# Everything python-fido2 and its parsers raise for a malformed or forged payload.
_VERIFICATION_ERRORS = (
    ValueError,
    KeyError,
    TypeError,
    AttributeError,
    IndexError,
    struct.error,
    binascii.Error,
    InvalidAttestation,
    InvalidSignature,
)


def credential_id_from_response(credential: dict[str, Any]) -> str | None:
    """Return the normalized credential ID a client response claims, if any."""

    raw = credential.get("id") or credential.get("rawId")
    if not isinstance(raw, str) or not raw.strip():
        return None
    return normalize_credential_id(raw)


def encode_public_key(public_key: CoseKey) -> str:
    return websafe_encode(cbor.encode(dict(public_key)))


def decode_public_key(value: str) -> CoseKey:
    return CoseKey.parse(cbor.decode(websafe_decode(value)))


def check_counter(stored: int, reported: int, *, require_counter: bool = False) -> int:
    """Apply the signature counter policy and return the value to persist.

    A credential that has only ever reported 0 is treated as counter-less and
    accepted unless ``require_counter`` is set. Any other report must be
    strictly greater than the stored value.
    """

    if stored == 0 and reported == 0:
        if require_counter:
            raise CounterRegressionError("Authenticator does not report a signature counter")
        return 0
    if reported <= stored:
        raise CounterRegressionError()
    return reported


class WebAuthnVerifier:
    def __init__(self, config: WebAuthnConfig) -> None:
        self.config = config
        self._server = Fido2Server(
            PublicKeyCredentialRpEntity(id=config.rp_id, name=config.rp_name),
            verify_origin=self._verify_origin,
        )
        self._server.allowed_algorithms = [
            PublicKeyCredentialParameters(type=PublicKeyCredentialType.PUBLIC_KEY, alg=alg)
            for alg in SUPPORTED_ALGORITHMS
        ]

    def _verify_origin(self, origin: str) -> bool:
        return hmac.compare_digest(origin.encode("utf-8"), self.config.origin.encode("utf-8"))

    def _state(self, challenge: StoredChallenge) -> dict[str, Any]:
        return {"challenge": challenge.value, "user_verification": self.config.user_verification}

    @staticmethod
    def _new_challenge() -> str:
        return websafe_encode(secrets.token_bytes(CHALLENGE_BYTES))

    @staticmethod
    def _descriptor(credential: Credential) -> dict[str, Any]:
        descriptor: dict[str, Any] = {"id": credential.id, "type": "public-key"}
        if credential.transports:
            descriptor["transports"] = list(credential.transports)
        return descriptor

    def _check_challenge(self, challenge: StoredChallenge | None) -> StoredChallenge:
        if challenge is None:
            raise NoChallengeError()
        if challenge.is_expired():
            raise ChallengeExpiredError()
        return challenge

    async def _run(self, fn: Callable[[], T]) -> T:
        try:
            return await asyncio.wait_for(run_in_threadpool(fn), timeout=self.config.verification_timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.error("webauthn_verification_timeout", timeout=self.config.verification_timeout_seconds)
            raise VerificationTimeoutError() from exc

    def generate_registration_options(self, existing_credentials: Sequence[Credential]) -> tuple[dict[str, Any], str]:
        challenge = self._new_challenge()
        selection: dict[str, Any] = {
            "residentKey": "preferred",
            "requireResidentKey": False,
            "userVerification": self.config.user_verification,
        }
        if self.config.authenticator_attachment:
            selection["authenticatorAttachment"] = self.config.authenticator_attachment
        options = {
            "challenge": challenge,
            "rp": {"id": self.config.rp_id, "name": self.config.rp_name},
            "user": {
                "id": websafe_encode(OWNER_USER_ID),
                "name": OWNER_USER_NAME,
                "displayName": OWNER_DISPLAY_NAME,
            },
            "pubKeyCredParams": [{"type": "public-key", "alg": alg} for alg in SUPPORTED_ALGORITHMS],
            "timeout": self.config.ceremony_timeout_ms,
            "attestation": "none",
            "authenticatorSelection": selection,
            "excludeCredentials": [self._descriptor(c) for c in existing_credentials],
        }
        return options, challenge

    def generate_authentication_options(self, allowed_credentials: Sequence[Credential]) -> tuple[dict[str, Any], str]:
        if not allowed_credentials:
            raise NoCredentialsError()
        challenge = self._new_challenge()
        options = {
            "challenge": challenge,
            "rpId": self.config.rp_id,
            "allowCredentials": [self._descriptor(c) for c in allowed_credentials],
            "timeout": self.config.ceremony_timeout_ms,
            "userVerification": self.config.user_verification,
        }
        return options, challenge

    def _device_type(self, credential: dict[str, Any]) -> DeviceType:
        reported = credential.get("authenticatorAttachment") or self.config.authenticator_attachment
        try:
            return DeviceType(reported)
        except ValueError:
            return DeviceType.CROSS_PLATFORM

    @staticmethod
    def _transports(credential: dict[str, Any]) -> list[str] | None:
        response = credential.get("response")
        transports = response.get("transports") if isinstance(response, dict) else None
        if isinstance(transports, list) and all(isinstance(t, str) for t in transports):
            return transports
        return None

    def _complete_registration(self, state: dict[str, Any], credential: dict[str, Any]):
        registration = RegistrationResponse.from_dict(credential)
        auth_data = self._server.register_complete(state, credential)
        attestation = registration.response.attestation_object
        Attestation.for_type(attestation.fmt)().verify(
            attestation.att_stmt,
            attestation.auth_data,
            registration.response.client_data.hash,
        )
        return auth_data

    async def verify_registration(
        self,
        credential: dict[str, Any],
        expected_challenge: StoredChallenge | None,
        friendly_name: str,
    ) -> Credential:
        challenge = self._check_challenge(expected_challenge)
        state = self._state(challenge)
        try:
            auth_data = await self._run(lambda: self._complete_registration(state, credential))
        except _VERIFICATION_ERRORS as exc:
            logger.info("webauthn_registration_rejected", error=type(exc).__name__)
            raise AttestationInvalidError() from exc

        credential_data = auth_data.credential_data
        if credential_data is None:
            logger.info("webauthn_registration_rejected", error="MissingCredentialData")
            raise AttestationInvalidError()
        return Credential(
            id=websafe_encode(credential_data.credential_id),
            public_key=encode_public_key(credential_data.public_key),
            counter=auth_data.counter,
            device_type=self._device_type(credential),
            backed_up=auth_data.is_backed_up(),
            transports=self._transports(credential),
            friendly_name=friendly_name,
            created_at=utcnow(),
        )

    def _complete_authentication(
        self, state: dict[str, Any], credential: dict[str, Any], stored: Credential
    ) -> int:
        assertion = AuthenticationResponse.from_dict(credential)
        attested = AttestedCredentialData.create(
            Aaguid.NONE,
            websafe_decode(stored.id),
            decode_public_key(stored.public_key),
        )
        self._server.authenticate_complete(state, [attested], credential)
        return assertion.response.authenticator_data.counter

    async def verify_authentication(
        self,
        credential: dict[str, Any],
        expected_challenge: StoredChallenge | None,
        stored_credential: Credential,
    ) -> int:
        """Verify an assertion for ``stored_credential`` and return the counter to persist."""

        challenge = self._check_challenge(expected_challenge)
        state = self._state(challenge)
        try:
            reported = await self._run(lambda: self._complete_authentication(state, credential, stored_credential))
        except _VERIFICATION_ERRORS as exc:
            logger.info(
                "webauthn_assertion_rejected",
                credential_id=stored_credential.id,
                error=type(exc).__name__,
            )
            raise AssertionInvalidError() from exc
        return check_counter(
            stored_credential.counter,
            reported,
            require_counter=self.config.require_signature_counter,
        )
