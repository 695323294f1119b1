"""Narrow verifier interface over the WebAuthn library.

The ceremony engine in :mod:`app.services.webauthn` deals only in plain
bytes and JSON-ready dicts; everything fido2-specific lives here.
"""
from __future__ import annotations

import enum
import struct
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Protocol

from fido2.server import Fido2Server
from fido2.webauthn import (
    AttestationConveyancePreference,
    AttestationObject,
    AttestedCredentialData,
    AuthenticatorAttachment,
    AuthenticatorData,
    CollectedClientData,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from app.core.config import get_settings
from app.utils.encoding import b64url_decode, b64url_encode

FLAG_BACKUP_ELIGIBLE = 0x08
FLAG_BACKED_UP = 0x10


@dataclass
class VerifiedRegistration:
    credential_id: bytes
    credential_data: bytes
    sign_count: int
    backup_eligible: bool = False
    backed_up: bool = False
    transports: list[str] = field(default_factory=list)


@dataclass
class VerifiedAssertion:
    credential_id: bytes
    new_sign_count: int


class CeremonyVerifier(Protocol):
    """Raises ``ValueError`` whenever a response does not verify."""

    def registration_options(
        self, *, user_id: bytes, username: str, exclude_credentials: Sequence[bytes], challenge: bytes
    ) -> dict[str, Any]: ...

    def verify_registration(self, response: Mapping[str, Any], *, challenge: bytes) -> VerifiedRegistration: ...

    def authentication_options(self, *, allow_credentials: Sequence[bytes], challenge: bytes) -> dict[str, Any]: ...

    def verify_authentication(
        self, response: Mapping[str, Any], *, challenge: bytes, credential_data: bytes
    ) -> VerifiedAssertion: ...


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return b64url_encode(bytes(value))
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Mapping):
        return {key: _jsonable(item) for key, item in value.items() if item is not None}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _descriptors(credential_ids: Sequence[bytes]) -> list[PublicKeyCredentialDescriptor]:
    return [
        PublicKeyCredentialDescriptor(type=PublicKeyCredentialType.PUBLIC_KEY, id=credential_id)
        for credential_id in credential_ids
    ]


# Browser payloads are untrusted JSON; any of these means the shape is wrong.
_MALFORMED = (KeyError, TypeError, ValueError, IndexError, struct.error)


def _response_body(response: Mapping[str, Any]) -> Mapping[str, Any]:
    body = response.get("response") if isinstance(response, Mapping) else None
    if not isinstance(body, Mapping):
        raise ValueError("Credential carries no authenticator response")
    return body


def _decode_field(payload: Mapping[str, Any], name: str) -> bytes:
    value = payload.get(name)
    if not isinstance(value, str) or not value:
        raise ValueError(f"Missing {name}")
    return b64url_decode(value)


class Fido2CeremonyVerifier:
    """WebAuthn verification over fido2, reading the browser's base64url JSON credential."""

    def __init__(self, rp_id: str, rp_name: str, origin: str) -> None:
        self.origin = origin
        self.server = Fido2Server(
            PublicKeyCredentialRpEntity(name=rp_name, id=rp_id),
            attestation=AttestationConveyancePreference.NONE,
            verify_origin=self._verify_origin,
        )

    def _verify_origin(self, origin: str) -> bool:
        return origin == self.origin

    @staticmethod
    def _state(challenge: bytes) -> dict[str, Any]:
        return {"challenge": b64url_encode(challenge), "user_verification": UserVerificationRequirement.PREFERRED}

    def registration_options(
        self, *, user_id: bytes, username: str, exclude_credentials: Sequence[bytes], challenge: bytes
    ) -> dict[str, Any]:
        options, _ = self.server.register_begin(
            PublicKeyCredentialUserEntity(name=username, id=user_id, display_name=username),
            credentials=_descriptors(exclude_credentials),
            resident_key_requirement=ResidentKeyRequirement.PREFERRED,
            user_verification=UserVerificationRequirement.PREFERRED,
            authenticator_attachment=AuthenticatorAttachment.PLATFORM,
            challenge=challenge,
        )
        return _jsonable(options)["publicKey"]

    def verify_registration(self, response: Mapping[str, Any], *, challenge: bytes) -> VerifiedRegistration:
        body = _response_body(response)
        try:
            client_data = CollectedClientData(_decode_field(body, "clientDataJSON"))
            attestation = AttestationObject(_decode_field(body, "attestationObject"))
            auth_data = self.server.register_complete(self._state(challenge), client_data, attestation)
        except _MALFORMED as exc:
            raise ValueError(f"Attestation rejected: {exc}") from exc
        credential = auth_data.credential_data
        if credential is None:
            raise ValueError("Attestation carried no credential data")
        transports = body.get("transports") or []
        return VerifiedRegistration(
            credential_id=credential.credential_id,
            credential_data=bytes(credential),
            sign_count=auth_data.counter,
            backup_eligible=bool(auth_data.flags & FLAG_BACKUP_ELIGIBLE),
            backed_up=bool(auth_data.flags & FLAG_BACKED_UP),
            transports=[str(item) for item in transports],
        )

    def authentication_options(self, *, allow_credentials: Sequence[bytes], challenge: bytes) -> dict[str, Any]:
        options, _ = self.server.authenticate_begin(
            _descriptors(allow_credentials),
            user_verification=UserVerificationRequirement.PREFERRED,
            challenge=challenge,
        )
        return _jsonable(options)["publicKey"]

    def verify_authentication(
        self, response: Mapping[str, Any], *, challenge: bytes, credential_data: bytes
    ) -> VerifiedAssertion:
        body = _response_body(response)
        try:
            credential_id = _decode_field(response, "rawId")
            client_data = CollectedClientData(_decode_field(body, "clientDataJSON"))
            auth_data = AuthenticatorData(_decode_field(body, "authenticatorData"))
            signature = _decode_field(body, "signature")
            credential = AttestedCredentialData(credential_data)
            self.server.authenticate_complete(
                self._state(challenge), [credential], credential_id, client_data, auth_data, signature
            )
        except _MALFORMED as exc:
            raise ValueError(f"Assertion rejected: {exc}") from exc
        return VerifiedAssertion(credential_id=credential_id, new_sign_count=auth_data.counter)


@lru_cache(maxsize=1)
def get_ceremony_verifier() -> CeremonyVerifier:
    settings = get_settings()
    return Fido2CeremonyVerifier(settings.fido_rp_id, settings.fido_rp_name, settings.expected_origin)
