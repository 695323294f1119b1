"""Passkey ceremonies through a stand-in verifier and through fido2 itself."""
from __future__ import annotations

import hashlib
import json
import os
import time

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from fido2.cose import ES256
from fido2.webauthn import AttestationObject, AttestedCredentialData, AuthenticatorData

from app.api import dependencies
from app.core.errors import CeremonyError
from app.core.security import get_security_manager
from app.services import webauthn
from app.services.auth import ACCOUNT_DISABLED
from app.services.ceremony import Fido2CeremonyVerifier, VerifiedAssertion, VerifiedRegistration
from app.utils.encoding import b64url_decode, b64url_encode

from conftest import PASSWORD

CREDENTIAL_ID = b64url_encode(b"credential-one")


class StubVerifier:
    """Accepts any response that echoes the issued challenge."""

    def __init__(self) -> None:
        self.excluded: list[bytes] = []
        self.allowed: list[bytes] = []

    def registration_options(self, *, user_id, username, exclude_credentials, challenge):
        self.excluded = list(exclude_credentials)
        return {"challenge": b64url_encode(challenge), "user": {"name": username}}

    def verify_registration(self, response, *, challenge):
        if response.get("challenge") != b64url_encode(challenge):
            raise ValueError("challenge mismatch")
        return VerifiedRegistration(
            credential_id=b64url_decode(response["id"]),
            credential_data=b"attested:" + b64url_decode(response["id"]),
            sign_count=response.get("signCount", 0),
            backup_eligible=response.get("backupEligible", False),
            transports=response.get("transports", []),
        )

    def authentication_options(self, *, allow_credentials, challenge):
        self.allowed = list(allow_credentials)
        return {"challenge": b64url_encode(challenge)}

    def verify_authentication(self, response, *, challenge, credential_data):
        if response.get("challenge") != b64url_encode(challenge):
            raise ValueError("challenge mismatch")
        return VerifiedAssertion(credential_id=b64url_decode(response["rawId"]), new_sign_count=response["signCount"])


@pytest.fixture
def verifier() -> StubVerifier:
    return StubVerifier()


@pytest.fixture
def user(with_store):
    async def scenario(store):
        return await store.create_user("pat", get_security_manager().hash_password(PASSWORD))

    return with_store(scenario)


def register_passkey(with_store, verifier, user, credential_id=CREDENTIAL_ID, sign_count=0):
    async def scenario(store):
        options = await webauthn.begin_registration(store, user.id, verifier)
        response = {"id": credential_id, "challenge": options["challenge"], "signCount": sign_count}
        return await webauthn.finish_registration(store, user.id, response, verifier)

    return with_store(scenario)


def sign_in(with_store, verifier, username, sign_count, credential_id=CREDENTIAL_ID, echo_challenge=True):
    async def scenario(store):
        options = await webauthn.begin_authentication(store, username, verifier)
        response = {
            "rawId": credential_id,
            "challenge": options["challenge"] if echo_challenge else "stale",
            "signCount": sign_count,
        }
        return await webauthn.finish_authentication(store, username, response, verifier)

    return with_store(scenario)


def stored_state(with_store, user):
    async def scenario(store):
        refreshed = await store.get_user_by_id(user.id)
        authenticators = await store.get_authenticators_for_user(user.id)
        return refreshed.current_challenge, [item.counter for item in authenticators]

    return with_store(scenario)


def test_finish_without_begin_is_rejected(app_env, with_store, verifier, user) -> None:
    async def scenario(store):
        await webauthn.finish_registration(store, user.id, {"id": CREDENTIAL_ID}, verifier)

    with pytest.raises(CeremonyError):
        with_store(scenario)


def test_registration_stores_passkey_and_clears_challenge(app_env, with_store, verifier, user) -> None:
    outcome = register_passkey(with_store, verifier, user, sign_count=3)
    assert outcome.verified
    assert outcome.authenticator.credential_id == CREDENTIAL_ID
    assert outcome.authenticator.device_type == "singleDevice"

    challenge, counters = stored_state(with_store, user)
    assert challenge is None
    assert counters == [3]


def test_registration_excludes_existing_and_rejects_duplicates(app_env, with_store, verifier, user) -> None:
    assert register_passkey(with_store, verifier, user).verified

    duplicate = register_passkey(with_store, verifier, user)
    assert verifier.excluded == [b"credential-one"]
    assert duplicate.verified is False
    assert duplicate.error == "Passkey already registered"
    assert stored_state(with_store, user) == (None, [0])


def test_failed_registration_clears_challenge(app_env, with_store, verifier, user) -> None:
    async def scenario(store):
        await webauthn.begin_registration(store, user.id, verifier)
        return await webauthn.finish_registration(
            store, user.id, {"id": CREDENTIAL_ID, "challenge": "wrong"}, verifier
        )

    outcome = with_store(scenario)
    assert outcome.verified is False
    assert outcome.error == webauthn.PASSKEY_FAILED
    assert stored_state(with_store, user) == (None, [])


def test_expired_challenge_is_rejected(app_env, with_store, verifier, user) -> None:
    async def scenario(store):
        await webauthn.begin_registration(store, user.id, verifier)
        stale = f"{b64url_encode(b'old')}.{int(time.time()) - webauthn.CHALLENGE_TTL_SECONDS - 5}"
        await store.update_user_challenge(user.id, stale)
        await webauthn.finish_registration(store, user.id, {"id": CREDENTIAL_ID}, verifier)

    with pytest.raises(CeremonyError):
        with_store(scenario)


def test_authentication_enforces_counter(app_env, with_store, verifier, user) -> None:
    register_passkey(with_store, verifier, user, sign_count=5)

    regressed = sign_in(with_store, verifier, "pat", sign_count=4)
    assert regressed.success is False
    assert stored_state(with_store, user) == (None, [5])

    replayed = sign_in(with_store, verifier, "pat", sign_count=5)
    assert replayed.success is False

    advanced = sign_in(with_store, verifier, "pat", sign_count=6)
    assert advanced.success is True
    assert advanced.session_token
    assert verifier.allowed == [b"credential-one"]
    assert stored_state(with_store, user) == (None, [6])


def test_counterless_authenticator_is_accepted(app_env, with_store, verifier, user) -> None:
    register_passkey(with_store, verifier, user, sign_count=0)
    assert sign_in(with_store, verifier, "pat", sign_count=0).success is True
    assert sign_in(with_store, verifier, "pat", sign_count=0).success is True


def test_failed_assertion_clears_challenge(app_env, with_store, verifier, user) -> None:
    register_passkey(with_store, verifier, user)
    result = sign_in(with_store, verifier, "pat", sign_count=1, echo_challenge=False)
    assert result.success is False
    assert result.error == webauthn.PASSKEY_FAILED
    assert stored_state(with_store, user) == (None, [0])


def test_unknown_credential_is_rejected(app_env, with_store, verifier, user) -> None:
    register_passkey(with_store, verifier, user)
    result = sign_in(with_store, verifier, "pat", sign_count=1, credential_id=b64url_encode(b"someone-else"))
    assert result.success is False


def test_disabled_user_cannot_use_passkey(app_env, with_store, verifier, user) -> None:
    register_passkey(with_store, verifier, user)

    async def disable(store):
        await store.update_user_status(user.id, True)

    with_store(disable)
    result = sign_in(with_store, verifier, "pat", sign_count=1)
    assert result.success is False
    assert result.error == ACCOUNT_DISABLED
    assert stored_state(with_store, user)[0] is None


def test_begin_authentication_requires_passkeys(app_env, with_store, verifier, user) -> None:
    async def no_passkeys(store):
        await webauthn.begin_authentication(store, "pat", verifier)

    async def no_user(store):
        await webauthn.begin_authentication(store, "nobody", verifier)

    with pytest.raises(CeremonyError):
        with_store(no_passkeys)
    with pytest.raises(CeremonyError):
        with_store(no_user)


def test_passkey_routes(client, verifier) -> None:
    client.app.dependency_overrides[dependencies.get_verifier] = lambda: verifier
    client.post(
        "/auth/register",
        json={"username": "quinn", "password": PASSWORD, "confirm_password": PASSWORD},
    )

    options = client.post("/auth/webauthn/register/start").json()["publicKey"]
    finish = client.post(
        "/auth/webauthn/register/finish",
        json={"credential": {"id": CREDENTIAL_ID, "challenge": options["challenge"], "transports": ["internal"]}},
    )
    assert finish.status_code == 200
    assert finish.json()["transports"] == ["internal"]

    listed = client.get("/auth/webauthn/credentials").json()
    assert [item["credential_id"] for item in listed] == [CREDENTIAL_ID]

    client.post("/auth/logout")
    login_options = client.post("/auth/webauthn/login/start", json={"username": "quinn"}).json()["publicKey"]
    login = client.post(
        "/auth/webauthn/login/finish",
        json={
            "username": "quinn",
            "credential": {"rawId": CREDENTIAL_ID, "challenge": login_options["challenge"], "signCount": 1},
        },
    )
    assert login.status_code == 200
    assert client.get("/auth/me").json()["username"] == "quinn"

    assert client.delete(f"/auth/webauthn/credentials/{listed[0]['id']}").status_code == 200
    assert client.get("/auth/webauthn/credentials").json() == []
    assert client.delete(f"/auth/webauthn/credentials/{listed[0]['id']}").status_code == 404


def test_finish_route_without_begin_returns_400(client, verifier) -> None:
    client.app.dependency_overrides[dependencies.get_verifier] = lambda: verifier
    client.post(
        "/auth/register",
        json={"username": "rita", "password": PASSWORD, "confirm_password": PASSWORD},
    )
    response = client.post("/auth/webauthn/register/finish", json={"credential": {"id": CREDENTIAL_ID}})
    assert response.status_code == 400


def test_fido2_registration_options(app_env) -> None:
    fido = Fido2CeremonyVerifier("localhost", "OAuth Simulator Test", "http://localhost")
    challenge = b"c" * 32
    options = fido.registration_options(
        user_id=b"user-1", username="pat", exclude_credentials=[b"credential-one"], challenge=challenge
    )
    assert options["challenge"] == b64url_encode(challenge)
    assert options["rp"]["id"] == "localhost"


class SoftwareAuthenticator:
    """Produces browser-shaped credentials with "none" attestation from an in-memory P-256 key."""

    def __init__(self, rp_id: str, origin: str) -> None:
        self.rp_id_hash = hashlib.sha256(rp_id.encode("utf-8")).digest()
        self.origin = origin
        self.key = ec.generate_private_key(ec.SECP256R1())
        self.credential_id = os.urandom(16)

    def _client_data(self, kind: str, challenge: str) -> bytes:
        return json.dumps(
            {"type": kind, "challenge": challenge, "origin": self.origin, "crossOrigin": False}
        ).encode("utf-8")

    def attest(self, options: dict) -> dict:
        public_key = ES256.from_cryptography_key(self.key.public_key())
        credential = AttestedCredentialData.create(bytes(16), self.credential_id, public_key)
        auth_data = AuthenticatorData.create(self.rp_id_hash, 0x41, 0, credential)
        attestation = AttestationObject.create("none", auth_data, {})
        client_data = self._client_data("webauthn.create", options["challenge"])
        encoded_id = b64url_encode(self.credential_id)
        return {
            "id": encoded_id,
            "rawId": encoded_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": b64url_encode(client_data),
                "attestationObject": b64url_encode(bytes(attestation)),
                "transports": ["internal"],
            },
        }

    def assertion(self, options: dict, counter: int) -> dict:
        auth_data = AuthenticatorData.create(self.rp_id_hash, 0x01, counter)
        client_data = self._client_data("webauthn.get", options["challenge"])
        signature = self.key.sign(
            bytes(auth_data) + hashlib.sha256(client_data).digest(), ec.ECDSA(hashes.SHA256())
        )
        encoded_id = b64url_encode(self.credential_id)
        return {
            "id": encoded_id,
            "rawId": encoded_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": b64url_encode(client_data),
                "authenticatorData": b64url_encode(bytes(auth_data)),
                "signature": b64url_encode(signature),
            },
        }


ORIGIN = "http://localhost"


@pytest.fixture
def fido() -> Fido2CeremonyVerifier:
    return Fido2CeremonyVerifier("localhost", "OAuth Simulator Test", ORIGIN)


def test_fido2_ceremonies_with_browser_json(app_env, with_store, fido, user) -> None:
    device = SoftwareAuthenticator("localhost", ORIGIN)

    async def register(store):
        options = await webauthn.begin_registration(store, user.id, fido)
        return await webauthn.finish_registration(store, user.id, device.attest(options), fido)

    outcome = with_store(register)
    assert outcome.verified, outcome.error
    assert outcome.authenticator.credential_id == b64url_encode(device.credential_id)
    assert outcome.authenticator.transports == "internal"

    def sign_in_with(counter, tamper=False):
        async def scenario(store):
            options = await webauthn.begin_authentication(store, "pat", fido)
            response = device.assertion(options, counter)
            if tamper:
                response["response"]["signature"] = b64url_encode(b"\x30\x06\x02\x01\x01\x02\x01\x01")
            return await webauthn.finish_authentication(store, "pat", response, fido)

        return with_store(scenario)

    assert sign_in_with(1).success is True
    assert sign_in_with(1).success is False
    forged = sign_in_with(2, tamper=True)
    assert forged.success is False
    assert forged.error == webauthn.PASSKEY_FAILED
    assert stored_state(with_store, user) == (None, [1])


def test_fido2_rejects_foreign_origin(app_env, with_store, fido, user) -> None:
    device = SoftwareAuthenticator("localhost", "https://phish.example.com")

    async def register(store):
        options = await webauthn.begin_registration(store, user.id, fido)
        return await webauthn.finish_registration(store, user.id, device.attest(options), fido)

    outcome = with_store(register)
    assert outcome.verified is False
    assert stored_state(with_store, user) == (None, [])


@pytest.mark.parametrize(
    "credential",
    [
        {"id": "abc"},
        {"id": "abc", "response": {"clientDataJSON": 42, "attestationObject": "AAAA"}},
        {"id": "abc", "response": {"clientDataJSON": "not json!", "attestationObject": "AAAA"}},
    ],
)
def test_malformed_registration_clears_challenge(client, with_store, fido, credential) -> None:
    client.app.dependency_overrides[dependencies.get_verifier] = lambda: fido
    client.post(
        "/auth/register",
        json={"username": "sam", "password": PASSWORD, "confirm_password": PASSWORD},
    )
    assert client.post("/auth/webauthn/register/start").status_code == 200

    response = client.post("/auth/webauthn/register/finish", json={"credential": credential})
    assert response.status_code == 400
    assert response.json()["message"] == webauthn.PASSKEY_FAILED

    async def challenge(store):
        return (await store.get_user_by_username("sam")).current_challenge

    assert with_store(challenge) is None
