"""Passkey registration and authentication ceremonies.

Each ceremony is two calls: ``begin_*`` stores a fresh challenge on the user
record and returns public-key options; ``finish_*`` verifies the browser's
response against that challenge and clears it, whatever the outcome.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from app.core.errors import CeremonyError
from app.core.security import SecurityManager
from app.models import Authenticator, User
from app.services.auth import ACCOUNT_DISABLED, AuthResult
from app.services.ceremony import CeremonyVerifier, get_ceremony_verifier
from app.services.store import CredentialStore
from app.utils.encoding import b64url_decode, b64url_encode

logger = logging.getLogger("oauth_sim.webauthn")

CHALLENGE_TTL_SECONDS = 300
PASSKEY_FAILED = "Passkey verification failed"
# Raised by verifiers on a response that does not verify or does not parse.
VERIFICATION_ERRORS = (ValueError, TypeError, KeyError)


@dataclass
class RegistrationOutcome:
    verified: bool
    error: str | None = None
    authenticator: Authenticator | None = None


def _pack_challenge(challenge: bytes) -> str:
    return f"{b64url_encode(challenge)}.{int(time.time())}"


def _unpack_challenge(stored: str | None) -> bytes:
    """Return the pending challenge or raise when none was issued or it has lapsed."""
    if not stored:
        raise CeremonyError("No pending challenge; begin the ceremony first")
    encoded, _, issued_at = stored.partition(".")
    if not issued_at.isdigit() or time.time() - int(issued_at) > CHALLENGE_TTL_SECONDS:
        raise CeremonyError("Challenge expired; begin the ceremony again")
    return b64url_decode(encoded)


def _response_credential_id(response: Mapping[str, Any]) -> str | None:
    raw = response.get("rawId") or response.get("id")
    return raw if isinstance(raw, str) and raw else None


async def begin_registration(
    store: CredentialStore,
    user_id: str,
    verifier: CeremonyVerifier | None = None,
) -> dict[str, Any]:
    verifier = verifier or get_ceremony_verifier()
    user = await store.get_user_by_id(user_id)
    if user is None:
        raise CeremonyError("Unknown user")
    existing = await store.get_authenticators_for_user(user.id)
    challenge = SecurityManager.generate_challenge()
    options = verifier.registration_options(
        user_id=user.id.encode("utf-8"),
        username=user.username,
        exclude_credentials=[b64url_decode(item.credential_id) for item in existing],
        challenge=challenge,
    )
    await store.update_user_challenge(user.id, _pack_challenge(challenge))
    return options


async def finish_registration(
    store: CredentialStore,
    user_id: str,
    response: Mapping[str, Any],
    verifier: CeremonyVerifier | None = None,
) -> RegistrationOutcome:
    verifier = verifier or get_ceremony_verifier()
    user = await store.get_user_by_id(user_id)
    if user is None:
        raise CeremonyError("Unknown user")
    try:
        challenge = _unpack_challenge(user.current_challenge)
        try:
            verified = verifier.verify_registration(response, challenge=challenge)
        except VERIFICATION_ERRORS as exc:
            logger.info("Passkey registration rejected for user %s: %s", user.id, exc)
            return RegistrationOutcome(verified=False, error=PASSKEY_FAILED)

        credential_id = b64url_encode(verified.credential_id)
        if await store.get_authenticator_by_credential_id(credential_id) is not None:
            return RegistrationOutcome(verified=False, error="Passkey already registered")

        authenticator = await store.save_authenticator(
            Authenticator(
                credential_id=credential_id,
                user_id=user.id,
                credential_data=verified.credential_data,
                counter=verified.sign_count,
                device_type="multiDevice" if verified.backup_eligible else "singleDevice",
                backed_up=verified.backed_up,
                transports=",".join(verified.transports) or None,
            )
        )
        logger.info("Passkey registered for user %s", user.id)
        return RegistrationOutcome(verified=True, authenticator=authenticator)
    finally:
        await store.update_user_challenge(user.id, None)


async def begin_authentication(
    store: CredentialStore,
    username: str,
    verifier: CeremonyVerifier | None = None,
) -> dict[str, Any]:
    verifier = verifier or get_ceremony_verifier()
    user = await store.get_user_by_username(username)
    if user is None:
        raise CeremonyError("No passkeys registered for this account")
    authenticators = await store.get_authenticators_for_user(user.id)
    if not authenticators:
        raise CeremonyError("No passkeys registered for this account")
    challenge = SecurityManager.generate_challenge()
    options = verifier.authentication_options(
        allow_credentials=[b64url_decode(item.credential_id) for item in authenticators],
        challenge=challenge,
    )
    await store.update_user_challenge(user.id, _pack_challenge(challenge))
    return options


def _counter_accepted(stored: int, presented: int) -> bool:
    # Authenticators without a counter report zero forever.
    if stored == 0 and presented == 0:
        return True
    return presented > stored


async def finish_authentication(
    store: CredentialStore,
    username: str,
    response: Mapping[str, Any],
    verifier: CeremonyVerifier | None = None,
) -> AuthResult:
    verifier = verifier or get_ceremony_verifier()
    user = await store.get_user_by_username(username)
    if user is None:
        return AuthResult.rejected(PASSKEY_FAILED)
    try:
        challenge = _unpack_challenge(user.current_challenge)
        if user.disabled:
            return AuthResult.rejected(ACCOUNT_DISABLED)
        return await _verify_assertion(store, user, response, challenge, verifier)
    finally:
        await store.update_user_challenge(user.id, None)


async def _verify_assertion(
    store: CredentialStore,
    user: User,
    response: Mapping[str, Any],
    challenge: bytes,
    verifier: CeremonyVerifier,
) -> AuthResult:
    credential_id = _response_credential_id(response)
    authenticator = await store.get_authenticator_by_credential_id(credential_id) if credential_id else None
    if authenticator is None or authenticator.user_id != user.id:
        logger.info("Passkey login for user %s used an unknown credential", user.id)
        return AuthResult.rejected(PASSKEY_FAILED)

    try:
        assertion = verifier.verify_authentication(
            response, challenge=challenge, credential_data=authenticator.credential_data
        )
    except VERIFICATION_ERRORS as exc:
        logger.info("Passkey assertion rejected for user %s: %s", user.id, exc)
        return AuthResult.rejected(PASSKEY_FAILED)

    if not _counter_accepted(authenticator.counter, assertion.new_sign_count):
        logger.warning(
            "Signature counter regression for user %s (stored %d, presented %d)",
            user.id,
            authenticator.counter,
            assertion.new_sign_count,
        )
        return AuthResult.rejected(PASSKEY_FAILED)

    await store.update_authenticator_counter(authenticator.credential_id, assertion.new_sign_count)
    logger.info("Passkey login succeeded for user %s", user.id)
    return AuthResult.authenticated(user)
