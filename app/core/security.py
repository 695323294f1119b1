"""Security helpers for the simulator's own authentication."""
from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Iterable

import pyotp
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from cryptography.fernet import Fernet, InvalidToken

from .config import Settings, get_settings


BANNED_PASSWORDS_PATH = Path("data/banned-passwords.txt")


class PasswordValidationError(ValueError):
    """Raised when a password does not comply with policy."""


class PasswordPolicy:
    """Minimal password policy enforcement."""

    def __init__(self, banned_passwords: Iterable[str], min_length: int = 8):
        self.min_length = min_length
        self._banned = {password.strip().lower() for password in banned_passwords if password.strip()}

    def validate(self, password: str) -> None:
        if len(password) < self.min_length:
            raise PasswordValidationError(f"Password must be at least {self.min_length} characters long.")
        if password.lower() in self._banned:
            raise PasswordValidationError("Password is present in the banned password list.")


def load_banned_passwords(path: Path = BANNED_PASSWORDS_PATH) -> set[str]:
    if not path.exists():
        return set()
    with path.open("r", encoding="utf-8") as file:
        return {line.strip().lower() for line in file if line.strip()}


def _fernet_from_secret(settings: Settings) -> Fernet:
    digest = hashlib.sha256(settings.totp_encryption_key.encode("utf-8")).digest()
    key = base64.urlsafe_b64encode(digest)
    return Fernet(key)


class SecurityManager:
    """Centralized security helper operations."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.hasher = PasswordHasher(
            time_cost=self.settings.argon2_time_cost,
            memory_cost=self.settings.argon2_memory_cost,
            parallelism=self.settings.argon2_parallelism,
        )
        self.password_policy = PasswordPolicy(load_banned_passwords(), self.settings.password_min_length)
        self._fernet = _fernet_from_secret(self.settings)
        # Verified against when a username is unknown so both paths cost one hash.
        self._dummy_hash = self.hasher.hash(secrets.token_urlsafe(16))

    def hash_password(self, password: str) -> str:
        self.password_policy.validate(password)
        return self.hasher.hash(password)

    def hash_unusable_password(self) -> str:
        return self.hasher.hash(secrets.token_urlsafe(48))

    def verify_password(self, password: str, hashed: str | None) -> bool:
        if not hashed:
            return False
        try:
            return self.hasher.verify(hashed, password)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    def burn_password_check(self, password: str) -> None:
        self.verify_password(password, self._dummy_hash)

    def encrypt_secret(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt_secret(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid encrypted payload") from exc

    @staticmethod
    def constant_time_compare(val1: str, val2: str) -> bool:
        return hmac.compare_digest(val1.encode("utf-8"), val2.encode("utf-8"))

    @staticmethod
    def generate_state() -> str:
        return secrets.token_urlsafe(32)

    @staticmethod
    def generate_nonce() -> str:
        return secrets.token_urlsafe(32)

    @staticmethod
    def generate_challenge() -> bytes:
        return secrets.token_bytes(32)

    @staticmethod
    def generate_ticket() -> str:
        return secrets.token_urlsafe(32)

    @staticmethod
    def generate_totp_secret() -> str:
        return pyotp.random_base32()

    @staticmethod
    def verify_totp_code(secret: str, code: str) -> bool:
        if not code or not code.strip().isdigit():
            return False
        totp = pyotp.TOTP(secret)
        return totp.verify(code.strip(), valid_window=1)

    def totp_provisioning_uri(self, secret: str, account_name: str) -> str:
        return pyotp.TOTP(secret).provisioning_uri(name=account_name, issuer_name=self.settings.app_name)


@lru_cache(maxsize=1)
def get_security_manager() -> SecurityManager:
    return SecurityManager()
