"""Record access for users, passkeys, relying-party clients and settings.

Every engine talks to persistence through ``CredentialStore`` only. Each
write is flushed as a single record update; committing is left to the
request that owns the session.
"""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Authenticator, OAuthClient, SystemSetting, User, UserRole


class CredentialStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def commit(self) -> None:
        await self.db.commit()

    # Users

    async def get_user_by_id(self, user_id: str) -> User | None:
        return await self.db.get(User, user_id)

    async def get_user_by_username(self, username: str) -> User | None:
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def list_users(self) -> Sequence[User]:
        result = await self.db.execute(select(User).order_by(User.created_at))
        return result.scalars().all()

    async def create_user(
        self,
        username: str,
        password_hash: str,
        email: str | None = None,
        role: UserRole = UserRole.USER,
    ) -> User:
        user = User(username=username, password_hash=password_hash, email=email, role=role.value)
        self.db.add(user)
        await self.db.flush()
        return user

    async def update_user_password(self, user_id: str, password_hash: str) -> None:
        await self._update_user(user_id, password_hash=password_hash)

    async def update_user_status(self, user_id: str, disabled: bool) -> None:
        await self._update_user(user_id, disabled=disabled)

    async def update_user_totp_secret(self, user_id: str, secret: str | None) -> None:
        await self._update_user(user_id, totp_secret=secret)

    async def update_user_challenge(self, user_id: str, challenge: str | None) -> None:
        await self._update_user(user_id, current_challenge=challenge)

    async def update_user_email(self, user_id: str, email: str | None) -> None:
        await self._update_user(user_id, email=email)

    async def delete_user(self, user_id: str) -> bool:
        user = await self.get_user_by_id(user_id)
        if user is None:
            return False
        await self.db.delete(user)
        await self.db.flush()
        return True

    async def merge_users(self, source_id: str, target_id: str) -> None:
        """Move clients and passkeys from ``source_id`` to ``target_id`` and drop the source."""
        await self.db.execute(update(OAuthClient).where(OAuthClient.user_id == source_id).values(user_id=target_id))
        await self.db.execute(update(Authenticator).where(Authenticator.user_id == source_id).values(user_id=target_id))
        await self.db.execute(delete(User).where(User.id == source_id))
        await self.db.flush()

    async def _update_user(self, user_id: str, **values: object) -> None:
        user = await self.get_user_by_id(user_id)
        if user is None:
            raise LookupError(f"user {user_id} not found")
        for key, value in values.items():
            setattr(user, key, value)
        await self.db.flush()

    # Authenticators

    async def get_authenticators_for_user(self, user_id: str) -> Sequence[Authenticator]:
        result = await self.db.execute(
            select(Authenticator).where(Authenticator.user_id == user_id).order_by(Authenticator.created_at)
        )
        return result.scalars().all()

    async def get_authenticator_by_credential_id(self, credential_id: str) -> Authenticator | None:
        result = await self.db.execute(select(Authenticator).where(Authenticator.credential_id == credential_id))
        return result.scalar_one_or_none()

    async def save_authenticator(self, authenticator: Authenticator) -> Authenticator:
        self.db.add(authenticator)
        await self.db.flush()
        return authenticator

    async def update_authenticator_counter(self, credential_id: str, counter: int) -> None:
        authenticator = await self.get_authenticator_by_credential_id(credential_id)
        if authenticator is None:
            raise LookupError("authenticator not found")
        authenticator.counter = counter
        authenticator.last_used_at = datetime.now(timezone.utc)
        await self.db.flush()

    async def delete_authenticator(self, user_id: str, authenticator_id: str) -> bool:
        result = await self.db.execute(
            delete(Authenticator).where(Authenticator.id == authenticator_id, Authenticator.user_id == user_id)
        )
        await self.db.flush()
        return bool(result.rowcount)

    # Settings

    async def get_setting(self, key: str) -> str | None:
        setting = await self.db.get(SystemSetting, key)
        return setting.value if setting is not None else None

    async def get_settings_map(self) -> dict[str, str]:
        result = await self.db.execute(select(SystemSetting))
        return {row.key: row.value for row in result.scalars()}

    async def set_setting(self, key: str, value: str) -> None:
        setting = await self.db.get(SystemSetting, key)
        if setting is None:
            self.db.add(SystemSetting(key=key, value=value))
        else:
            setting.value = value
        await self.db.flush()

    # Relying-party clients

    async def list_clients_for_user(self, user_id: str) -> Sequence[OAuthClient]:
        result = await self.db.execute(
            select(OAuthClient).where(OAuthClient.user_id == user_id).order_by(OAuthClient.created_at)
        )
        return result.scalars().all()

    async def get_client(self, client_id: str, user_id: str | None = None) -> OAuthClient | None:
        stmt = select(OAuthClient).where(OAuthClient.id == client_id)
        if user_id is not None:
            stmt = stmt.where(OAuthClient.user_id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def save_client(self, client: OAuthClient) -> OAuthClient:
        self.db.add(client)
        await self.db.flush()
        return client

    async def delete_client(self, client_id: str, user_id: str) -> bool:
        result = await self.db.execute(
            delete(OAuthClient).where(OAuthClient.id == client_id, OAuthClient.user_id == user_id)
        )
        await self.db.flush()
        return bool(result.rowcount)
