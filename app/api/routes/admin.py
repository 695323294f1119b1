"""Account administration and process-wide login settings (admin role only)."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies import get_discovery_cache, get_store, require_admin
from app.models import User
from app.schemas import (
    AdminPasswordRequest,
    GenericResponse,
    MergeUsersRequest,
    SettingsRead,
    SettingsUpdate,
    UserRead,
    UserStatusRequest,
)
from app.services import auth as auth_service
from app.services.discovery import DiscoveryCache
from app.services.settings import get_auth_settings, update_auth_settings
from app.services.store import CredentialStore

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger("oauth_sim.auth")


async def _existing_user(store: CredentialStore, user_id: str) -> User:
    user = await store.get_user_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user_not_found")
    return user


def _not_self(admin: User, user_id: str) -> None:
    if admin.id == user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="cannot_modify_self")


@router.get("/users", response_model=list[UserRead])
async def list_users(
    admin: User = Depends(require_admin),
    store: CredentialStore = Depends(get_store),
) -> list[UserRead]:
    return [UserRead.from_user(user) for user in await store.list_users()]


@router.post("/users/merge", response_model=UserRead)
async def merge_users(
    payload: MergeUsersRequest,
    admin: User = Depends(require_admin),
    store: CredentialStore = Depends(get_store),
) -> UserRead:
    if payload.source_user_id == payload.target_user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="cannot_merge_into_self")
    _not_self(admin, payload.source_user_id)
    await _existing_user(store, payload.source_user_id)
    target = await _existing_user(store, payload.target_user_id)
    await store.merge_users(payload.source_user_id, payload.target_user_id)
    await store.commit()
    logger.info("Admin %s merged user %s into %s", admin.id, payload.source_user_id, target.id)
    return UserRead.from_user(target)


@router.post("/users/{user_id}/status", response_model=UserRead)
async def set_user_status(
    user_id: str,
    payload: UserStatusRequest,
    admin: User = Depends(require_admin),
    store: CredentialStore = Depends(get_store),
) -> UserRead:
    _not_self(admin, user_id)
    user = await _existing_user(store, user_id)
    await store.update_user_status(user.id, payload.disabled)
    await store.commit()
    logger.info("Admin %s set disabled=%s for user %s", admin.id, payload.disabled, user.id)
    return UserRead.from_user(user)


@router.post("/users/{user_id}/password", response_model=GenericResponse)
async def reset_user_password(
    user_id: str,
    payload: AdminPasswordRequest,
    admin: User = Depends(require_admin),
    store: CredentialStore = Depends(get_store),
) -> GenericResponse:
    user = await _existing_user(store, user_id)
    error = await auth_service.reset_password(store, user.id, payload.new_password)
    if error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error)
    await store.commit()
    return GenericResponse()


@router.delete("/users/{user_id}", response_model=GenericResponse)
async def delete_user(
    user_id: str,
    admin: User = Depends(require_admin),
    store: CredentialStore = Depends(get_store),
) -> GenericResponse:
    _not_self(admin, user_id)
    if not await store.delete_user(user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user_not_found")
    await store.commit()
    logger.info("Admin %s deleted user %s", admin.id, user_id)
    return GenericResponse()


@router.get("/settings", response_model=SettingsRead)
async def read_settings(
    admin: User = Depends(require_admin),
    store: CredentialStore = Depends(get_store),
) -> SettingsRead:
    return SettingsRead.from_settings(await get_auth_settings(store))


@router.put("/settings", response_model=SettingsRead)
async def write_settings(
    payload: SettingsUpdate,
    admin: User = Depends(require_admin),
    store: CredentialStore = Depends(get_store),
    discovery_cache: DiscoveryCache = Depends(get_discovery_cache),
) -> SettingsRead:
    changes = payload.model_dump(exclude_unset=True)
    updated = await update_auth_settings(store, changes)
    await store.commit()
    if "oidc_issuer" in changes:
        discovery_cache.invalidate()
    logger.info("Admin %s updated settings: %s", admin.id, ", ".join(sorted(changes)))
    return SettingsRead.from_settings(updated)
