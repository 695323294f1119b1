"""Signed-in user's own profile."""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.api.dependencies import get_store, require_session
from app.core.config import get_settings
from app.core.rate_limit import limiter
from app.models import User
from app.schemas import EmailUpdateRequest, GenericResponse, PasswordChangeRequest, UserRead
from app.services import auth as auth_service
from app.services.store import CredentialStore

router = APIRouter(prefix="/profile", tags=["profile"])
settings = get_settings()


@router.get("", response_model=UserRead)
async def read_profile(user: User = Depends(require_session)) -> UserRead:
    return UserRead.from_user(user)


@router.post("/email", response_model=UserRead)
async def update_email(
    payload: EmailUpdateRequest,
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
) -> UserRead:
    await store.update_user_email(user.id, str(payload.email) if payload.email else None)
    await store.commit()
    return UserRead.from_user(user)


@router.post("/password", response_model=GenericResponse)
@limiter.limit(settings.rate_limit_per_ip)
async def change_password(
    request: Request,
    payload: PasswordChangeRequest,
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
) -> GenericResponse:
    if payload.new_password != payload.confirm_password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Passwords do not match")
    error = await auth_service.change_password(store, user, payload.current_password, payload.new_password)
    if error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error)
    await store.commit()
    return GenericResponse()
