"""Authentication API routes: password, TOTP and passkeys."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from app.api.dependencies import get_store, get_verifier, require_session
from app.core.config import get_settings
from app.core.errors import CeremonyError
from app.core.rate_limit import limiter
from app.models import Authenticator, User
from app.schemas import (
    GenericResponse,
    LoginRequest,
    LoginSuccessResponse,
    MFALoginRequest,
    MFARequiredResponse,
    PasskeyRead,
    RegisterRequest,
    TOTPConfirmRequest,
    TOTPDisableRequest,
    TOTPSetupResponse,
    UserRead,
    WebAuthnFinishRequest,
    WebAuthnLoginFinishRequest,
    WebAuthnLoginStartRequest,
    WebAuthnStartResponse,
)
from app.services import auth as auth_service
from app.services import session as session_service
from app.services import totp, webauthn
from app.services.auth import AuthResult
from app.services.ceremony import CeremonyVerifier
from app.services.store import CredentialStore

router = APIRouter(prefix="/auth", tags=["auth"])
settings = get_settings()
logger = logging.getLogger("oauth_sim.auth")


def _signed_in(response: Response, result: AuthResult) -> LoginSuccessResponse:
    session_service.attach_session_to_response(response, result.session_token)
    return LoginSuccessResponse(user=UserRead.from_user(result.user))


@router.post("/register", response_model=LoginSuccessResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_per_ip)
async def register(
    request: Request,
    response: Response,
    payload: RegisterRequest,
    store: CredentialStore = Depends(get_store),
) -> LoginSuccessResponse:
    result = await auth_service.register(store, payload.username, payload.password, payload.confirm_password)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    await store.commit()
    return _signed_in(response, result)


@router.post("/login", response_model=LoginSuccessResponse | MFARequiredResponse)
@limiter.limit(settings.rate_limit_per_ip)
async def login(
    request: Request,
    response: Response,
    payload: LoginRequest,
    store: CredentialStore = Depends(get_store),
) -> LoginSuccessResponse | MFARequiredResponse:
    result = await auth_service.login(store, payload.username, payload.password)
    if result.mfa_required:
        return MFARequiredResponse(mfa_ticket=result.mfa_ticket)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=result.error)
    return _signed_in(response, result)


@router.post("/login/mfa", response_model=LoginSuccessResponse)
@limiter.limit(settings.rate_limit_per_ip)
async def login_mfa(
    request: Request,
    response: Response,
    payload: MFALoginRequest,
    store: CredentialStore = Depends(get_store),
) -> LoginSuccessResponse:
    result = await auth_service.login_with_mfa(store, payload.username, payload.code, payload.mfa_ticket)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=result.error)
    return _signed_in(response, result)


@router.post("/logout", response_model=GenericResponse)
async def logout(response: Response) -> GenericResponse:
    session_service.clear_session_cookie(response)
    return GenericResponse()


@router.get("/me", response_model=UserRead)
async def me(user: User = Depends(require_session)) -> UserRead:
    return UserRead.from_user(user)


@router.post("/mfa/totp/setup", response_model=TOTPSetupResponse)
async def totp_setup(user: User = Depends(require_session)) -> TOTPSetupResponse:
    if user.mfa_enabled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="mfa_already_enabled")
    secret, provisioning_uri = totp.generate_totp_secret_for(user)
    return TOTPSetupResponse(secret=secret, provisioning_uri=provisioning_uri)


@router.post("/mfa/totp/confirm", response_model=GenericResponse)
@limiter.limit(settings.rate_limit_per_ip)
async def totp_confirm(
    request: Request,
    payload: TOTPConfirmRequest,
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
) -> GenericResponse:
    if not await totp.confirm_totp_enrollment(store, user.id, payload.secret, payload.code):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=auth_service.INVALID_MFA_CODE)
    await store.commit()
    logger.info("TOTP enabled for user %s", user.id)
    return GenericResponse()


@router.post("/mfa/totp/disable", response_model=GenericResponse)
@limiter.limit(settings.rate_limit_per_ip)
async def totp_disable(
    request: Request,
    payload: TOTPDisableRequest,
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
) -> GenericResponse:
    if not totp.verify_user_totp(user, payload.code):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=auth_service.INVALID_MFA_CODE)
    await totp.disable_totp(store, user.id)
    await store.commit()
    logger.info("TOTP disabled for user %s", user.id)
    return GenericResponse()


@router.post("/webauthn/register/start", response_model=WebAuthnStartResponse)
async def webauthn_register_start(
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
    verifier: CeremonyVerifier = Depends(get_verifier),
) -> WebAuthnStartResponse:
    options = await webauthn.begin_registration(store, user.id, verifier)
    await store.commit()
    return WebAuthnStartResponse(publicKey=options)


@router.post("/webauthn/register/finish", response_model=PasskeyRead)
async def webauthn_register_finish(
    payload: WebAuthnFinishRequest,
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
    verifier: CeremonyVerifier = Depends(get_verifier),
) -> PasskeyRead:
    try:
        outcome = await webauthn.finish_registration(store, user.id, payload.credential, verifier)
    except CeremonyError as exc:
        await store.commit()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    await store.commit()
    if not outcome.verified:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=outcome.error)
    return _passkey_read(outcome.authenticator)


@router.post("/webauthn/login/start", response_model=WebAuthnStartResponse)
@limiter.limit(settings.rate_limit_per_ip)
async def webauthn_login_start(
    request: Request,
    payload: WebAuthnLoginStartRequest,
    store: CredentialStore = Depends(get_store),
    verifier: CeremonyVerifier = Depends(get_verifier),
) -> WebAuthnStartResponse:
    try:
        options = await webauthn.begin_authentication(store, payload.username, verifier)
    except CeremonyError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    await store.commit()
    return WebAuthnStartResponse(publicKey=options)


@router.post("/webauthn/login/finish", response_model=LoginSuccessResponse)
@limiter.limit(settings.rate_limit_per_ip)
async def webauthn_login_finish(
    request: Request,
    response: Response,
    payload: WebAuthnLoginFinishRequest,
    store: CredentialStore = Depends(get_store),
    verifier: CeremonyVerifier = Depends(get_verifier),
) -> LoginSuccessResponse:
    try:
        result = await webauthn.finish_authentication(store, payload.username, payload.credential, verifier)
    except CeremonyError as exc:
        await store.commit()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    await store.commit()
    if not result.success:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=result.error)
    return _signed_in(response, result)


def _passkey_read(authenticator: Authenticator) -> PasskeyRead:
    return PasskeyRead(
        id=authenticator.id,
        credential_id=authenticator.credential_id,
        device_type=authenticator.device_type,
        backed_up=authenticator.backed_up,
        transports=authenticator.transport_list,
        created_at=authenticator.created_at,
        last_used_at=authenticator.last_used_at,
    )


@router.get("/webauthn/credentials", response_model=list[PasskeyRead])
async def list_passkeys(
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
) -> list[PasskeyRead]:
    return [_passkey_read(item) for item in await store.get_authenticators_for_user(user.id)]


@router.delete("/webauthn/credentials/{authenticator_id}", response_model=GenericResponse)
async def delete_passkey(
    authenticator_id: str,
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
) -> GenericResponse:
    if not await store.delete_authenticator(user.id, authenticator_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="passkey_not_found")
    await store.commit()
    return GenericResponse()
