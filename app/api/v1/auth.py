import logging

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.errors import AuthenticationError, ValidationError
from app.core.security import issue_full_token, issue_pending_token
from app.models.user import MfaMethod, User
from app.schemas.auth import (
    RegisterIn, RegisterOut, LoginIn, LoginOut, LoginMfaOut, UserOut,
    MfaCodeIn, TokenOut, MessageOut, MfaSetupOut
)
from app.api.deps import get_current_user, get_mfa_subject, get_pending_user, get_store
from app.services.credential_store import CredentialStore
from app.services.mailer import SmtpMailer, get_mailer
from app.services.mfa import TotpStrategy, resolve_strategy
from app.services.password_policy import validate_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _user_out(user: User, store: CredentialStore) -> UserOut:
    return UserOut(
        id=user.id,
        username=user.username,
        email=store.plain_email(user),
        mfa_enabled=user.mfa_enabled,
        mfa_method=user.mfa_method,
    )

async def _confirm_active_factor(
    user: User,
    body: MfaCodeIn | None,
    store: CredentialStore,
    db: AsyncSession,
    mailer: SmtpMailer,
) -> None:
    # cambiar un MFA activo exige el factor actual, no solo el token completo
    if not await store.has_mfa_enabled(user.id):
        return
    if body is None:
        raise ValidationError("MFA ya habilitado: se requiere el código actual")
    strategy = resolve_strategy(user, db, mailer, store)
    if not await strategy.confirm(user, body.code.strip()):
        raise AuthenticationError("Código MFA inválido o expirado")

@router.post("/register", response_model=RegisterOut, status_code=201)
async def register(payload: RegisterIn, store: CredentialStore = Depends(get_store)):
    if payload.password != payload.confirm_password:
        raise ValidationError("Las contraseñas no coinciden")

    check = validate_password(payload.password)
    if not check.valid:
        raise ValidationError(check.message)

    user_id = await store.create(payload.username, payload.email, payload.password)
    return RegisterOut(message="Usuario registrado exitosamente", user_id=user_id)

@router.post("/login", response_model=LoginOut | LoginMfaOut)
async def login(
    payload: LoginIn,
    store: CredentialStore = Depends(get_store),
    db: AsyncSession = Depends(get_db),
    mailer: SmtpMailer = Depends(get_mailer),
):
    user = await store.verify_password(payload.email, payload.password)
    if not user:
        # mismo mensaje para email desconocido y contraseña incorrecta
        raise AuthenticationError("Credenciales inválidas. Verifica tu correo y contraseña.")

    if await store.has_mfa_enabled(user.id):
        strategy = resolve_strategy(user, db, mailer, store)
        await strategy.start(user)
        logger.info("User %s passed password step, %s MFA pending", user.id, strategy.method.value)
        return LoginMfaOut(
            message="MFA requerido",
            temp_token=issue_pending_token(user.id),
            mfa_method=strategy.method,
        )

    logger.info("User %s logged in without MFA", user.id)
    return LoginOut(
        message="Inicio de sesión exitoso",
        token=issue_full_token(user.id),
        user=_user_out(user, store),
    )

# ---------- MFA FLOW ----------
@router.post("/verify-mfa", response_model=TokenOut)
async def verify_mfa(
    body: MfaCodeIn,
    user: User = Depends(get_mfa_subject),
    store: CredentialStore = Depends(get_store),
    db: AsyncSession = Depends(get_db),
    mailer: SmtpMailer = Depends(get_mailer),
):
    # el mecanismo sale del estado del usuario, no del token
    strategy = resolve_strategy(user, db, mailer, store)
    if not await strategy.confirm(user, body.code.strip()):
        raise AuthenticationError("Código MFA inválido o expirado")

    logger.info("User %s completed %s MFA", user.id, strategy.method.value)
    return TokenOut(message="Verificación MFA exitosa", token=issue_full_token(user.id))

@router.post("/resend-mfa", response_model=MessageOut)
async def resend_mfa(
    user: User = Depends(get_pending_user),
    store: CredentialStore = Depends(get_store),
    db: AsyncSession = Depends(get_db),
    mailer: SmtpMailer = Depends(get_mailer),
):
    strategy = resolve_strategy(user, db, mailer, store)
    if strategy.method is not MfaMethod.email:
        raise ValidationError("El método MFA activo no usa códigos por correo")
    await strategy.start(user)
    return MessageOut(message="Código reenviado")

@router.post("/setup-mfa", response_model=MfaSetupOut)
async def setup_mfa(
    body: MfaCodeIn | None = Body(None),
    current_user: User = Depends(get_current_user),
    store: CredentialStore = Depends(get_store),
    db: AsyncSession = Depends(get_db),
    mailer: SmtpMailer = Depends(get_mailer),
):
    await _confirm_active_factor(current_user, body, store, db, mailer)
    # reemplaza el secreto previo (si lo había) y habilita MFA (TOTP)
    enrollment = await TotpStrategy(store).setup(current_user.id, store.plain_email(current_user))
    return MfaSetupOut(
        message="MFA configurado exitosamente",
        secret=enrollment.secret,
        qr_code=enrollment.qr_data_url,
        otpauth_url=enrollment.otpauth_url,
    )

@router.post("/mfa/email/enable", response_model=MessageOut)
async def enable_email_mfa(
    body: MfaCodeIn | None = Body(None),
    current_user: User = Depends(get_current_user),
    store: CredentialStore = Depends(get_store),
    db: AsyncSession = Depends(get_db),
    mailer: SmtpMailer = Depends(get_mailer),
):
    await _confirm_active_factor(current_user, body, store, db, mailer)
    await store.enable_email_mfa(current_user.id)
    return MessageOut(message="MFA por correo habilitado")

@router.post("/mfa/email/code", response_model=MessageOut)
async def send_email_code(
    current_user: User = Depends(get_current_user),
    store: CredentialStore = Depends(get_store),
    db: AsyncSession = Depends(get_db),
    mailer: SmtpMailer = Depends(get_mailer),
):
    strategy = resolve_strategy(current_user, db, mailer, store)
    if strategy.method is not MfaMethod.email:
        raise ValidationError("El método MFA activo no usa códigos por correo")
    await strategy.start(current_user)
    return MessageOut(message="Código enviado")

@router.post("/mfa/disable", response_model=MessageOut)
async def disable_mfa(
    body: MfaCodeIn,
    current_user: User = Depends(get_current_user),
    store: CredentialStore = Depends(get_store),
    db: AsyncSession = Depends(get_db),
    mailer: SmtpMailer = Depends(get_mailer),
):
    strategy = resolve_strategy(current_user, db, mailer, store)
    if not await strategy.confirm(current_user, body.code.strip()):
        raise AuthenticationError("Código MFA inválido o expirado")
    await store.disable_mfa(current_user.id)
    return MessageOut(message="MFA deshabilitado")


@router.get("/me", response_model=UserOut)
async def me(
    current_user: User = Depends(get_current_user),
    store: CredentialStore = Depends(get_store),
):
    return _user_out(current_user, store)
