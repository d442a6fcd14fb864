"""
Estrategias de segundo factor.

Dos mecanismos intercambiables detrás de ``MfaStrategy``:

* ``EmailOtpStrategy`` genera un código de 6 dígitos, lo guarda en
  ``mfa_codes`` y lo envía por correo. Vale ``MFA_CODE_TTL_MINUTES`` y se
  consume una sola vez (UPDATE condicional: dos verificaciones concurrentes
  del mismo código no pueden ganar ambas). Emitir un código nuevo anula los
  anteriores sin usar, así solo hay un código vivo por usuario.
* ``TotpStrategy`` genera un secreto RFC 6238 y verifica códigos contra él
  con una tolerancia de ``TOTP_VALID_WINDOW`` pasos.

Cuál aplica lo decide el ``mfa_method`` guardado del usuario
(``resolve_strategy``), nunca el token.
"""
import abc
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.db import db_now
from app.core.errors import StorageError, ValidationError
from app.core.security import (
    generate_2fa_secret, totp_uri_from_secret, verify_totp, qr_png_base64_from_text
)
from app.models.mfa_code import MfaCode
from app.models.user import MfaMethod, User
from app.services.credential_store import CredentialStore
from app.services.mailer import SmtpMailer

logger = logging.getLogger(__name__)

CODE_MIN = 100000
CODE_MAX = 999999


def generate_numeric_code() -> str:
    # uniforme en [100000, 999999]: siempre 6 dígitos
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


class MfaStrategy(abc.ABC):
    method: MfaMethod

    @abc.abstractmethod
    async def start(self, user: User) -> None:
        """Inicia el desafío después del paso de contraseña (puede no hacer nada)."""

    @abc.abstractmethod
    async def confirm(self, user: User, code: str) -> bool:
        """True si ``code`` prueba la posesión del segundo factor."""


class EmailOtpStrategy(MfaStrategy):
    method = MfaMethod.email

    def __init__(self, db: AsyncSession, mailer: SmtpMailer, store: CredentialStore,
                 ttl_minutes: int | None = None):
        self.db = db
        self.mailer = mailer
        self.store = store
        self.ttl = timedelta(minutes=ttl_minutes or settings.MFA_CODE_TTL_MINUTES)

    async def issue(self, user_id: str, email_address: str) -> None:
        code = generate_numeric_code()
        row = MfaCode(user_id=user_id, code=code, expires_at=db_now() + self.ttl)
        try:
            # anula los códigos previos sin usar en la misma transacción
            await self.db.execute(
                update(MfaCode)
                .where(MfaCode.user_id == user_id, MfaCode.used.is_(False))
                .values(used=True)
            )
            self.db.add(row)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StorageError(f"persist mfa code failed: {exc}") from exc
        logger.info("MFA code %s issued for user %s", row.id, user_id)
        # si el envío falla el código sigue siendo válido (se puede reenviar)
        await self.mailer.send_code(email_address, code)

    async def verify(self, user_id: str, code: str, now: datetime | None = None) -> bool:
        now = now or db_now()
        try:
            res = await self.db.execute(
                select(MfaCode.id)
                .where(
                    MfaCode.user_id == user_id,
                    MfaCode.code == code,
                    MfaCode.used.is_(False),
                    MfaCode.expires_at > now,
                )
                .order_by(MfaCode.created_at.desc(), MfaCode.id.desc())
                .limit(1)
            )
            code_id = res.scalar_one_or_none()
            if code_id is None:
                return False
            return await self.mark_used(code_id)
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StorageError(f"verify mfa code failed: {exc}") from exc

    async def mark_used(self, code_id: int) -> bool:
        # compare-and-set: solo una verificación concurrente gana
        res = await self.db.execute(
            update(MfaCode)
            .where(MfaCode.id == code_id, MfaCode.used.is_(False))
            .values(used=True)
        )
        await self.db.commit()
        consumed = res.rowcount == 1
        if not consumed:
            logger.warning("MFA code %s was consumed concurrently", code_id)
        return consumed

    async def start(self, user: User) -> None:
        await self.issue(user.id, self.store.plain_email(user))

    async def confirm(self, user: User, code: str) -> bool:
        return await self.verify(user.id, code)


@dataclass(frozen=True)
class TotpEnrollment:
    secret: str
    otpauth_url: str
    qr_base64_png: str

    @property
    def qr_data_url(self) -> str:
        return f"data:image/png;base64,{self.qr_base64_png}"


class TotpStrategy(MfaStrategy):
    method = MfaMethod.totp

    def __init__(self, store: CredentialStore, valid_window: int | None = None):
        self.store = store
        self.valid_window = settings.TOTP_VALID_WINDOW if valid_window is None else valid_window

    async def setup(self, user_id: str, account_label: str) -> TotpEnrollment:
        secret = generate_2fa_secret()
        await self.store.save_mfa_secret(user_id, secret)
        otpauth = totp_uri_from_secret(secret, email=account_label)
        return TotpEnrollment(
            secret=secret,
            otpauth_url=otpauth,
            qr_base64_png=qr_png_base64_from_text(otpauth),
        )

    def verify(self, secret: str, supplied_code: str, now: datetime | int | None = None) -> bool:
        return verify_totp(supplied_code, secret, for_time=now, valid_window=self.valid_window)

    async def start(self, user: User) -> None:
        # el código lo genera la app autenticadora
        return None

    async def confirm(self, user: User, code: str) -> bool:
        secret = await self.store.get_mfa_secret(user.id)
        if not secret:
            return False
        return self.verify(secret, code)


def resolve_strategy(user: User, db: AsyncSession, mailer: SmtpMailer,
                     store: CredentialStore) -> MfaStrategy:
    if not user.mfa_enabled or user.mfa_method is None:
        raise ValidationError("MFA no está habilitado para este usuario")
    if user.mfa_method is MfaMethod.totp:
        return TotpStrategy(store)
    return EmailOtpStrategy(db, mailer, store)
