"""
Persistencia de credenciales de usuario.

Las contraseñas se guardan como hash bcrypt y los emails como texto cifrado
Fernet más un hash de búsqueda con clave (ver ``EmailCipher``). Todo fallo de
la base sale como ``StorageError``; aquí no se reintenta nada.
"""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import StorageError, ValidationError
from app.core.security import EmailCipher, hash_password_async, verify_password_async
from app.models.user import MfaMethod, User
from app.services.password_policy import validate_password

logger = logging.getLogger(__name__)


class CredentialStore:
    def __init__(self, db: AsyncSession, cipher: EmailCipher):
        self.db = db
        self.cipher = cipher

    @asynccontextmanager
    async def _storage(self, action: str) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StorageError(f"{action} failed: {exc}") from exc

    async def create(self, username: str, email: str, password: str) -> str:
        # la política ya la valida el endpoint; se repite aquí
        check = validate_password(password)
        if not check.valid:
            raise ValidationError(check.message)

        email_hash = self.cipher.lookup_hash(email)
        async with self._storage("create user"):
            exists = await self.db.execute(select(User.id).where(User.email_hash == email_hash))
            if exists.scalar_one_or_none():
                raise ValidationError("El email ya está registrado")

            user = User(
                username=username,
                email=self.cipher.encrypt(email),
                email_hash=email_hash,
                hashed_password=await hash_password_async(password),
            )
            self.db.add(user)
            try:
                await self.db.commit()
            except IntegrityError as exc:
                # registro concurrente con el mismo email
                await self.db.rollback()
                raise ValidationError("El email ya está registrado") from exc
        logger.info("User %s registered", user.id)
        return user.id

    async def get_by_id(self, user_id: str) -> User | None:
        async with self._storage("load user"):
            res = await self.db.execute(select(User).where(User.id == user_id))
            return res.scalar_one_or_none()

    async def get_by_email(self, email: str) -> User | None:
        async with self._storage("load user by email"):
            res = await self.db.execute(
                select(User).where(User.email_hash == self.cipher.lookup_hash(email))
            )
            return res.scalar_one_or_none()

    async def verify_password(self, email: str, password: str) -> User | None:
        """
        Devuelve el usuario si la contraseña coincide, None si no. Email
        desconocido y contraseña incorrecta son indistinguibles para quien
        llama y cuestan el mismo trabajo de bcrypt.
        """
        user = await self.get_by_email(email)
        if user is None:
            await verify_password_async(password, None)
            logger.info("Login attempt for unknown email")
            return None
        if not await verify_password_async(password, user.hashed_password):
            logger.info("Wrong password for user %s", user.id)
            return None
        return user

    def plain_email(self, user: User) -> str:
        return self.cipher.decrypt(user.email)

    async def has_mfa_enabled(self, user_id: str) -> bool:
        async with self._storage("read mfa flag"):
            res = await self.db.execute(select(User.mfa_enabled).where(User.id == user_id))
            return bool(res.scalar_one_or_none())

    async def get_mfa_secret(self, user_id: str) -> str | None:
        async with self._storage("read mfa secret"):
            res = await self.db.execute(
                select(User.mfa_secret).where(User.id == user_id, User.mfa_enabled.is_(True))
            )
            return res.scalar_one_or_none() or None

    async def save_mfa_secret(self, user_id: str, secret: str) -> None:
        # secreto + flag en un solo UPDATE
        await self._set_mfa(user_id, enabled=True, method=MfaMethod.totp, secret=secret)

    async def enable_email_mfa(self, user_id: str) -> None:
        await self._set_mfa(user_id, enabled=True, method=MfaMethod.email, secret=None)

    async def disable_mfa(self, user_id: str) -> None:
        await self._set_mfa(user_id, enabled=False, method=None, secret=None)

    async def _set_mfa(self, user_id: str, enabled: bool, method: MfaMethod | None,
                       secret: str | None) -> None:
        if enabled and method is MfaMethod.totp and not secret:
            raise ValidationError("Secreto MFA vacío")
        async with self._storage("update mfa state"):
            res = await self.db.execute(
                update(User)
                .where(User.id == user_id)
                .values(mfa_enabled=enabled, mfa_method=method, mfa_secret=secret)
            )
            await self.db.commit()
        if res.rowcount != 1:
            raise ValidationError("Usuario no encontrado")
        logger.info("MFA state for user %s set to %s", user_id, method.value if method else "disabled")
