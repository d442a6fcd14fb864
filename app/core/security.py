import enum
import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from fastapi.concurrency import run_in_threadpool
from jose import jwt, JWTError
from passlib.context import CryptContext

from app.core.config import settings
from app.core.errors import AuthenticationError, StorageError

# --- 2FA helpers ---
import base64
from io import BytesIO
import pyotp
import qrcode


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.BCRYPT_ROUNDS)


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)

# --- passwords ---

def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)

def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)

async def hash_password_async(plain: str) -> str:
    # bcrypt es lento a propósito: fuera del event loop
    return await run_in_threadpool(hash_password, plain)

async def verify_password_async(plain: str, hashed: str | None) -> bool:
    if hashed is None:
        # mismo costo que una verificación real (anti enumeración por timing)
        await run_in_threadpool(pwd_context.dummy_verify)
        return False
    return await run_in_threadpool(verify_password, plain, hashed)

# --- email en reposo ---

def normalize_email(email: str) -> str:
    return email.strip().lower()


class EmailCipher:
    """
    Cifrado no determinístico (Fernet) para el email guardado, más un hash
    HMAC determinístico que solo se usa para búsquedas por igualdad.
    """

    def __init__(self, encryption_key: str, lookup_key: str):
        self._fernet = Fernet(encryption_key.encode())
        self._lookup_key = lookup_key.encode()

    def encrypt(self, email: str) -> str:
        return self._fernet.encrypt(normalize_email(email).encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as exc:
            raise StorageError("Stored email could not be decrypted") from exc

    def lookup_hash(self, email: str) -> str:
        return hmac.new(self._lookup_key, normalize_email(email).encode(), hashlib.sha256).hexdigest()


def get_email_cipher() -> EmailCipher:
    return EmailCipher(settings.EMAIL_ENCRYPTION_KEY, settings.EMAIL_LOOKUP_KEY)

# --- tokens ---

class AccessState(str, enum.Enum):
    unauthenticated = "unauthenticated"
    pending_mfa = "pending_mfa"
    authenticated = "authenticated"


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    pending_mfa: bool

    @property
    def state(self) -> AccessState:
        return AccessState.pending_mfa if self.pending_mfa else AccessState.authenticated


def create_access_token(
        subject: str,
        extra: Optional[dict] = None,
        expires_minutes: int | None = None
        ) -> str:
    to_encode = {"sub": subject, "iat": utcnow()}
    if extra:
        to_encode.update(extra)
    expire = utcnow() + timedelta(
        minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

def issue_pending_token(user_id: str) -> str:
    return create_access_token(
        subject=user_id,
        extra={"pending_mfa": True},
        expires_minutes=settings.PENDING_TOKEN_EXPIRE_MINUTES,
    )

def issue_full_token(user_id: str) -> str:
    return create_access_token(subject=user_id)

def decode_token(token: str) -> TokenClaims:
    """
    Verifica firma y expiración del JWT. Cualquier fallo es un
    AuthenticationError; el error de jose no sale de aquí.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise AuthenticationError("Token inválido o expirado") from exc

    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub or "exp" not in payload:
        raise AuthenticationError("Token inválido o expirado")
    return TokenClaims(
        subject=sub,
        pending_mfa=payload.get("pending_mfa") is True,
    )

# --- 2FA functions ---

def generate_2fa_secret() -> str:
    # 32 chars base32 = 160 bits
    return pyotp.random_base32(length=32)

def totp_uri_from_secret(secret: str, email: str, issuer: str | None = None) -> str:
    totp = pyotp.TOTP(secret)
    return totp.provisioning_uri(name=email, issuer_name=issuer or settings.MFA_ISSUER)

def verify_totp(
        otp: str,
        secret: str,
        for_time: datetime | int | None = None,
        valid_window: int | None = None,
        ) -> bool:
    window = settings.TOTP_VALID_WINDOW if valid_window is None else valid_window
    try:
        return pyotp.TOTP(secret).verify(otp, for_time=for_time, valid_window=window)
    except (TypeError, ValueError):
        # secreto no base32 u otp no numérico
        return False

def qr_png_base64_from_text(text: str) -> str:
    img = qrcode.make(text)
    buf = BytesIO()
    img.save(buf, "PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")
