import enum
import uuid
from datetime import datetime
from sqlalchemy import String, Enum, Boolean, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.core.db import Base, db_now

class MfaMethod(str, enum.Enum):
    email = "email"
    totp = "totp"

class User(Base):
    __tablename__ = "users"
    mfa_codes = relationship(
    "MfaCode",
    back_populates="user",
    cascade="all, delete-orphan",
    passive_deletes=True,
)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username: Mapped[str] = mapped_column(String(100))
    # Fernet (no determinístico); la búsqueda se hace por email_hash
    email: Mapped[str] = mapped_column(Text)
    email_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))

    # mfa_secret != None  <=>  mfa_method == totp
    mfa_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    mfa_method: Mapped[MfaMethod | None] = mapped_column(Enum(MfaMethod), nullable=True)
    mfa_secret: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_now)
