# app/models/mfa_code.py
from datetime import datetime
from sqlalchemy import ForeignKey, String, DateTime, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.core.db import Base, db_now

class MfaCode(Base):
    __tablename__ = "mfa_codes"
    __table_args__ = (
        Index("ix_mfa_codes_user_code", "user_id", "code"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_now, nullable=False)

    user = relationship("User", back_populates="mfa_codes")
