# app/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore")

    JWT_SECRET: str = Field(...)
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    PENDING_TOKEN_EXPIRE_MINUTES: int = 5

    # Fernet key (urlsafe base64, 32 bytes) para cifrar emails en reposo
    EMAIL_ENCRYPTION_KEY: str = Field(...)
    # clave HMAC para el índice de búsqueda por email
    EMAIL_LOOKUP_KEY: str = Field(...)

    BCRYPT_ROUNDS: int = 12
    MFA_CODE_TTL_MINUTES: int = 5
    TOTP_VALID_WINDOW: int = 1
    MFA_ISSUER: str = "MFA Gateway"

    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "root"
    DB_PASSWORD: str = ""
    DB_NAME: str = "secure_react_db"
    DATABASE_URL: str | None = None   # override completo (ej: sqlite+aiosqlite en tests)

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USER: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_USE_TLS: bool = True
    SMTP_TIMEOUT: float = 10.0
    EMAIL_FROM: str = "no-reply@localhost"

    FRONTEND_URL: str = "http://localhost:5173"
    LOG_LEVEL: str = "INFO"

    @property
    def async_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4")

settings = Settings()  # type: ignore[call-arg]
