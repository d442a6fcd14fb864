"""Correo saliente: lo único que hace falta es "enviar este código a esta dirección"."""
import email.message
import email.policy
import logging

import aiosmtplib
from fastapi import Request

from app.core.config import settings
from app.core.errors import DeliveryError

logger = logging.getLogger(__name__)


class SmtpMailer:
    """
    Envío SMTP async con aiosmtplib. Una instancia por proceso; solo guarda
    configuración y abre una conexión por mensaje.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 10.0,
        from_email: str = "no-reply@localhost",
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        self.from_email = from_email

    @classmethod
    def from_settings(cls) -> "SmtpMailer":
        return cls(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            use_tls=settings.SMTP_USE_TLS,
            timeout=settings.SMTP_TIMEOUT,
            from_email=settings.EMAIL_FROM,
        )

    def _build_code_message(self, recipient: str, code: str) -> email.message.EmailMessage:
        message = email.message.EmailMessage(policy=email.policy.default)
        message["To"] = recipient
        message["From"] = self.from_email
        message["Subject"] = "Código de verificación 2FA"
        message.set_content(f"Tu código de verificación es: {code}", subtype="plain", charset="utf-8")
        message.add_alternative(
            f"<p>Tu código de verificación es: <b>{code}</b></p>", subtype="html", charset="utf-8"
        )
        return message

    async def send_code(self, recipient: str, code: str) -> None:
        message = self._build_code_message(recipient, code)
        try:
            async with aiosmtplib.SMTP(
                hostname=self.host,
                port=self.port,
                timeout=self.timeout,
                start_tls=self.use_tls,
            ) as smtp:
                if self.username and self.password:
                    await smtp.login(self.username, self.password)
                await smtp.send_message(message)
        except (aiosmtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"SMTP delivery to {self.host}:{self.port} failed: {exc}") from exc
        logger.info("Verification code sent via SMTP")


def get_mailer(request: Request) -> SmtpMailer:
    # creado en el lifespan de la app (app.state.mailer)
    return request.app.state.mailer
