"""
Taxonomía de errores del gateway y el único traductor de borde que los
convierte en respuestas HTTP.

El detalle interno (errores SQL, fallos SMTP) se loguea aquí y nunca llega
al cliente; las respuestas 5xx siempre llevan el mismo mensaje genérico.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Error en el servidor"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def public_message(self) -> str:
        return self.message


class ValidationError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Solicitud inválida"


class AuthenticationError(GatewayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "No autorizado"


class AuthorizationError(GatewayError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Verificación MFA requerida"


class InfrastructureError(GatewayError):
    """Base para fallos de colaboradores externos; nunca expone el detalle."""

    @property
    def public_message(self) -> str:
        return GatewayError.default_message


class StorageError(InfrastructureError):
    default_message = "Error de almacenamiento"


class DeliveryError(InfrastructureError):
    default_message = "Error al enviar el correo"


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if isinstance(exc, InfrastructureError):
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method,
                     request.url.path, exc.message, exc_info=exc.__cause__ or exc)
    else:
        logger.info("%s on %s %s: %s", type(exc).__name__, request.method,
                    request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.public_message})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ())[1:]) or "body"
        message = f"Campo inválido o faltante: {field}"
    else:
        message = "Todos los campos son requeridos"
    logger.info("Request validation failed on %s: %s", request.url.path, message)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": message})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GatewayError, gateway_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
