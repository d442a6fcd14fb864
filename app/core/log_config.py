# app/core/log_config.py
import logging

from app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configura el logging raíz una sola vez al arrancar el proceso."""
    logging.basicConfig(level=(level or settings.LOG_LEVEL).upper(), format=LOG_FORMAT)
    # passlib avisa en cada arranque sobre la versión de bcrypt
    logging.getLogger("passlib").setLevel(logging.ERROR)
