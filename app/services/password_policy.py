# app/services/password_policy.py
from dataclasses import dataclass

MIN_LENGTH = 10
SPECIAL_CHARS = frozenset('!@#$%^&*(),.?":{}|<>')


@dataclass(frozen=True)
class PasswordCheck:
    valid: bool
    message: str


def validate_password(password: str) -> PasswordCheck:
    """
    Revisa las reglas de composición en orden fijo y reporta solo la primera
    que falla: un mensaje accionable por intento.
    """
    if len(password) < MIN_LENGTH:
        return PasswordCheck(False, f"La contraseña debe tener al menos {MIN_LENGTH} caracteres")
    if not any("A" <= c <= "Z" for c in password):
        return PasswordCheck(False, "La contraseña debe contener al menos una letra mayúscula")
    if not any("a" <= c <= "z" for c in password):
        return PasswordCheck(False, "La contraseña debe contener al menos una letra minúscula")
    if not any("0" <= c <= "9" for c in password):
        return PasswordCheck(False, "La contraseña debe contener al menos un número")
    if not any(c in SPECIAL_CHARS for c in password):
        return PasswordCheck(False, "La contraseña debe contener al menos un carácter especial")
    return PasswordCheck(True, "Contraseña válida")
