from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.errors import AuthenticationError, AuthorizationError
from app.core.security import AccessState, TokenClaims, decode_token, get_email_cipher
from app.models.user import User
from app.services.credential_store import CredentialStore


bearer = HTTPBearer(auto_error=False)

def get_store(db: AsyncSession = Depends(get_db)) -> CredentialStore:
    return CredentialStore(db, get_email_cipher())

async def get_token_claims(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> TokenClaims:
    # sin token -> Unauthenticated
    if creds is None or not creds.credentials:
        raise AuthenticationError("No autorizado - Token no proporcionado")
    return decode_token(creds.credentials)

async def _load_subject(claims: TokenClaims, store: CredentialStore) -> User:
    user = await store.get_by_id(claims.subject)
    if not user:
        raise AuthenticationError("Usuario no encontrado")
    return user

# --- Access gate ---

async def get_current_user(
    claims: TokenClaims = Depends(get_token_claims),
    store: CredentialStore = Depends(get_store),
) -> User:
    """Solo estado Authenticated: los tokens pendientes de MFA reciben 403."""
    if claims.state is not AccessState.authenticated:
        raise AuthorizationError("Verificación MFA requerida")
    return await _load_subject(claims, store)

async def get_mfa_subject(
    claims: TokenClaims = Depends(get_token_claims),
    store: CredentialStore = Depends(get_store),
) -> User:
    """PendingMfa o Authenticated: para los endpoints de segundo factor."""
    return await _load_subject(claims, store)

async def get_pending_user(
    claims: TokenClaims = Depends(get_token_claims),
    store: CredentialStore = Depends(get_store),
) -> User:
    if claims.state is not AccessState.pending_mfa:
        raise AuthorizationError("El token no está pendiente de verificación MFA")
    return await _load_subject(claims, store)
