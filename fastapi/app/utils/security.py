from typing import Any, Dict

from jose import JWTError, jwt

from app.config import get_settings


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify a token issued by the identity service; raises ``jose.JWTError`` if invalid."""
    settings = get_settings()
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def participant_from_token(token: str) -> str:
    payload = decode_access_token(token)
    sub = payload.get("sub")
    if not sub:
        raise JWTError("Token has no subject")
    return str(sub)
