from fastapi import Request, HTTPException, Depends
from typing import Dict, Any
import hmac
import logging

from impactly import config

COOKIE_NAME = "sb_access"
INTERNAL_TOKEN_HEADER = "X-Internal-Token"

logger = logging.getLogger(__name__)

def _token_from_request(request: Request) -> str | None:
    # Hybride: priorité au Bearer, fallback cookie
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(COOKIE_NAME)

def get_user_from_token(db, token: str) -> Dict[str, Any]:
    """Valide l'access token auprès de Supabase Auth et normalise l'utilisateur {id, email}."""
    res = db.auth.get_user(token)
    user = getattr(res, "user", None)
    if user is None:
        return {}
    if isinstance(user, dict):
        return {"id": user.get("id"), "email": user.get("email")}
    return {"id": getattr(user, "id", None), "email": getattr(user, "email", None)}

def get_current_user(request: Request) -> Dict[str, Any]:
    token = _token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Non authentifié")

    db = getattr(request.app.state, "supabase", None)
    if db is None:
        raise HTTPException(status_code=401, detail="Authentification indisponible")
    try:
        user = get_user_from_token(db, token)
    except Exception:
        logger.info("security.get_current_user token rejeté")
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    if not user.get("id"):
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    return user

def require_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return user

def require_internal_token(request: Request) -> None:
    """
    Garde des endpoints internes (dispatch fulfillment, réconciliation).
    - Refuse tout si INTERNAL_API_TOKEN n'est pas configuré.
    """
    expected = config.INTERNAL_API_TOKEN
    provided = request.headers.get(INTERNAL_TOKEN_HEADER) or ""
    if not expected or not hmac.compare_digest(provided, expected):
        raise HTTPException(status_code=403, detail="Accès interdit")
