"""
Session resolution for the generation endpoint.

Sessions are HS256 JWTs signed with ``SESSION_SECRET`` and sent either as
``Authorization: Bearer <token>`` or in the ``session_token`` cookie.
"""

import logging
from typing import Any, Dict, Mapping, Optional

import jwt

from flyerdeck.agents.config import get_session_secret

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "session_token"
SESSION_ALGORITHMS = ["HS256"]


def extract_token(headers: Mapping[str, str], cookies: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Bearer token from the Authorization header, falling back to the session cookie"""
    authorization = headers.get("authorization") or ""
    if authorization.startswith("Bearer "):
        return authorization.replace("Bearer ", "", 1).strip() or None
    if cookies:
        return cookies.get(SESSION_COOKIE_NAME) or None
    return None


class SessionResolver:
    """Validates session tokens and returns the session's user"""

    def __init__(self, secret: Optional[str] = None):
        self.secret = secret if secret is not None else get_session_secret()
        if not self.secret:
            logger.warning("SESSION_SECRET not set. Every request will be rejected as unauthenticated.")

    def validate_token(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        if not token or not self.secret:
            return None
        try:
            payload = jwt.decode(token, self.secret, algorithms=SESSION_ALGORITHMS)
        except jwt.ExpiredSignatureError:
            logger.warning("Session token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid session token: {e}")
            return None

        user_id = payload.get("sub") or payload.get("id")
        if not user_id:
            logger.warning("Session token has no subject")
            return None
        return {
            "id": str(user_id),
            "email": payload.get("email"),
            "session_id": payload.get("sid"),
        }

    def resolve(self, headers: Mapping[str, str], cookies: Optional[Mapping[str, str]] = None) -> Optional[Dict[str, Any]]:
        return self.validate_token(extract_token(headers, cookies))
