from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request
from jose import JWTError, jwt
from pydantic import BaseModel

from grammar_quiz.config import settings
from grammar_quiz.errors import AuthenticationError


class AuthenticatedUser(BaseModel):
    id: str
    email: str = ""


def issue_session_token(user_id: str, email: str, expires_delta: Optional[timedelta] = None) -> str:
    """Mint a session token the way the external auth service does.

    The token carries the user id as ``sub`` and the address as ``email`` and is
    signed with the shared ``AUTH_SECRET_KEY``.
    """
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=12))
    to_encode = {"sub": user_id, "email": email, "exp": expire}
    return jwt.encode(to_encode, settings.auth_secret_key, algorithm=settings.auth_algorithm)


def get_current_user(request: Request) -> AuthenticatedUser:
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        raise AuthenticationError("Unauthorized")
    try:
        payload = jwt.decode(token, settings.auth_secret_key, algorithms=[settings.auth_algorithm])
    except JWTError as exc:
        raise AuthenticationError("Unauthorized") from exc

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Unauthorized")
    return AuthenticatedUser(id=str(user_id), email=payload.get("email") or "")
