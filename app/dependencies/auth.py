"""
Authentication Dependencies for StudyForge

Bearer tokens are HS256 JWTs issued by the auth provider and signed with
AUTH_JWT_SECRET. The `sub` claim is the user id.

Usage:
    @router.get("/protected")
    def protected_endpoint(current_user: User = Depends(get_current_user)):
        return {"user_id": current_user.id}
"""

import os
import logging
from typing import Optional
from datetime import datetime

from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from jose import jwt, JWTError

from app.database import get_db
from app.models.models import User
from app.services.errors import Unauthorized

logger = logging.getLogger(__name__)

# HTTP Bearer scheme for extracting tokens
security = HTTPBearer(auto_error=False)

AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "")
AUTH_JWT_ALGORITHM = "HS256"
# Audience validation is skipped when unset
AUTH_JWT_AUDIENCE = os.getenv("AUTH_JWT_AUDIENCE")


def validate_token(token: str) -> Optional[str]:
    """
    Verify a bearer token and return its user id.

    Returns:
        The `sub` claim, or None if the token is missing, malformed, expired,
        signed with another key, or for another audience
    """
    if not token:
        return None

    if not AUTH_JWT_SECRET:
        logger.error("AUTH_JWT_SECRET is not set; rejecting all tokens")
        return None

    decode_kwargs = {"algorithms": [AUTH_JWT_ALGORITHM]}
    if AUTH_JWT_AUDIENCE:
        decode_kwargs["audience"] = AUTH_JWT_AUDIENCE
    else:
        decode_kwargs["options"] = {"verify_aud": False}

    try:
        claims = jwt.decode(token, AUTH_JWT_SECRET, **decode_kwargs)
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        return None

    user_id = claims.get("sub")
    if not user_id or not isinstance(user_id, str):
        logger.warning("JWT has no subject claim")
        return None

    return user_id


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db)
) -> User:
    """
    FastAPI dependency to get the currently authenticated user.

    Raises:
        Unauthorized: no token, invalid token, or no such user
    """
    token = None
    if credentials:
        token = credentials.credentials
    elif authorization and authorization.startswith("Bearer "):
        token = authorization[7:]

    user_id = validate_token(token)
    if not user_id:
        raise Unauthorized("Unauthorized")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        logger.warning(f"Token subject {user_id} has no user record")
        raise Unauthorized("Unauthorized")

    user.last_login = datetime.utcnow()
    db.commit()

    return user
