import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Literal, Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request
from pymongo.database import Database

from database import get_db

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("ACCESS_TOKEN_SECRET", "dev-secret-key-change-me-please-32b")
JWT_EXPIRES_DAYS = int(os.getenv("JWT_EXPIRES_DAYS", "7"))
ALGORITHM = "HS256"

Role = Literal["student", "teacher", "admin"]


def issue_token(payload: Dict[str, Any]) -> str:
    """Sign the caller's identity payload; the token carries every field plus ``exp``."""
    if not payload.get("email"):
        raise HTTPException(status_code=400, detail="Email is required")
    claims = {
        **payload,
        "exp": datetime.now(timezone.utc) + timedelta(days=JWT_EXPIRES_DAYS),
    }
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(request: Request, authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    if not authorization:
        raise HTTPException(status_code=401, detail="Unauthorized access")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Unauthorized access")
    try:
        claims = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=403, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=403, detail="Forbidden access")
    request.state.user = claims
    return claims


def require_role(*roles: Role) -> Callable[..., dict]:
    """Dependency factory: the token's user must hold one of ``roles`` in the users collection."""

    def dependency(
        claims: Dict[str, Any] = Depends(verify_token),
        db: Database = Depends(get_db),
    ) -> dict:
        email = str(claims.get("email") or "").strip().lower()
        user = db["users"].find_one({"email": email}) if email else None
        if not user or user.get("role") not in roles:
            logger.warning(
                f"Role check failed, required one of {list(roles)}",
                extra={"email": email},
            )
            raise HTTPException(status_code=403, detail="Forbidden access")
        return user

    return dependency


def ensure_self_or_admin(caller: Dict[str, Any], email: str, db: Database) -> None:
    """Callers act on their own email unless they are an admin.

    ``caller`` is either decoded token claims or a user document; only its email
    is trusted, the role is always read from the users collection.
    """
    caller_email = str(caller.get("email") or "").strip().lower()
    if caller_email and caller_email == email.strip().lower():
        return
    user = db["users"].find_one({"email": caller_email}) if caller_email else None
    if not user or user.get("role") != "admin":
        logger.warning("Caller tried to act on another account", extra={"email": caller_email})
        raise HTTPException(status_code=403, detail="Forbidden access")


require_teacher = require_role("teacher", "admin")
require_admin = require_role("admin")
