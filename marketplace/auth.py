from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header
from jose import JWTError, jwt
from pydantic import BaseModel

from marketplace import config
from marketplace.errors import Forbidden, Unauthorized


class Principal(BaseModel):
    user_id: str
    role: str = "user"
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_access_token(user_id: str, role: str = "user", email: str = None) -> str:
    expires = datetime.now(timezone.utc) + timedelta(minutes=config.JWT_EXPIRES_MINUTES)
    claims = {"sub": user_id, "role": role, "exp": expires}
    if email:
        claims["email"] = email
    return jwt.encode(claims, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def get_current_user(authorization: str = Header(None)) -> Principal:
    if not authorization:
        raise Unauthorized("Authentication token missing")
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError(scheme)
        claims = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except (ValueError, JWTError):
        raise Unauthorized("Invalid or expired token")

    if not claims.get("sub"):
        raise Unauthorized("Invalid or expired token")
    return Principal(user_id=claims["sub"], role=claims.get("role", "user"), email=claims.get("email"))


def require_admin(user: Principal = Depends(get_current_user)) -> Principal:
    if not user.is_admin:
        raise Forbidden("Admin privileges required")
    return user
