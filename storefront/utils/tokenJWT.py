# storefront/utils/tokenJWT.py
from jose import jwt, JWTError
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from storefront.config import settings
from storefront.errors import ForbiddenError, UnauthorizedError

ADMIN_ROLE = "ADMIN"

# Authorization scheme; errors are raised by require_admin itself
bearer_scheme = HTTPBearer(auto_error=False)

# Generate a new JWT access token
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

# Admin principal taken from a bearer token with role ADMIN; returns the token subject
def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    if credentials is None:
        raise UnauthorizedError("Bearer token required")
    try:
        payload = jwt.decode(credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise UnauthorizedError("Could not validate credentials")

    subject = payload.get("sub")
    if subject is None:
        raise UnauthorizedError("Could not validate credentials")
    if (payload.get("role") or "").upper() != ADMIN_ROLE:
        raise ForbiddenError("Admin role required")
    return f"admin:{subject}"
