"""
Authentication and authorization utilities.

Provides password hashing, JWT token creation/validation, and FastAPI dependencies
for protecting endpoints.
"""
from datetime import datetime, timedelta
from typing import Optional
import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import models
from .config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from .database import get_db
from .exceptions import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Missing credentials are reported by get_current_user, not by the scheme
security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a hashed password.

    Args:
        plain_password: The plain text password to verify
        hashed_password: The hashed password to compare against

    Returns:
        True if the password matches, False otherwise
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password for secure storage."""
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Dictionary containing the claims to encode in the token
        expires_delta: Optional custom expiration time delta

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def token_for(user: models.User) -> str:
    return create_access_token({"sub": str(user.id), "email": user.email, "role": user.role})


def authenticate_user(db: Session, email: str, password: str) -> Optional[models.User]:
    """
    Authenticate a user by email and password.

    Returns:
        User object if authentication succeeds, None otherwise
    """
    user = db.query(models.User).filter(models.User.email == email).first()
    if not user:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> models.User:
    """
    FastAPI dependency to get the current authenticated user from JWT token.

    Raises:
        Unauthorized: 401 if the token is missing, invalid or the user is gone
        Forbidden: 403 if the account is inactive
    """
    if credentials is None:
        raise Unauthorized("Not authenticated")

    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
        user_id_str: Optional[str] = payload.get("sub")
        if user_id_str is None:
            raise Unauthorized()
        user_id = int(user_id_str)
    except (JWTError, ValueError) as e:
        logger.warning(f"JWT validation error: {e}")
        raise Unauthorized()

    user = db.query(models.User).filter(models.User.id == user_id).first()
    if user is None:
        raise Unauthorized()
    if not user.is_active:
        raise Forbidden("User account is inactive")
    return user


def require_admin(current_user: models.User = Depends(get_current_user)) -> models.User:
    """
    FastAPI dependency to require the ADMIN role.

    Raises:
        Forbidden: 403 if user is not an admin
    """
    if current_user.role != models.Role.ADMIN.value:
        raise Forbidden("Admin privileges required")
    return current_user
