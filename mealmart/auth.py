"""
Authentication and authorization utilities for the MealMart orders service.

Validates JWT tokens issued by the authentication service and guards routes
by role.
"""
import logging
import os
from typing import Callable
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from .models import UserRole

logger = logging.getLogger(__name__)

# JWT settings (must match the authentication service)
SECRET_KEY = os.getenv("SECRET_KEY", "09d25e094faa6ca2556c818166b7a9563b93f7099f6f0f4caa6cf63b88e8d3e7")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# Security scheme for JWT bearer tokens
security = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """Current authenticated user information."""
    id: int
    email: str
    role: str
    token: str


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> CurrentUser:
    """
    FastAPI dependency to get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Authorization credentials (injected)

    Returns:
        Current authenticated user information

    Raises:
        HTTPException: 401 if token is missing or invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="You are not authorized!",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    try:
        token = credentials.credentials
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id_str = payload.get("sub")
        email = payload.get("email")
        role = payload.get("role")

        if user_id_str is None or email is None or role is None:
            raise credentials_exception

        user_id = int(user_id_str)
        return CurrentUser(id=user_id, email=email, role=role, token=token)
    except (JWTError, ValueError) as e:
        logger.warning(f"JWT validation error: {e}")
        raise credentials_exception


def require_roles(*roles: UserRole) -> Callable[..., CurrentUser]:
    """
    Build a dependency that admits only the given roles.

    Args:
        roles: Allowed roles

    Returns:
        FastAPI dependency returning the current user

    Example:
        @app.get("/orders")
        def list_orders(current_user = Depends(require_roles(UserRole.ADMIN))): ...
    """
    allowed = {role.value for role in roles}

    def dependency(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You are not authorized!",
            )
        return current_user

    return dependency


require_customer = require_roles(UserRole.CUSTOMER)
require_provider = require_roles(UserRole.PROVIDER)
require_admin = require_roles(UserRole.ADMIN)
