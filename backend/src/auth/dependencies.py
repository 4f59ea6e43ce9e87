# pyright: reportMissingTypeStubs=false
"""
Authentication and authorization dependencies for FastAPI.

Provides dependency injection functions for user authentication and
role-based access control.
"""

import logging
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from core.database import get_db
from services.jwt_service import jwt_service, TokenPayload
from models import User
from shared_types.workflow import Actor, ActorRole

logger = logging.getLogger(__name__)

USER_ROLES = ("customer", "technician", "staff", "admin")


class UserContext:
    """Authenticated user context extracted from JWT token."""

    def __init__(
        self,
        user_id: int,
        email: str,
        role: str,
        name: str,
    ):
        self.user_id = user_id
        self.email = email
        self.role = role  # "customer", "technician", "staff" or "admin"
        self.name = name

    def has_role(self, role: str) -> bool:
        """Check if user has a specific role. Admins hold every staff permission."""
        return self.role == role or (role == "staff" and self.role == "admin")

    def is_staff_or_admin(self) -> bool:
        return self.role in ("staff", "admin")

    def to_actor(self) -> Actor:
        """The workflow actor this user acts as."""
        return Actor(role=ActorRole(self.role), user_id=self.user_id)

    def __repr__(self) -> str:
        return f"UserContext(user_id={self.user_id}, email='{self.email}', role='{self.role}')"


# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


def get_token_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[TokenPayload]:
    """Extract and validate JWT token payload."""
    if not credentials:
        return None

    token = credentials.credentials
    payload = jwt_service.verify_token(token)

    if not payload:
        return None

    return payload


def get_current_user(
    payload: Optional[TokenPayload] = Depends(get_token_payload),
    db: Session = Depends(get_db)
) -> UserContext:
    """Get authenticated user context from JWT token."""
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication credentials not provided"
        )

    if payload.role not in USER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user role"
        )

    try:
        user_id = int(payload.sub)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject"
        )

    user = db.query(User).filter(User.id == user_id, User.email == payload.email).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is deactivated"
        )

    # The stored role wins over a stale token
    if user.role != payload.role:
        logger.warning(f"Token role {payload.role} differs from stored role {user.role} for user {user.id}")

    return UserContext(
        user_id=user.id,
        email=user.email,
        role=user.role,
        name=user.full_name,
    )


# Role-based authorization dependencies
def require_staff_or_admin(user: UserContext = Depends(get_current_user)) -> UserContext:
    """Require staff or admin role."""
    if not user.is_staff_or_admin():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff access required"
        )
    return user


def require_technician_staff_or_admin(user: UserContext = Depends(get_current_user)) -> UserContext:
    """Require technician, staff or admin role."""
    if not (user.is_staff_or_admin() or user.role == "technician"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Technician or staff access required"
        )
    return user


def require_customer(user: UserContext = Depends(get_current_user)) -> UserContext:
    """Require customer role."""
    if user.role != "customer":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Customer access required"
        )
    return user
