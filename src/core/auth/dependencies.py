from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.jwt import decode_token
from src.core.auth.models import User, UserRole
from src.core.database import get_db
from src.core.exceptions import AuthenticationError, AuthorizationError


async def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency to get current authenticated user from JWT token.

    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    if not authorization:
        raise AuthenticationError("Authorization header required")

    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Invalid authorization header format")

    token = authorization.replace("Bearer ", "")

    payload = decode_token(token, token_type="access")
    user_id = int(payload["sub"])

    user = await db.scalar(select(User).where(User.id == user_id))

    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return user


def require_roles(*roles: UserRole):
    """
    Dependency factory to require specific roles.

    Usage:
        @router.post("/fees/templates")
        async def create_template(
            user: User = Depends(require_roles(UserRole.ADMIN, UserRole.BURSAR))
        ):
            ...
    """

    async def role_checker(
        current_user: User = Depends(get_current_user),
    ) -> User:
        if not current_user.has_role(*roles):
            allowed = ", ".join(r.value for r in roles)
            raise AuthorizationError(f"Required role: {allowed}")
        return current_user

    return role_checker


def require_tenant_id(user: User) -> int:
    """Tenant the user acts for. Platform admins have none and cannot use school endpoints."""
    if user.tenant_id is None:
        raise AuthorizationError("This action requires a school account")
    return user.tenant_id


# Convenience dependencies
CurrentUser = Annotated[User, Depends(get_current_user)]
StaffUser = Annotated[User, Depends(require_roles(UserRole.ADMIN, UserRole.BURSAR))]
SchoolAdminUser = Annotated[User, Depends(require_roles(UserRole.ADMIN))]
PlatformAdminUser = Annotated[User, Depends(require_roles(UserRole.PLATFORM_ADMIN))]
