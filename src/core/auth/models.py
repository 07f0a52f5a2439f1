from enum import StrEnum

from sqlalchemy import BigInteger, Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import BaseModel


class UserRole(StrEnum):
    """User roles in the system."""

    PLATFORM_ADMIN = "PlatformAdmin"
    ADMIN = "Admin"
    BURSAR = "Bursar"
    PARENT = "Parent"


class User(BaseModel):
    """
    A person who can act on the platform.

    Accounts are provisioned by the identity service; this table mirrors the
    fields needed for authorization. Platform admins have no tenant.
    """

    __tablename__ = "users"

    tenant_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("tenants.id"), nullable=True, index=True
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def has_role(self, *roles: UserRole) -> bool:
        """Check if user has any of the specified roles."""
        return self.role in [r.value for r in roles]

    @property
    def is_platform_admin(self) -> bool:
        return self.role == UserRole.PLATFORM_ADMIN.value

    @property
    def is_staff(self) -> bool:
        """School staff allowed to record payments for any student of the tenant."""
        return self.role in (UserRole.ADMIN.value, UserRole.BURSAR.value)

    @property
    def is_parent(self) -> bool:
        return self.role == UserRole.PARENT.value
