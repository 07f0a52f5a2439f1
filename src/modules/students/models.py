"""School class and student models read by the finance core."""

from enum import StrEnum

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import BigIntPK, TenantScopedModel


class StudentStatus(StrEnum):
    """Student status enumeration."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class SchoolClass(TenantScopedModel):
    """A class cohort, e.g. "Grade 5 Blue"."""

    __tablename__ = "school_classes"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    grade_level: Mapped[str | None] = mapped_column(String(50), nullable=True)

    students: Mapped[list["Student"]] = relationship("Student", back_populates="school_class")


class Student(TenantScopedModel):
    """Student enrolled in a school. Records are maintained outside the finance core."""

    __tablename__ = "students"

    class_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("school_classes.id"), nullable=True, index=True
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StudentStatus.ACTIVE.value
    )

    scholarship_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("scholarships.id"), nullable=True, index=True
    )
    # Linked parent account; guardian_email is the fallback when unlinked
    parent_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("users.id"), nullable=True, index=True
    )

    guardian_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    guardian_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    guardian_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    school_class: Mapped["SchoolClass | None"] = relationship(
        "SchoolClass", back_populates="students"
    )
    scholarship: Mapped["Scholarship | None"] = relationship("Scholarship", lazy="selectin")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self) -> bool:
        return self.status == StudentStatus.ACTIVE.value
