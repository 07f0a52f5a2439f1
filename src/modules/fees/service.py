"""Service for the fees module: catalog, scholarships and class assignment."""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.service import AuditService
from src.core.exceptions import (
    AppException,
    ConflictError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)
from src.modules.fees.discounts import resolve_amount_due
from src.modules.fees.models import BillingPeriod, FeeObligation, FeeTemplate, Scholarship
from src.modules.fees.schemas import (
    AssignmentError,
    BillingPeriodCreate,
    ClassAssignmentResult,
    FeeObligationResponse,
    FeeTemplateBulkResult,
    FeeTemplateCreate,
    FeeTemplateResponse,
    FeeTemplateUpdate,
    ScholarshipCreate,
    ScholarshipUpdate,
)
from src.modules.students.models import SchoolClass, Student, StudentStatus
from src.shared.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)


class FeeCatalogService:
    """Fee templates, billing periods and scholarships of one tenant."""

    def __init__(self, db: AsyncSession, tenant_id: int):
        self.db = db
        self.tenant_id = tenant_id
        self.audit = AuditService(db)

    # --- Billing periods ---

    async def create_billing_period(self, data: BillingPeriodCreate) -> BillingPeriod:
        if data.is_active:
            # Only one active period per tenant
            await self.db.execute(
                update(BillingPeriod)
                .where(BillingPeriod.tenant_id == self.tenant_id, BillingPeriod.is_active.is_(True))
                .values(is_active=False)
            )
        period = BillingPeriod(
            tenant_id=self.tenant_id,
            name=data.name,
            start_date=data.start_date,
            end_date=data.end_date,
            is_active=data.is_active,
        )
        self.db.add(period)
        await self.db.commit()
        await self.db.refresh(period)
        return period

    async def list_billing_periods(self) -> list[BillingPeriod]:
        result = await self.db.execute(
            select(BillingPeriod)
            .where(BillingPeriod.tenant_id == self.tenant_id)
            .order_by(BillingPeriod.start_date.desc())
        )
        return list(result.scalars().all())

    async def get_active_billing_period(self) -> BillingPeriod | None:
        return await self.db.scalar(
            select(BillingPeriod).where(
                BillingPeriod.tenant_id == self.tenant_id, BillingPeriod.is_active.is_(True)
            )
        )

    async def _check_billing_period(self, billing_period_id: int | None) -> None:
        if billing_period_id is None:
            return
        exists = await self.db.scalar(
            select(BillingPeriod.id).where(
                BillingPeriod.id == billing_period_id, BillingPeriod.tenant_id == self.tenant_id
            )
        )
        if not exists:
            raise NotFoundError("Billing period", billing_period_id)

    # --- Fee templates ---

    async def _template_exists(
        self, name: str, billing_period_id: int | None, applicable_grade: str | None
    ) -> bool:
        query = select(FeeTemplate.id).where(
            FeeTemplate.tenant_id == self.tenant_id, FeeTemplate.name == name
        )
        # NULLs never collide in a unique index, so compare them explicitly
        if billing_period_id is None:
            query = query.where(FeeTemplate.billing_period_id.is_(None))
        else:
            query = query.where(FeeTemplate.billing_period_id == billing_period_id)
        if applicable_grade is None:
            query = query.where(FeeTemplate.applicable_grade.is_(None))
        else:
            query = query.where(FeeTemplate.applicable_grade == applicable_grade)
        return (await self.db.scalar(query)) is not None

    async def create_template(self, data: FeeTemplateCreate, created_by_id: int | None = None) -> FeeTemplate:
        """Create a fee template."""
        await self._check_billing_period(data.billing_period_id)
        if await self._template_exists(data.name, data.billing_period_id, data.applicable_grade):
            raise DuplicateError("Fee template", "name", data.name)

        template = FeeTemplate(
            tenant_id=self.tenant_id,
            name=data.name,
            amount=round_money(data.amount),
            applicable_grade=data.applicable_grade,
            billing_period_id=data.billing_period_id,
        )
        self.db.add(template)
        await self.db.flush()

        await self.audit.log(
            action="fee_template.create",
            entity_type="FeeTemplate",
            entity_id=template.id,
            entity_identifier=template.name,
            tenant_id=self.tenant_id,
            user_id=created_by_id,
            new_values={"amount": str(template.amount), "applicable_grade": template.applicable_grade},
        )

        await self.db.commit()
        return await self.get_template(template.id)

    async def bulk_create_templates(
        self, items: list[FeeTemplateCreate], created_by_id: int | None = None
    ) -> FeeTemplateBulkResult:
        """
        Create several templates in one transaction.

        Items without a billing period get the tenant's active period.
        Items clashing with an existing template (or an earlier item) are skipped.
        """
        active = await self.get_active_billing_period()
        created: list[FeeTemplate] = []
        seen: set[tuple] = set()
        skipped = 0

        for item in items:
            period_id = item.billing_period_id
            if period_id is None and active is not None:
                period_id = active.id
            await self._check_billing_period(period_id)

            key = (item.name, period_id, item.applicable_grade)
            if key in seen or await self._template_exists(*key):
                skipped += 1
                continue
            seen.add(key)

            template = FeeTemplate(
                tenant_id=self.tenant_id,
                name=item.name,
                amount=round_money(item.amount),
                applicable_grade=item.applicable_grade,
                billing_period_id=period_id,
            )
            self.db.add(template)
            created.append(template)

        await self.db.flush()
        for template in created:
            await self.audit.log(
                action="fee_template.create",
                entity_type="FeeTemplate",
                entity_id=template.id,
                entity_identifier=template.name,
                tenant_id=self.tenant_id,
                user_id=created_by_id,
                new_values={"amount": str(template.amount), "bulk": True},
            )
        await self.db.commit()

        templates = [await self.get_template(t.id) for t in created]
        return FeeTemplateBulkResult(
            created=len(templates),
            skipped=skipped,
            templates=[FeeTemplateResponse.model_validate(t) for t in templates],
        )

    async def get_template(self, template_id: int) -> FeeTemplate:
        result = await self.db.execute(
            select(FeeTemplate)
            .where(FeeTemplate.id == template_id, FeeTemplate.tenant_id == self.tenant_id)
            .execution_options(populate_existing=True)
        )
        template = result.scalar_one_or_none()
        if not template:
            raise NotFoundError("Fee template", template_id)
        return template

    async def list_templates(
        self, billing_period_id: int | None = None, applicable_grade: str | None = None
    ) -> list[FeeTemplate]:
        query = select(FeeTemplate).where(FeeTemplate.tenant_id == self.tenant_id)
        if billing_period_id is not None:
            query = query.where(FeeTemplate.billing_period_id == billing_period_id)
        if applicable_grade is not None:
            query = query.where(FeeTemplate.applicable_grade == applicable_grade)
        result = await self.db.execute(query.order_by(FeeTemplate.name))
        return list(result.scalars().all())

    async def update_template(
        self, template_id: int, data: FeeTemplateUpdate, updated_by_id: int | None = None
    ) -> FeeTemplate:
        """Update a template. Frozen once any of its obligations has a recorded payment."""
        template = await self.get_template(template_id)

        paid = await self.db.scalar(
            select(func.count(FeeObligation.id)).where(
                FeeObligation.fee_template_id == template_id, FeeObligation.amount_paid > 0
            )
        )
        if paid:
            raise ConflictError(
                "Fee template cannot be changed after payments were recorded against it",
                details={"fee_template_id": template_id},
            )

        updates = data.model_dump(exclude_unset=True)
        if "billing_period_id" in updates:
            await self._check_billing_period(updates["billing_period_id"])
        if "amount" in updates and updates["amount"] is not None:
            updates["amount"] = round_money(updates["amount"])

        old_values = {}
        for field, value in updates.items():
            old_values[field] = getattr(template, field)
            setattr(template, field, value)

        await self.audit.log(
            action="fee_template.update",
            entity_type="FeeTemplate",
            entity_id=template.id,
            entity_identifier=template.name,
            tenant_id=self.tenant_id,
            user_id=updated_by_id,
            old_values=old_values,
            new_values=updates,
        )

        await self.db.commit()
        return await self.get_template(template_id)

    async def delete_template(self, template_id: int, deleted_by_id: int | None = None) -> None:
        """Delete a template nobody has been assigned yet."""
        template = await self.get_template(template_id)

        in_use = await self.db.scalar(
            select(func.count(FeeObligation.id)).where(FeeObligation.fee_template_id == template_id)
        )
        if in_use:
            raise ConflictError(
                "Cannot delete a fee template that is assigned to students",
                details={"fee_template_id": template_id, "obligations": in_use},
            )

        await self.audit.log(
            action="fee_template.delete",
            entity_type="FeeTemplate",
            entity_id=template.id,
            entity_identifier=template.name,
            tenant_id=self.tenant_id,
            user_id=deleted_by_id,
        )
        await self.db.delete(template)
        await self.db.commit()

    # --- Scholarships ---

    async def create_scholarship(self, data: ScholarshipCreate, created_by_id: int | None = None) -> Scholarship:
        await self._check_scholarship_name(data.name)
        scholarship = Scholarship(
            tenant_id=self.tenant_id,
            name=data.name,
            discount_percentage=data.discount_percentage,
            is_active=True,
        )
        self.db.add(scholarship)
        await self.db.flush()

        await self.audit.log(
            action="scholarship.create",
            entity_type="Scholarship",
            entity_id=scholarship.id,
            entity_identifier=scholarship.name,
            tenant_id=self.tenant_id,
            user_id=created_by_id,
            new_values={"discount_percentage": str(data.discount_percentage)},
        )
        await self.db.commit()
        return await self.get_scholarship(scholarship.id)

    async def _check_scholarship_name(self, name: str, exclude_id: int | None = None) -> None:
        query = select(Scholarship.id).where(
            Scholarship.tenant_id == self.tenant_id, Scholarship.name == name
        )
        if exclude_id is not None:
            query = query.where(Scholarship.id != exclude_id)
        if await self.db.scalar(query):
            raise DuplicateError("Scholarship", "name", name)

    async def get_scholarship(self, scholarship_id: int) -> Scholarship:
        result = await self.db.execute(
            select(Scholarship)
            .where(Scholarship.id == scholarship_id, Scholarship.tenant_id == self.tenant_id)
            .execution_options(populate_existing=True)
        )
        scholarship = result.scalar_one_or_none()
        if not scholarship:
            raise NotFoundError("Scholarship", scholarship_id)
        return scholarship

    async def list_scholarships(self, include_inactive: bool = False) -> list[Scholarship]:
        query = select(Scholarship).where(Scholarship.tenant_id == self.tenant_id)
        if not include_inactive:
            query = query.where(Scholarship.is_active.is_(True))
        result = await self.db.execute(query.order_by(Scholarship.name))
        return list(result.scalars().all())

    async def update_scholarship(
        self, scholarship_id: int, data: ScholarshipUpdate, updated_by_id: int | None = None
    ) -> Scholarship:
        """Existing obligations keep the amount they were assigned with."""
        scholarship = await self.get_scholarship(scholarship_id)
        updates = data.model_dump(exclude_unset=True)
        if updates.get("name"):
            await self._check_scholarship_name(updates["name"], exclude_id=scholarship_id)

        old_values = {field: getattr(scholarship, field) for field in updates}
        for field, value in updates.items():
            setattr(scholarship, field, value)

        await self.audit.log(
            action="scholarship.update",
            entity_type="Scholarship",
            entity_id=scholarship.id,
            entity_identifier=scholarship.name,
            tenant_id=self.tenant_id,
            user_id=updated_by_id,
            old_values=old_values,
            new_values=updates,
        )
        await self.db.commit()
        return await self.get_scholarship(scholarship_id)

    async def delete_scholarship(self, scholarship_id: int, deleted_by_id: int | None = None) -> None:
        scholarship = await self.get_scholarship(scholarship_id)

        holders = await self.db.scalar(
            select(func.count(Student.id)).where(Student.scholarship_id == scholarship_id)
        )
        if holders:
            raise ConflictError(
                "Cannot delete a scholarship that is attached to students",
                details={"scholarship_id": scholarship_id, "students": holders},
            )

        await self.audit.log(
            action="scholarship.delete",
            entity_type="Scholarship",
            entity_id=scholarship.id,
            entity_identifier=scholarship.name,
            tenant_id=self.tenant_id,
            user_id=deleted_by_id,
        )
        await self.db.delete(scholarship)
        await self.db.commit()

    async def set_student_scholarship(
        self, student_id: int, scholarship_id: int | None, updated_by_id: int | None = None
    ) -> Student:
        """Attach or detach a student's scholarship. Only later assignments see the change."""
        student = await get_tenant_student(self.db, self.tenant_id, student_id)
        if scholarship_id is not None:
            await self.get_scholarship(scholarship_id)

        old_value = student.scholarship_id
        student.scholarship_id = scholarship_id

        await self.audit.log(
            action="scholarship.assign",
            entity_type="Student",
            entity_id=student.id,
            entity_identifier=student.full_name,
            tenant_id=self.tenant_id,
            user_id=updated_by_id,
            old_values={"scholarship_id": old_value},
            new_values={"scholarship_id": scholarship_id},
        )
        await self.db.commit()
        return await get_tenant_student(self.db, self.tenant_id, student_id)


class FeeAssignmentService:
    """Expands fee templates into per-student obligations and allocates payments to them."""

    def __init__(self, db: AsyncSession, tenant_id: int):
        self.db = db
        self.tenant_id = tenant_id
        self.audit = AuditService(db)
        self.catalog = FeeCatalogService(db, tenant_id)

    async def assign_fee_to_class(
        self,
        template_id: int,
        class_id: int,
        due_date: date | None = None,
        assigned_by_id: int | None = None,
    ) -> ClassAssignmentResult:
        """
        Create an obligation for every active student in the class who lacks one.

        Students already holding the obligation are counted, not failed. Each
        insert runs in its own savepoint so one bad row cannot sink the cohort.
        """
        template = await self.catalog.get_template(template_id)
        validate_due_date(due_date, template.billing_period)

        school_class = await self.db.scalar(
            select(SchoolClass).where(
                SchoolClass.id == class_id, SchoolClass.tenant_id == self.tenant_id
            )
        )
        if not school_class:
            raise NotFoundError("Class", class_id)

        result = await self.db.execute(
            select(Student)
            .where(
                Student.tenant_id == self.tenant_id,
                Student.class_id == class_id,
                Student.status == StudentStatus.ACTIVE.value,
            )
            .order_by(Student.last_name, Student.first_name, Student.id)
            .execution_options(populate_existing=True)
        )
        students = list(result.scalars().all())
        if not students:
            raise NotFoundError(f"Active students in class {school_class.name}")

        existing = set(
            (
                await self.db.execute(
                    select(FeeObligation.student_id).where(
                        FeeObligation.fee_template_id == template.id,
                        FeeObligation.student_id.in_([s.id for s in students]),
                    )
                )
            ).scalars()
        )

        created: list[FeeObligation] = []
        errors: list[AssignmentError] = []
        already_assigned = 0

        for student in students:
            if student.id in existing:
                already_assigned += 1
                continue
            try:
                async with self.db.begin_nested():
                    obligation = FeeObligation(
                        tenant_id=self.tenant_id,
                        student_id=student.id,
                        fee_template_id=template.id,
                        amount_due=resolve_amount_due(template.amount, student.scholarship),
                        amount_paid=ZERO,
                        due_date=due_date,
                    )
                    self.db.add(obligation)
                    await self.db.flush()
                created.append(obligation)
            except IntegrityError:
                # Assigned concurrently by another request
                already_assigned += 1
            except (AppException, SQLAlchemyError) as exc:
                message = exc.message if isinstance(exc, AppException) else str(exc.__cause__ or exc)
                logger.warning(
                    "fee template %s not assigned to student %s: %s", template.id, student.id, message
                )
                errors.append(
                    AssignmentError(student_id=student.id, student_name=student.full_name, error=message)
                )

        await self.audit.log(
            action="fee.assign_class",
            entity_type="FeeTemplate",
            entity_id=template.id,
            entity_identifier=template.name,
            tenant_id=self.tenant_id,
            user_id=assigned_by_id,
            new_values={
                "class_id": class_id,
                "assigned": len(created),
                "already_assigned": already_assigned,
                "failed": len(errors),
            },
        )
        await self.db.commit()

        logger.info(
            "fee template %s assigned to class %s: %d new, %d existing, %d failed",
            template.id,
            class_id,
            len(created),
            already_assigned,
            len(errors),
        )
        return ClassAssignmentResult(
            fee_template_id=template.id,
            class_id=class_id,
            assigned=len(created),
            already_assigned=already_assigned,
            failed=len(errors),
            errors=errors,
            obligations=[FeeObligationResponse.model_validate(o) for o in created],
        )

    async def list_student_obligations(self, student_id: int) -> list[FeeObligation]:
        await get_tenant_student(self.db, self.tenant_id, student_id)
        result = await self.db.execute(
            select(FeeObligation)
            .where(FeeObligation.student_id == student_id, FeeObligation.tenant_id == self.tenant_id)
            .order_by(FeeObligation.due_date.is_(None), FeeObligation.due_date, FeeObligation.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def allocate_payment(self, student_id: int, amount: Decimal) -> Decimal:
        """
        Spread a completed payment over the student's open obligations, earliest due first.

        Returns the allocated total; anything beyond the open amount stays
        unallocated credit. Does not commit.
        """
        result = await self.db.execute(
            select(FeeObligation)
            .where(
                FeeObligation.student_id == student_id,
                FeeObligation.tenant_id == self.tenant_id,
                FeeObligation.amount_paid < FeeObligation.amount_due,
            )
            .order_by(FeeObligation.due_date.is_(None), FeeObligation.due_date, FeeObligation.id)
            .execution_options(populate_existing=True)
        )
        obligations = list(result.scalars().all())

        left = round_money(amount)
        allocated = ZERO
        for obligation in obligations:
            if left <= 0:
                break
            share = min(obligation.remaining, left)
            if share <= 0:
                continue
            await self.db.execute(
                update(FeeObligation)
                .where(FeeObligation.id == obligation.id)
                .values(amount_paid=FeeObligation.amount_paid + share)
                .execution_options(synchronize_session=False)
            )
            left = round_money(left - share)
            allocated = round_money(allocated + share)

        return allocated


async def get_tenant_student(db: AsyncSession, tenant_id: int, student_id: int) -> Student:
    """Student lookup scoped to a tenant; other schools' students are not found."""
    result = await db.execute(
        select(Student)
        .where(Student.id == student_id, Student.tenant_id == tenant_id)
        .execution_options(populate_existing=True)
    )
    student = result.scalar_one_or_none()
    if not student:
        raise NotFoundError("Student", student_id)
    return student


def validate_due_date(due_date: date | None, period: BillingPeriod | None) -> None:
    if due_date and period and due_date < period.start_date:
        raise ValidationError("Due date is before the billing period starts", field="due_date")
