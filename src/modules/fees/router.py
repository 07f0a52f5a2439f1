"""API endpoints for the fees module."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import require_roles, require_tenant_id
from src.core.auth.models import User, UserRole
from src.core.database.session import get_db
from src.modules.fees.schemas import (
    AssignFeeToClassRequest,
    BillingPeriodCreate,
    BillingPeriodResponse,
    ClassAssignmentResult,
    FeeObligationResponse,
    FeeTemplateBulkCreate,
    FeeTemplateBulkResult,
    FeeTemplateCreate,
    FeeTemplateResponse,
    FeeTemplateUpdate,
    ScholarshipCreate,
    ScholarshipResponse,
    ScholarshipUpdate,
    StudentScholarshipResponse,
    StudentScholarshipUpdate,
)
from src.modules.fees.service import FeeAssignmentService, FeeCatalogService
from src.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/fees", tags=["Fees"])

staff_roles = require_roles(UserRole.ADMIN, UserRole.BURSAR)
admin_roles = require_roles(UserRole.ADMIN)


# --- Billing periods ---


@router.post(
    "/billing-periods",
    response_model=ApiResponse[BillingPeriodResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_billing_period(
    data: BillingPeriodCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_roles),
):
    service = FeeCatalogService(db, require_tenant_id(current_user))
    period = await service.create_billing_period(data)
    return ApiResponse(
        data=BillingPeriodResponse.model_validate(period),
        message="Billing period created successfully",
    )


@router.get("/billing-periods", response_model=ApiResponse[list[BillingPeriodResponse]])
async def list_billing_periods(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(staff_roles),
):
    service = FeeCatalogService(db, require_tenant_id(current_user))
    periods = await service.list_billing_periods()
    return ApiResponse(data=[BillingPeriodResponse.model_validate(p) for p in periods])


# --- Fee templates ---


@router.post(
    "/templates",
    response_model=ApiResponse[FeeTemplateResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_template(
    data: FeeTemplateCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_roles),
):
    """Create a fee template. Requires Admin role."""
    service = FeeCatalogService(db, require_tenant_id(current_user))
    template = await service.create_template(data, current_user.id)
    return ApiResponse(
        data=FeeTemplateResponse.model_validate(template),
        message="Fee template created successfully",
    )


@router.post(
    "/templates/bulk",
    response_model=ApiResponse[FeeTemplateBulkResult],
    status_code=status.HTTP_201_CREATED,
)
async def bulk_create_templates(
    data: FeeTemplateBulkCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_roles),
):
    """Create several templates; duplicates are skipped."""
    service = FeeCatalogService(db, require_tenant_id(current_user))
    result = await service.bulk_create_templates(data.templates, current_user.id)
    return ApiResponse(
        data=result,
        message=f"{result.created} fee templates created",
    )


@router.get("/templates", response_model=ApiResponse[list[FeeTemplateResponse]])
async def list_templates(
    billing_period_id: int | None = Query(None),
    applicable_grade: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(staff_roles),
):
    service = FeeCatalogService(db, require_tenant_id(current_user))
    templates = await service.list_templates(billing_period_id, applicable_grade)
    return ApiResponse(data=[FeeTemplateResponse.model_validate(t) for t in templates])


@router.get("/templates/{template_id}", response_model=ApiResponse[FeeTemplateResponse])
async def get_template(
    template_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(staff_roles),
):
    service = FeeCatalogService(db, require_tenant_id(current_user))
    template = await service.get_template(template_id)
    return ApiResponse(data=FeeTemplateResponse.model_validate(template))


@router.patch("/templates/{template_id}", response_model=ApiResponse[FeeTemplateResponse])
async def update_template(
    template_id: int,
    data: FeeTemplateUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_roles),
):
    """Update a fee template. Rejected once payments were recorded against it."""
    service = FeeCatalogService(db, require_tenant_id(current_user))
    template = await service.update_template(template_id, data, current_user.id)
    return ApiResponse(
        data=FeeTemplateResponse.model_validate(template),
        message="Fee template updated successfully",
    )


@router.delete("/templates/{template_id}", response_model=ApiResponse[None])
async def delete_template(
    template_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_roles),
):
    service = FeeCatalogService(db, require_tenant_id(current_user))
    await service.delete_template(template_id, current_user.id)
    return ApiResponse(data=None, message="Fee template deleted successfully")


# --- Scholarships ---


@router.post(
    "/scholarships",
    response_model=ApiResponse[ScholarshipResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_scholarship(
    data: ScholarshipCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_roles),
):
    service = FeeCatalogService(db, require_tenant_id(current_user))
    scholarship = await service.create_scholarship(data, current_user.id)
    return ApiResponse(
        data=ScholarshipResponse.model_validate(scholarship),
        message="Scholarship created successfully",
    )


@router.get("/scholarships", response_model=ApiResponse[list[ScholarshipResponse]])
async def list_scholarships(
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(staff_roles),
):
    service = FeeCatalogService(db, require_tenant_id(current_user))
    scholarships = await service.list_scholarships(include_inactive=include_inactive)
    return ApiResponse(data=[ScholarshipResponse.model_validate(s) for s in scholarships])


@router.patch("/scholarships/{scholarship_id}", response_model=ApiResponse[ScholarshipResponse])
async def update_scholarship(
    scholarship_id: int,
    data: ScholarshipUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_roles),
):
    service = FeeCatalogService(db, require_tenant_id(current_user))
    scholarship = await service.update_scholarship(scholarship_id, data, current_user.id)
    return ApiResponse(
        data=ScholarshipResponse.model_validate(scholarship),
        message="Scholarship updated successfully",
    )


@router.delete("/scholarships/{scholarship_id}", response_model=ApiResponse[None])
async def delete_scholarship(
    scholarship_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_roles),
):
    service = FeeCatalogService(db, require_tenant_id(current_user))
    await service.delete_scholarship(scholarship_id, current_user.id)
    return ApiResponse(data=None, message="Scholarship deleted successfully")


@router.put(
    "/students/{student_id}/scholarship",
    response_model=ApiResponse[StudentScholarshipResponse],
)
async def set_student_scholarship(
    student_id: int,
    data: StudentScholarshipUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_roles),
):
    service = FeeCatalogService(db, require_tenant_id(current_user))
    student = await service.set_student_scholarship(student_id, data.scholarship_id, current_user.id)
    return ApiResponse(
        data=StudentScholarshipResponse(student_id=student.id, scholarship_id=student.scholarship_id),
        message="Student scholarship updated",
    )


# --- Assignment ---


@router.post("/assign-class", response_model=ApiResponse[ClassAssignmentResult])
async def assign_fee_to_class(
    data: AssignFeeToClassRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_roles),
):
    """Assign a template to every active student of a class. Reports partial success."""
    service = FeeAssignmentService(db, require_tenant_id(current_user))
    result = await service.assign_fee_to_class(
        data.fee_template_id, data.class_id, data.due_date, current_user.id
    )
    return ApiResponse(
        data=result,
        message=(
            f"Assigned to {result.assigned} students, "
            f"{result.already_assigned} already assigned, {result.failed} failed"
        ),
    )


@router.get(
    "/students/{student_id}/obligations",
    response_model=ApiResponse[list[FeeObligationResponse]],
)
async def list_student_obligations(
    student_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(staff_roles),
):
    service = FeeAssignmentService(db, require_tenant_id(current_user))
    obligations = await service.list_student_obligations(student_id)
    return ApiResponse(data=[FeeObligationResponse.model_validate(o) for o in obligations])
