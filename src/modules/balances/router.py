"""API endpoints for balances."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import get_current_user, require_roles, require_tenant_id
from src.core.auth.models import User, UserRole
from src.core.database.session import get_db
from src.core.notifications import NotificationQueue, get_notification_queue
from src.modules.balances.schemas import (
    FeeReminderRequest,
    FeeReminderResult,
    OutstandingStudent,
    StudentBalance,
    StudentStatement,
    TenantSummary,
)
from src.modules.balances.service import BalanceService
from src.modules.fees.service import get_tenant_student
from src.modules.payments.service import PaymentService
from src.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/balances", tags=["Balances"])


async def _check_student_access(db: AsyncSession, user: User, tenant_id: int, student_id: int) -> None:
    """Parents see only the students they may pay for."""
    if user.is_staff:
        return
    student = await get_tenant_student(db, tenant_id, student_id)
    PaymentService(db, tenant_id).authorize_payer(user, student)


@router.get("/students/{student_id}", response_model=ApiResponse[StudentBalance])
async def get_student_balance(
    student_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    tenant_id = require_tenant_id(current_user)
    await _check_student_access(db, current_user, tenant_id, student_id)
    balance = await BalanceService(db, tenant_id).student_balance(student_id)
    return ApiResponse(data=balance)


@router.get("/students/{student_id}/statement", response_model=ApiResponse[StudentStatement])
async def get_student_statement(
    student_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    tenant_id = require_tenant_id(current_user)
    await _check_student_access(db, current_user, tenant_id, student_id)
    statement = await BalanceService(db, tenant_id).student_statement(student_id)
    return ApiResponse(data=statement)


@router.get("/summary", response_model=ApiResponse[TenantSummary])
async def get_tenant_summary(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.BURSAR)),
):
    """Revenue, outstanding fees and overdue students of the school."""
    summary = await BalanceService(db, require_tenant_id(current_user)).tenant_summary()
    return ApiResponse(data=summary)


@router.get("/outstanding", response_model=ApiResponse[list[OutstandingStudent]])
async def list_students_with_outstanding_fees(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.BURSAR)),
):
    """Reminder preview: active students who still owe, with the earliest due date."""
    students = await BalanceService(db, require_tenant_id(current_user)).students_with_outstanding_fees()
    return ApiResponse(data=students)


@router.post("/reminders", response_model=ApiResponse[FeeReminderResult])
async def send_fee_reminders(
    data: FeeReminderRequest | None = None,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationQueue = Depends(get_notification_queue),
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.BURSAR)),
):
    """Queue a reminder to the guardian of every student with an outstanding balance."""
    student_ids = data.student_ids if data else None
    result = await BalanceService(db, require_tenant_id(current_user)).send_fee_reminders(
        notifier, student_ids=student_ids
    )
    return ApiResponse(data=result, message=f"Fee reminders queued for {result.sent} students")
