"""API endpoints for Payments module."""

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import get_current_user, require_roles, require_tenant_id
from src.core.auth.models import User, UserRole
from src.core.database.session import get_db
from src.core.notifications import NotificationQueue, get_notification_queue
from src.integrations.gateway.client import GatewayClient, get_gateway_client
from src.modules.payments.models import PaymentMethod, PaymentStatus
from src.modules.payments.schemas import (
    PaymentCreate,
    PaymentFilters,
    PaymentResponse,
    PaymentVoid,
)
from src.modules.payments.service import PaymentService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post(
    "",
    response_model=ApiResponse[PaymentResponse],
    status_code=status.HTTP_201_CREATED,
    responses={202: {"description": "Mobile money collection requested; awaiting the gateway"}},
)
async def create_payment(
    data: PaymentCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
    notifier: NotificationQueue = Depends(get_notification_queue),
    current_user: User = Depends(get_current_user),
):
    """
    Record a payment.

    Cash and bank deposits are completed immediately (201). Mobile money is
    sent to the gateway and answered with 202 while the payer authorises it;
    a rejected initiation is answered with 400 and the payment is FAILED.
    """
    service = PaymentService(db, require_tenant_id(current_user), gateway=gateway, notifier=notifier)
    payment, awaiting_gateway = await service.create_payment(data, current_user)
    if awaiting_gateway:
        response.status_code = status.HTTP_202_ACCEPTED
        message = "Payment initiated. Authorise it on your phone."
    else:
        message = "Payment recorded successfully"
    return ApiResponse(data=PaymentResponse.model_validate(payment), message=message)


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[PaymentResponse]],
)
async def list_payments(
    student_id: int | None = Query(None),
    status: PaymentStatus | None = Query(None),
    method: PaymentMethod | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.BURSAR)),
):
    """List payments of the current school with optional filters."""
    service = PaymentService(db, require_tenant_id(current_user))
    filters = PaymentFilters(
        student_id=student_id, status=status, method=method, page=page, limit=limit
    )
    payments, total = await service.list_payments(filters)
    return ApiResponse(
        data=PaginatedResponse.create(
            items=[PaymentResponse.model_validate(p) for p in payments],
            total=total,
            page=page,
            limit=limit,
        )
    )


@router.get("/{payment_id}", response_model=ApiResponse[PaymentResponse])
async def get_payment(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Get a payment. Parents only see payments for students they may pay for."""
    service = PaymentService(db, require_tenant_id(current_user))
    payment = await service.get_payment(payment_id)
    if not current_user.is_staff:
        service.authorize_payer(current_user, payment.student)
    return ApiResponse(data=PaymentResponse.model_validate(payment))


@router.put("/{payment_id}/void", response_model=ApiResponse[PaymentResponse])
async def void_payment(
    payment_id: int,
    data: PaymentVoid,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.BURSAR)),
):
    """Cancel a payment. A second void of the same payment is a 409."""
    service = PaymentService(db, require_tenant_id(current_user))
    payment = await service.void_payment(payment_id, data.reason, current_user)
    return ApiResponse(data=PaymentResponse.model_validate(payment), message="Payment voided")
