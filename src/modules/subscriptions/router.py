"""API endpoints for subscription billing."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import get_current_user, require_roles, require_tenant_id
from src.core.auth.models import User, UserRole
from src.core.database.session import get_db
from src.integrations.gateway.client import GatewayClient, get_gateway_client
from src.modules.subscriptions.schemas import (
    MobileMoneyUpgradeRequest,
    PaymentProofRequest,
    PlanResponse,
    SubscriptionPaymentResponse,
    SubscriptionStatusResponse,
    UpgradeRequest,
)
from src.modules.subscriptions.service import SubscriptionService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])

school_admin = require_roles(UserRole.ADMIN)


@router.get("/plans", response_model=ApiResponse[list[PlanResponse]])
async def list_plans(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    plans = await SubscriptionService(db).list_plans()
    return ApiResponse(data=[PlanResponse.model_validate(p) for p in plans])


@router.get("/status", response_model=ApiResponse[SubscriptionStatusResponse])
async def get_subscription_status(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(school_admin),
):
    service = SubscriptionService(db, require_tenant_id(current_user))
    return ApiResponse(data=await service.get_status())


@router.get(
    "/payments",
    response_model=ApiResponse[PaginatedResponse[SubscriptionPaymentResponse]],
)
async def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(school_admin),
):
    service = SubscriptionService(db, require_tenant_id(current_user))
    payments, total = await service.payment_history(page=page, limit=limit)
    return ApiResponse(
        data=PaginatedResponse.create(
            items=[SubscriptionPaymentResponse.model_validate(p) for p in payments],
            total=total,
            page=page,
            limit=limit,
        )
    )


@router.post(
    "/upgrade",
    response_model=ApiResponse[SubscriptionPaymentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def initiate_upgrade(
    data: UpgradeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(school_admin),
):
    """Open a manual (bank transfer) payment for a plan."""
    service = SubscriptionService(db, require_tenant_id(current_user))
    payment = await service.initiate_upgrade(data.plan_id, data.billing_cycle, current_user.id)
    return ApiResponse(
        data=SubscriptionPaymentResponse.model_validate(payment),
        message="Upgrade initiated. Submit proof of payment to continue.",
    )


@router.post(
    "/pay-mobile-money",
    response_model=ApiResponse[SubscriptionPaymentResponse],
    status_code=status.HTTP_202_ACCEPTED,
)
async def pay_with_mobile_money(
    data: MobileMoneyUpgradeRequest,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
    current_user: User = Depends(school_admin),
):
    """Charge a plan to a phone. 202 while the payer authorises, 400 if the gateway refuses."""
    service = SubscriptionService(db, require_tenant_id(current_user), gateway=gateway)
    payment = await service.pay_with_mobile_money(
        data.plan_id,
        data.billing_cycle,
        data.operator.value,
        data.phone_number.strip(),
        current_user.id,
    )
    return ApiResponse(
        data=SubscriptionPaymentResponse.model_validate(payment),
        message="Payment initiated. Authorise it on your phone.",
    )


@router.post(
    "/payments/{payment_id}/proof",
    response_model=ApiResponse[SubscriptionPaymentResponse],
)
async def submit_payment_proof(
    payment_id: int,
    data: PaymentProofRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(school_admin),
):
    service = SubscriptionService(db, require_tenant_id(current_user))
    payment = await service.submit_payment_proof(payment_id, data.transaction_reference, data.notes)
    return ApiResponse(
        data=SubscriptionPaymentResponse.model_validate(payment),
        message="Payment proof submitted successfully. Administrative approval pending.",
    )


@router.post(
    "/payments/{payment_id}/confirm",
    response_model=ApiResponse[SubscriptionPaymentResponse],
)
async def confirm_payment(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(UserRole.PLATFORM_ADMIN)),
):
    """Manual override: complete the payment and activate the plan."""
    service = SubscriptionService(db)
    payment = await service.confirm_payment(payment_id, current_user.id)
    return ApiResponse(
        data=SubscriptionPaymentResponse.model_validate(payment),
        message="Payment confirmed and subscription activated",
    )


@router.post("/cancel", response_model=ApiResponse[None])
async def cancel_subscription(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(school_admin),
):
    service = SubscriptionService(db, require_tenant_id(current_user))
    await service.cancel_subscription(current_user.id)
    return ApiResponse(
        data=None,
        message="Subscription cancelled. You will retain access until the end of your current period.",
    )
