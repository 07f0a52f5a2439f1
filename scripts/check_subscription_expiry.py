#!/usr/bin/env python3
"""
Daily subscription housekeeping.

Moves tenants whose paid period or trial has ended to EXPIRED, then sends a
reminder to the school admins of every tenant expiring within the window.

Usage:
    python scripts/check_subscription_expiry.py             # 7-day window
    python scripts/check_subscription_expiry.py --days 3
    python scripts/check_subscription_expiry.py --dry-run   # report only
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add the project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import select

from src.core.auth.models import User, UserRole
from src.core.config import settings
from src.core.database.session import async_session
from src.core.logging import configure_logging
from src.core.notifications import Notification, notification_queue
from src.modules.subscriptions.service import SubscriptionService

logger = logging.getLogger("scripts.check_subscription_expiry")


def _reminder(tenant, admin: User, now: datetime) -> Notification:
    ends_at = tenant.expiry_date
    if ends_at.tzinfo is None:
        ends_at = ends_at.replace(tzinfo=timezone.utc)
    days_left = max((ends_at - now).days, 0)
    what = "trial" if tenant.status == "TRIAL" else "subscription"
    return Notification(
        tenant_id=tenant.id,
        recipient=admin.email,
        phone=admin.phone,
        subject=f"Your {what} ends in {days_left} day(s)",
        body=(
            f"Dear {admin.full_name},\n\n"
            f"The {what} of {tenant.name} ends on {ends_at:%d %B %Y}. "
            "Renew from the billing page to keep access for your staff and parents."
        ),
        sms_body=f"{tenant.name}: {what} ends in {days_left} day(s). Renew to keep access.",
    )


async def run(days: int, dry_run: bool) -> None:
    now = datetime.now(timezone.utc)
    async with async_session() as session:
        service = SubscriptionService(session)

        if dry_run:
            expiring = await service.find_expiring(days=days, now=now)
            logger.info("dry run: %d tenants expire within %d days", len(expiring), days)
            for tenant in expiring:
                logger.info("  tenant %s (%s) ends %s", tenant.id, tenant.name, tenant.expiry_date)
            return

        expired = await service.expire_lapsed_subscriptions(now=now)
        logger.info("expired %d tenants", expired)

        expiring = await service.find_expiring(days=days, now=now)
        for tenant in expiring:
            admins = (
                await session.execute(
                    select(User).where(
                        User.tenant_id == tenant.id,
                        User.role == UserRole.ADMIN.value,
                        User.is_active.is_(True),
                    )
                )
            ).scalars().all()
            if not admins:
                logger.warning("tenant %s expires soon but has no active admin", tenant.id)
            for admin in admins:
                notification_queue.enqueue(_reminder(tenant, admin, now))
        logger.info("queued reminders for %d tenants", len(expiring))

    await notification_queue.drain()


def main() -> None:
    parser = argparse.ArgumentParser(description="Expire lapsed subscriptions and send reminders")
    parser.add_argument("--days", type=int, default=7, help="reminder window in days")
    parser.add_argument("--dry-run", action="store_true", help="report without changing anything")
    args = parser.parse_args()

    configure_logging(settings.log_level)
    asyncio.run(run(args.days, args.dry_run))


if __name__ == "__main__":
    main()
