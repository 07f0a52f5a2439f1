from collections.abc import AsyncGenerator
from dataclasses import dataclass
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.core.auth.jwt import create_access_token
from src.core.auth.models import User, UserRole
from src.core.database.base import Base
from src.core.database import get_db
from src.core.exceptions import GatewayError
from src.core.notifications import Notification, NotificationQueue, get_notification_queue
from src.integrations.gateway.client import CollectionHandle, get_gateway_client
from src.main import app
from src.modules.students.models import SchoolClass, Student, StudentStatus
from src.modules.subscriptions.models import SubscriptionPlan
from src.modules.tenants.models import Tenant, TenantStatus

# In-memory SQLite, one database per test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeGateway:
    """
    Records collection requests. Set ``error`` to make the next ones fail with
    a GatewayError, or ``crash`` to raise an arbitrary exception instead.
    """

    def __init__(self):
        self.calls: list[dict] = []
        self.error: str | None = None
        self.crash: Exception | None = None

    async def initiate_collection(self, amount, phone, reference, operator) -> CollectionHandle:
        self.calls.append(
            {"amount": amount, "phone": phone, "reference": reference, "operator": operator}
        )
        if self.crash is not None:
            raise self.crash
        if self.error:
            raise GatewayError(self.error)
        return CollectionHandle(
            reference=reference, provider_reference=f"LEN-{len(self.calls):04d}", status="pending"
        )


class RecordingSender:
    def __init__(self, failures: int = 0):
        self.sent: list[Notification] = []
        self.attempts = 0
        self.failures = failures

    async def send(self, notification: Notification) -> bool:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("smtp down")
        self.sent.append(notification)
        return True


class BrokenNotifier:
    """A queue whose enqueue blows up, as if the notification backend were gone."""

    def __init__(self):
        self.calls = 0

    def enqueue(self, notification: Notification) -> str:
        self.calls += 1
        raise RuntimeError("notification queue unavailable")


@dataclass
class School:
    tenant: Tenant
    admin: User
    bursar: User
    parent: User
    school_class: SchoolClass
    students: list[Student]


@pytest.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Let SQLAlchemy drive BEGIN so savepoints behave as on PostgreSQL
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
async def notifier(sender: RecordingSender) -> AsyncGenerator[NotificationQueue, None]:
    queue = NotificationQueue(sender=sender, delay=0, max_retries=2, retry_delay=0)
    yield queue
    await queue.stop()


@pytest.fixture
async def client(
    db_session: AsyncSession, gateway: FakeGateway, notifier: NotificationQueue
) -> AsyncGenerator[AsyncClient, None]:
    """Test HTTP client with database, gateway and notifications overridden."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_client] = lambda: gateway
    app.dependency_overrides[get_notification_queue] = lambda: notifier

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


async def make_tenant(db: AsyncSession, name: str = "Greenfield Academy", **kwargs) -> Tenant:
    kwargs.setdefault("status", TenantStatus.TRIAL.value)
    tenant = Tenant(name=name, email=f"office@{name.split()[0].lower()}.test", **kwargs)
    db.add(tenant)
    await db.flush()
    return tenant


async def make_user(
    db: AsyncSession, tenant: Tenant | None, role: UserRole, email: str, full_name: str = "Test User"
) -> User:
    user = User(
        tenant_id=tenant.id if tenant else None,
        email=email,
        full_name=full_name,
        phone="+260971000000",
        role=role.value,
        is_active=True,
    )
    db.add(user)
    await db.flush()
    return user


async def make_student(
    db: AsyncSession,
    tenant: Tenant,
    school_class: SchoolClass | None,
    first_name: str,
    last_name: str = "Banda",
    **kwargs,
) -> Student:
    kwargs.setdefault("status", StudentStatus.ACTIVE.value)
    student = Student(
        tenant_id=tenant.id,
        class_id=school_class.id if school_class else None,
        first_name=first_name,
        last_name=last_name,
        **kwargs,
    )
    db.add(student)
    await db.flush()
    return student


@pytest.fixture
async def school(db_session: AsyncSession) -> School:
    """A tenant with staff, a linked parent and a class of three active students."""
    tenant = await make_tenant(db_session)
    admin = await make_user(db_session, tenant, UserRole.ADMIN, "admin@greenfield.test", "Grace Admin")
    bursar = await make_user(db_session, tenant, UserRole.BURSAR, "bursar@greenfield.test", "Ben Bursar")
    parent = await make_user(db_session, tenant, UserRole.PARENT, "parent@greenfield.test", "Mary Phiri")

    school_class = SchoolClass(tenant_id=tenant.id, name="Grade 5 Blue", grade_level="5")
    db_session.add(school_class)
    await db_session.flush()

    students = [
        await make_student(
            db_session,
            tenant,
            school_class,
            "Chipo",
            "Phiri",
            parent_id=parent.id,
            guardian_email="parent@greenfield.test",
            guardian_phone="+260971111111",
        ),
        await make_student(db_session, tenant, school_class, "Daliso", "Mwale"),
        await make_student(db_session, tenant, school_class, "Esther", "Zulu"),
    ]
    await db_session.commit()
    return School(
        tenant=tenant,
        admin=admin,
        bursar=bursar,
        parent=parent,
        school_class=school_class,
        students=students,
    )


async def make_plan(
    db: AsyncSession,
    tier: str = "PROFESSIONAL",
    monthly_price: str = "600.00",
    yearly_price: str = "6000.00",
    **kwargs,
) -> SubscriptionPlan:
    kwargs.setdefault("max_students", 1000)
    kwargs.setdefault("max_teachers", 60)
    kwargs.setdefault("max_users", 80)
    kwargs.setdefault("max_classes", 40)
    kwargs.setdefault("features", ["fees", "mobile_money"])
    plan = SubscriptionPlan(
        tier=tier,
        name=tier.title(),
        monthly_price=Decimal(monthly_price),
        yearly_price=Decimal(yearly_price),
        **kwargs,
    )
    db.add(plan)
    await db.commit()
    return plan
