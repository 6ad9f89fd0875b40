"""
Pytest Configuration and Fixtures.

Every test gets its own file-backed SQLite database. The application is
built with ``create_application`` pointed at that database and at a fake
push gateway; the notification dispatcher is started by the fixtures because
ASGITransport does not run the lifespan.
"""
import os

# Test environment variables
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ["SENTRY_DSN"] = ""
os.environ["PAYMENT_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["PUSH_RETRY_BACKOFF_SECONDS"] = "0"
os.environ["SSE_HEARTBEAT_SECONDS"] = "0.2"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"

import uuid  # noqa: E402
from dataclasses import dataclass, field  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

import src.models  # noqa: E402,F401  registers every mapped table
from src.core.database import get_db  # noqa: E402
from src.core.locks import KeyedLocks  # noqa: E402
from src.core.models import Base  # noqa: E402
from src.core.security import create_access_token  # noqa: E402
from src.main import create_application  # noqa: E402
from src.modules.auth.models import User, UserRole  # noqa: E402
from src.modules.bids.service import BidLedger  # noqa: E402
from src.modules.jobs.schemas import JobCreate  # noqa: E402
from src.modules.jobs.service import JobLifecycleManager  # noqa: E402
from src.modules.notifications.dispatcher import NotificationDispatcher  # noqa: E402
from src.modules.notifications.events import PushContent  # noqa: E402
from src.modules.notifications.push import PushResult  # noqa: E402
from src.modules.notifications.sessions import SessionRegistry  # noqa: E402

WEBHOOK_HEADERS = {"X-Payment-Webhook-Secret": "test-webhook-secret"}


@dataclass
class FakePushGateway:
    """Records every push; ``outcomes`` scripts the next results (exceptions are raised)."""
    enabled: bool = True
    outcomes: list = field(default_factory=list)
    sent: list[tuple[list[str], PushContent]] = field(default_factory=list)

    async def send(self, tokens: list[str], content: PushContent) -> PushResult:
        self.sent.append((list(tokens), content))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return PushResult(success_count=len(tokens))


# === Database ===

@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sparkbid.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


# === Notifications ===

@pytest.fixture
def push() -> FakePushGateway:
    return FakePushGateway()


@pytest.fixture
def sessions() -> SessionRegistry:
    return SessionRegistry(queue_size=10)


@pytest.fixture
async def dispatcher(sessions, push, session_maker):
    dispatcher = NotificationDispatcher(sessions, push, session_maker, max_push_attempts=3, retry_backoff=0)
    await dispatcher.start()
    yield dispatcher
    await dispatcher.stop()


@pytest.fixture
def locks() -> KeyedLocks:
    return KeyedLocks()


@pytest.fixture
def jobs(db, locks, dispatcher) -> JobLifecycleManager:
    return JobLifecycleManager(db, locks, dispatcher)


@pytest.fixture
def ledger(db, locks, dispatcher, jobs) -> BidLedger:
    return BidLedger(db, locks, dispatcher, jobs)


# === Seed helpers ===
# Each helper works in its own session and returns detached objects, so a
# rollback in the session under test never expires them.

@pytest.fixture
def make_user(session_maker):
    async def _make_user(
        role: UserRole = UserRole.CITIZEN,
        city: str = "Istanbul",
        category: str = "elektrik",
        is_available: bool = True,
    ) -> User:
        user = User(
            email=f"{role.value}-{uuid.uuid4().hex[:8]}@example.com",
            full_name=f"Test {role.value.title()}",
            role=role.value,
            city=city,
            service_category=category,
            is_available=is_available,
        )
        async with session_maker() as session:
            session.add(user)
            await session.commit()
            await session.refresh(user)
        return user

    return _make_user


@pytest.fixture
async def citizen(make_user) -> User:
    return await make_user(UserRole.CITIZEN)


@pytest.fixture
async def electrician(make_user) -> User:
    return await make_user(UserRole.ELECTRICIAN)


@pytest.fixture
async def other_electrician(make_user) -> User:
    return await make_user(UserRole.ELECTRICIAN)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def job_payload(title: str = "Sigorta atıyor", city: str = "Istanbul", **overrides) -> dict:
    payload = {
        "title": title,
        "description": "Mutfakta priz kullanınca sigorta atıyor.",
        "category": "elektrik",
        "urgency": "high",
        "estimated_budget": "750.00",
        "location": {"address": "Moda Cad. 12", "city": city, "district": "Kadıköy"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def post_job(session_maker, locks, dispatcher):
    async def _post_job(owner: User, **overrides):
        async with session_maker() as session:
            manager = JobLifecycleManager(session, locks, dispatcher)
            return await manager.create_job(owner, JobCreate.model_validate(job_payload(**overrides)))

    return _post_job


@pytest.fixture
def place_bid(session_maker, locks, dispatcher):
    async def _place_bid(job, bidder: User, amount: str = "500.00"):
        async with session_maker() as session:
            return await BidLedger(session, locks, dispatcher).submit(
                job.id, bidder, Decimal(amount), 3, "Yarın sabah gelebilirim."
            )

    return _place_bid


@pytest.fixture
def accept_bid(session_maker, locks, dispatcher):
    async def _accept_bid(job, bid, owner: User):
        async with session_maker() as session:
            return await BidLedger(session, locks, dispatcher).accept(job.id, bid.id, owner)

    return _accept_bid


# === HTTP ===

@pytest.fixture
async def app(session_maker, push):
    application = create_application(session_maker=session_maker, push_gateway=push)

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db] = override_get_db
    await application.state.dispatcher.start()
    yield application
    await application.state.dispatcher.stop()


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
