import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./admission_engine_test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("SCHOOL_CODE", "SCH")
os.environ.setdefault("SCHOOL_NAME", "Everest Secondary School")

import uuid
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, List, Tuple

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from admission_engine.api.v1.admissions.dependencies import get_admission_engine
from admission_engine.api.v1.admissions.service import AdmissionWorkflowEngine
from admission_engine.auth import models as auth_models  # noqa: F401 - registers users/roles tables
from admission_engine.auth.models import Role, User
from admission_engine.auth.security import create_access_token, hash_password
from admission_engine.core import models  # noqa: F401 - registers workflow tables
from admission_engine.core.config import settings
from admission_engine.db.session import Base, get_db
from admission_engine.integrations.documents import DocumentGenerationError, DocumentGenerator
from admission_engine.integrations.notifications import NotificationDispatcher
from admission_engine.main import app


FIXED_NOW = datetime(2024, 4, 15, 10, 30)


class RecordingNotifier(NotificationDispatcher):
    """Keeps every message; raises when fail is set."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []
        self.fail = False

    async def send(self, destination: str, template_kind: str, payload: Dict[str, Any]) -> bool:
        if self.fail:
            raise RuntimeError("SMS gateway unreachable")
        self.sent.append((destination, template_kind, payload))
        return True

    def kinds(self) -> List[str]:
        return [kind for _, kind, _ in self.sent]


class FakeDocumentGenerator(DocumentGenerator):
    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.fail = False

    async def generate_offer_letter(self, payload: Dict[str, Any]) -> str:
        self.calls.append(payload)
        if self.fail:
            raise DocumentGenerationError("renderer offline")
        return f"https://docs.example.test/offers/{payload['temporary_id']}.pdf"


@pytest.fixture()
async def db_engine(tmp_path):
    """File-backed SQLite database per test, so separate sessions see each other's commits."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'admissions.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine) -> async_sessionmaker:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def documents() -> FakeDocumentGenerator:
    return FakeDocumentGenerator()


@pytest.fixture()
def workflow(notifier, documents) -> AdmissionWorkflowEngine:
    return AdmissionWorkflowEngine(notifier, documents, config=settings, clock=lambda: FIXED_NOW)


@pytest.fixture()
async def staff_user(db_session: AsyncSession) -> User:
    user = User(
        id=uuid.uuid4(),
        username="registrar",
        full_name="Sita Registrar",
        password_hash=hash_password("Registrar@123"),
        role="SUPER_ADMIN",
        status="ACTIVE",
        source="SYSTEM",
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture()
async def client(session_factory, workflow, staff_user) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app, authenticated as a SUPER_ADMIN."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_admission_engine] = lambda: workflow
    token = create_access_token(subject={"user_id": str(staff_user.id), "role": staff_user.role})
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {token}"},
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture()
async def limited_token(db_session: AsyncSession) -> str:
    """Token for a user whose role may read admissions but not change them."""
    db_session.add(Role(name="RECEPTION", permissions={"admissions": {"read": True}}))
    user = User(
        id=uuid.uuid4(),
        username="reception",
        full_name="Front Desk",
        password_hash=hash_password("Reception@123"),
        role="RECEPTION",
        status="ACTIVE",
        source="SYSTEM",
    )
    db_session.add(user)
    await db_session.commit()
    return create_access_token(subject={"user_id": str(user.id), "role": "RECEPTION"})
