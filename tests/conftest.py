import pathlib
import sys
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI, Request
from sqlalchemy.orm import Session, sessionmaker

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from app.app_logging import init_logging
from app.conversations.notifier import Notifier
from app.conversations.repository import SqlAlchemyConversationStore
from app.conversations.service import ConversationService
from app.models import Attendant, Conversation, Tenant
from app.models.session import create_schema, get_engine, get_sessionmaker
from app.security import create_access_token, reset_jwt_settings_cache

# Tuesday, 13:00 UTC
FROZEN_NOW = datetime(2024, 3, 5, 13, 0, tzinfo=timezone.utc)


@dataclass
class FrozenClock:
    now: datetime = FROZEN_NOW

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@dataclass
class Factory:
    """Insert rows directly through the ORM so tests control every column."""

    session_factory: sessionmaker[Session]
    clock: FrozenClock

    def tenant(self, **overrides) -> uuid.UUID:
        slug = overrides.pop("slug", f"tenant-{uuid.uuid4().hex[:8]}")
        values = {"name": slug.title(), "slug": slug, "provider_instance": slug}
        values.update(overrides)
        with self.session_factory.begin() as session:
            tenant = Tenant(**values)
            session.add(tenant)
            session.flush()
            return tenant.id

    def attendant(self, tenant_id: uuid.UUID, **overrides) -> uuid.UUID:
        values = {
            "tenant_id": tenant_id,
            "name": f"Attendant {uuid.uuid4().hex[:6]}",
            "sector": "support",
            "presence": "online",
            "max_load": 5,
        }
        values.update(overrides)
        with self.session_factory.begin() as session:
            attendant = Attendant(**values)
            session.add(attendant)
            session.flush()
            return attendant.id

    def conversation(self, tenant_id: uuid.UUID, **overrides) -> uuid.UUID:
        values = {
            "tenant_id": tenant_id,
            "phone": f"55119{uuid.uuid4().int % 10**8:08d}",
            "sector": "support",
            "status": "active",
            "created_at": self.clock.now,
            "updated_at": self.clock.now,
            "stage_entered_at": self.clock.now,
        }
        values.update(overrides)
        with self.session_factory.begin() as session:
            conversation = Conversation(**values)
            session.add(conversation)
            session.flush()
            return conversation.id

    def load_of(self, attendant_id: uuid.UUID) -> int:
        with self.session_factory() as session:
            return session.get(Attendant, attendant_id).current_load


@pytest.fixture
def engine(tmp_path):
    engine = get_engine(f"sqlite+pysqlite:///{tmp_path / 'engine.db'}")
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return get_sessionmaker(engine=engine)


@pytest.fixture
def store(session_factory) -> SqlAlchemyConversationStore:
    return SqlAlchemyConversationStore(session_factory)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def factory(session_factory, clock) -> Factory:
    return Factory(session_factory=session_factory, clock=clock)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier(buffer_size=50, queue_size=10)


@pytest.fixture
def tenant_id(factory) -> uuid.UUID:
    return factory.tenant(slug="clinic")


@pytest.fixture
def service(store, tenant_id, notifier, clock) -> ConversationService:
    return ConversationService(
        store,
        tenant_id=tenant_id,
        notifier=notifier,
        clock=clock,
        sleep=lambda _delay: None,
    )


@pytest.fixture
def token_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TENANT_TOKEN_SECRET", "super-secret-key")
    monkeypatch.setenv("TENANT_TOKEN_AUDIENCE", "queue-engine")
    monkeypatch.setenv("TENANT_TOKEN_ISSUER", "auth.queue-engine")
    monkeypatch.setenv("TENANT_TOKEN_ALGORITHM", "HS256")
    reset_jwt_settings_cache()
    yield
    reset_jwt_settings_cache()


@dataclass
class AuthHeaders:
    tenant_id: uuid.UUID

    def for_user(self, user_id: uuid.UUID, *roles: str, tenant_id: uuid.UUID | None = None) -> dict[str, str]:
        token = create_access_token(tenant_id or self.tenant_id, user_id, roles or ("attendant",))
        return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth(token_env, tenant_id) -> AuthHeaders:
    return AuthHeaders(tenant_id=tenant_id)


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app
