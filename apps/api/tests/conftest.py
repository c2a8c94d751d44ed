"""
Test configuration and fixtures.

Provides:
- A throwaway SQLite database (schema created and dropped per test)
- Account factory and JWT token minting for authenticated tests
- HTTPX AsyncClient bound to the app with the test session
- A ConnectionManager with fake sockets for realtime assertions
"""
import json
import os
import tempfile
import uuid
from dataclasses import dataclass, field
from typing import AsyncGenerator, Callable, Generator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

_DB_DIR = tempfile.mkdtemp(prefix="dealbridge-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["TESTING"] = "1"
os.environ["RESEND_API_KEY"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""

from app.main import app
from app.core.config import settings
from app.core.deps import get_db
from app.core.rate_limit import event_limiter, limiter
from app.core.security import create_session_token
from app.core.websocket import ConnectionManager
from app.db.base import Base
from app.db.enums import Role, capabilities_for
from app.db.models import Account
from app.db.session import engine, SessionLocal
from app.schemas.auth import ActorSession


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def _schema() -> Generator[None, None, None]:
    """Fresh schema per test; services commit, so there is no outer transaction to roll back."""
    Base.metadata.create_all(bind=engine)
    event_limiter.reset()
    limiter.reset()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def make_account(db: Session) -> Callable[..., Account]:
    """Factory for accounts with a unique email."""

    def _make(role: Role = Role.FOUNDER, name: str | None = None, phone: str | None = None) -> Account:
        suffix = uuid.uuid4().hex[:8]
        account = Account(
            role=role.value,
            display_name=name or f"{role.value.title()} {suffix}",
            email=f"{role.value}-{suffix}@test.com",
            phone=phone,
        )
        db.add(account)
        db.commit()
        db.refresh(account)
        return account

    return _make


def actor_for(account: Account) -> ActorSession:
    role = Role(account.role)
    return ActorSession(account_id=account.id, role=role, capabilities=capabilities_for(role))


def token_for(account: Account) -> str:
    return create_session_token(
        account_id=account.id,
        role=account.role,
        token_version=account.token_version,
    )


@dataclass
class Party:
    """An account with its actor session and token."""
    account: Account
    actor: ActorSession
    token: str

    @property
    def id(self) -> uuid.UUID:
        return self.account.id


@pytest.fixture(scope="function")
def make_party(make_account) -> Callable[..., Party]:
    def _make(role: Role = Role.FOUNDER, **kwargs) -> Party:
        account = make_account(role, **kwargs)
        return Party(account=account, actor=actor_for(account), token=token_for(account))

    return _make


@pytest.fixture
def founder(make_party) -> Party:
    return make_party(Role.FOUNDER, name="Ada Founder")


@pytest.fixture
def investor(make_party) -> Party:
    return make_party(Role.INVESTOR, name="Ivan Investor", phone="+15550001111")


@pytest.fixture
def admin(make_party) -> Party:
    return make_party(Role.ADMIN, name="Alice Admin")


@pytest.fixture
def superadmin(make_party) -> Party:
    return make_party(Role.SUPERADMIN, name="Sam Super")


# =============================================================================
# Realtime Fixtures
# =============================================================================

@dataclass(eq=False)
class FakeWebSocket:
    """Stands in for a Starlette WebSocket inside ConnectionManager."""
    sent: list = field(default_factory=list)
    accepted: bool = False
    fail: bool = False

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(data))

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]


@pytest.fixture
def transport() -> ConnectionManager:
    return ConnectionManager()


@pytest.fixture
def connect(transport) -> Callable:
    async def _connect(party: Party) -> FakeWebSocket:
        ws = FakeWebSocket()
        await transport.connect(ws, party.id, party.actor.capabilities)
        return ws

    return _connect


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    Create unauthenticated AsyncClient for testing public endpoints.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def authed() -> Callable[[Party], dict]:
    """Bearer headers for a party."""

    def _headers(party: Party) -> dict:
        return {"Authorization": f"Bearer {party.token}"}

    return _headers


@pytest.fixture
def budget() -> int:
    return settings.MESSAGE_BUDGET


# =============================================================================
# Workflow Fixtures
# =============================================================================

INTEREST_PAYLOAD = {"product_id": "prod-42", "message": "Interested in your Series A round"}
COMMUNICATION_PAYLOAD = {
    "subject": "Intro",
    "message": "Would like to discuss your roadmap.",
    "request_type": "message",
    "nda_agreed": True,
}
CALL_PAYLOAD = {
    "topic": "Diligence call",
    "message": "30 minutes on unit economics",
    "proposed_date": "2030-01-15T15:00:00+00:00",
}


@pytest.fixture
def payloads() -> dict:
    from app.db.enums import MediationKind

    return {
        MediationKind.PRODUCT_INTEREST: dict(INTEREST_PAYLOAD),
        MediationKind.COMMUNICATION: dict(COMMUNICATION_PAYLOAD),
        MediationKind.CALL: dict(CALL_PAYLOAD),
    }


@pytest.fixture
def open_channel(db: Session, investor: Party, founder: Party, admin: Party) -> Callable:
    """Run a communication request to forwarded; returns the conversation id."""
    from app.db.enums import MediationKind, MediationStatus
    from app.services import mediation_service

    def _open():
        request = mediation_service.submit_request(
            db, investor.actor, MediationKind.COMMUNICATION, founder.id, dict(COMMUNICATION_PAYLOAD)
        )
        request = mediation_service.transition(
            db,
            admin.actor,
            request.id,
            MediationStatus.FORWARDED_TO_COUNTERPARTY,
            MediationStatus.SUBMITTED,
            admin_edited_payload="Investor would like to chat about the roadmap",
        )
        return request.conversation_id

    return _open
