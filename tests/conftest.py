"""Shared fixtures: per-test SQLite database, seeded tenant, fake Google/SMTP clients."""

import os

# Must be set before crm.db.database builds its engine
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret"

import json
import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from crm.api.deps import get_gmail_client, get_identity_verifier, get_system_mailer
from crm.auth.service import issue_token
from crm.config import get_settings
from crm.core.contact_states import ContactStatus
from crm.core.errors import AuthError
from crm.db.database import get_session, init_db
from crm.db.models import Company, Contact, Employee, MailboxToken
from crm.main import app


# ── Fakes ─────────────────────────────────────────────────────────────────────

class FakeMailer:
    """Records system emails instead of talking to SMTP."""

    def __init__(self):
        self.sent = []

    def send(self, to, subject, html):
        self.sent.append({"to": to, "subject": subject, "html": html})
        return True


class FakeCredentials:
    def __init__(self, data):
        self.data = data

    def to_json(self):
        return json.dumps(self.data)


class FakeGmail:
    """Stands in for GmailClient: no OAuth round trips, no Gmail API."""

    def __init__(self):
        self.sent = []
        self.fail_with = None

    def authorization_url(self, state):
        return f"https://accounts.google.test/o/oauth2/auth?state={state}"

    def exchange_code(self, code):
        if code == "bad-code":
            raise ValueError("invalid_grant")
        return json.dumps({"token": f"access-{code}", "refresh_token": f"refresh-{code}"})

    def load_credentials(self, credentials_json):
        return FakeCredentials(json.loads(credentials_json))

    def send(self, creds, raw):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(raw)
        return {"message_id": f"msg-{len(self.sent)}", "thread_id": "thread-1"}


class FakeVerifier:
    """Maps fake ID tokens to Google identities."""

    def __init__(self):
        self.identities = {}

    def verify(self, token):
        if token not in self.identities:
            raise AuthError("Invalid Google token", code="INVALID_GOOGLE_TOKEN")
        return self.identities[token]


# ── Database ──────────────────────────────────────────────────────────────────

@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'crm.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fresh_db(session_factory):
    """Open a new session to observe what other sessions committed."""
    return session_factory


# ── Seed data ─────────────────────────────────────────────────────────────────

@pytest.fixture
async def company(db):
    company = Company(id=uuid.uuid4(), name="Acme Corp")
    db.add(company)
    await db.commit()
    return company


@pytest.fixture
async def employee(db, company):
    employee = Employee(
        id=uuid.uuid4(),
        company_id=company.id,
        name="Dana Admin",
        email="dana@acme.test",
        role="ADMIN",
        invitation_status="ACTIVE",
    )
    db.add(employee)
    await db.commit()
    return employee


@pytest.fixture
async def seller(db, company, employee):
    seller = Employee(
        id=uuid.uuid4(),
        company_id=company.id,
        name="Sam Seller",
        email="sam@acme.test",
        role="EMPLOYEE",
        invitation_status="ACTIVE",
        invited_by=employee.id,
    )
    db.add(seller)
    await db.commit()
    return seller


@pytest.fixture
async def other_company(db):
    company = Company(id=uuid.uuid4(), name="Globex")
    db.add(company)
    await db.commit()
    return company


@pytest.fixture
def make_contact(db, company, employee):
    async def _make(status=ContactStatus.LEAD, company_id=None, name="Chris Prospect", email=None):
        contact = Contact(
            id=uuid.uuid4(),
            company_id=company_id or company.id,
            assigned_employee_id=employee.id,
            name=name,
            email=email or f"{uuid.uuid4().hex[:8]}@client.test",
            status=ContactStatus(status).value,
            temperature="COLD",
            interest_score=0,
            tracking_token=uuid.uuid4().hex,
        )
        db.add(contact)
        await db.commit()
        return contact
    return _make


@pytest.fixture
async def mailbox(db, employee):
    token = MailboxToken(
        id=uuid.uuid4(),
        employee_id=employee.id,
        credentials_json=json.dumps({"token": "access", "refresh_token": "refresh"}),
    )
    db.add(token)
    await db.commit()
    return token


# ── HTTP ──────────────────────────────────────────────────────────────────────

@pytest.fixture
def fake_mailer():
    return FakeMailer()


@pytest.fixture
def fake_gmail():
    return FakeGmail()


@pytest.fixture
def fake_verifier():
    return FakeVerifier()


@pytest.fixture
def auth_headers(settings, employee):
    return {"Authorization": f"Bearer {issue_token(settings, employee)}"}


@pytest.fixture
async def client(session_factory, fake_mailer, fake_gmail, fake_verifier):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_system_mailer] = lambda: fake_mailer
    app.dependency_overrides[get_gmail_client] = lambda: fake_gmail
    app.dependency_overrides[get_identity_verifier] = lambda: fake_verifier

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
