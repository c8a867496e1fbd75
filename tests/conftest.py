"""
Test configuration and fixtures.

Provides:
- Fresh in-memory SQLite schema per test
- Lab / user / template factories
- Signed session cookies and a TestClient bound to the test session
- A recording event sink for engine tests
"""
import json
import os
from typing import Generator

# Must be set before the app (and its Settings) is imported.
os.environ["DATABASE_DSN"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["AUTO_CREATE_ADMIN"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.main import app
from app.auth.deps import SESSION_COOKIE, actor_for
from app.core import chain
from app.core.policy import Actor
from app.core.security import sign_session
from app.db.base import Base
from app.db.session import engine, SessionLocal, get_db
from app.db.models.form_distribution import FormTemplateLab, FormTemplateUser
from app.db.models.form_template import FormTemplate
from app.db.models.lab import Lab
from app.db.models.user import Role, User
from app.utils.events import RecordingSink


DEFAULT_SCHEMA = {
    "fields": [
        {"id": "summary", "label": "Summary", "type": "textarea", "required": True},
        {"id": "budget", "label": "Budget", "type": "text", "validation": {"isNumeric": True}},
        {"id": "declaration_checkbox", "label": "I certify the above", "type": "checkbox"},
    ]
}

FILLED = {"summary": "All instruments calibrated", "budget": "1200"}
DECLARED = {**FILLED, "declaration_checkbox": True}


# =============================================================================
# Database
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_lab(db: Session):
    def _make(name: str = "Chemistry Lab") -> Lab:
        lab = Lab(name=name)
        db.add(lab)
        db.commit()
        return lab

    return _make


@pytest.fixture
def make_user(db: Session):
    counter = {"n": 0}

    def _make(
        full_name: str = "",
        *,
        lab: Lab | None = None,
        designation: str = "Technical Officer",
        role: Role = Role.USER,
        is_active: bool = True,
    ) -> User:
        counter["n"] += 1
        name = full_name or f"User {counter['n']}"
        u = User(
            full_name=name,
            email=f"user{counter['n']}@example.org",
            # no login through the password form in tests
            password_hash="!",
            role=role,
            lab_id=lab.id if lab else None,
            designation=designation,
            is_active=is_active,
        )
        db.add(u)
        db.commit()
        return u

    return _make


@pytest.fixture
def make_template(db: Session):
    def _make(
        creator: User,
        *,
        labs: list[Lab] = (),
        users: list[User] = (),
        title: str = "Quarterly Equipment Return",
        schema: dict | None = None,
        allow_delegation: bool = True,
        allow_multiple_submissions: bool = False,
        is_public: bool = False,
        is_active: bool = True,
        deadline=None,
    ) -> FormTemplate:
        t = FormTemplate(
            title=title,
            description="",
            schema_json=json.dumps(schema if schema is not None else DEFAULT_SCHEMA),
            created_by_id=creator.id,
            allow_delegation=allow_delegation,
            allow_multiple_submissions=allow_multiple_submissions,
            is_public=is_public,
            is_active=is_active,
            deadline=deadline,
        )
        t.target_labs = [FormTemplateLab(lab_id=lab.id) for lab in labs]
        t.target_users = [FormTemplateUser(user_id=u.id) for u in users]
        db.add(t)
        db.commit()
        return t

    return _make


def as_actor(user: User) -> Actor:
    return actor_for(user)


# =============================================================================
# Shared world: one lab, a distributor elsewhere, an approver and two officers
# =============================================================================

@pytest.fixture
def world(make_lab, make_user, make_template):
    lab = make_lab("Chemistry Lab")
    other_lab = make_lab("Materials Lab")

    distributor = make_user("Distributor", lab=other_lab, role=Role.INTER_LAB_SENDER, designation="Scientist")
    a = make_user("Alice Director", lab=lab, designation="Director")
    b = make_user("Bob Officer", lab=lab)
    c = make_user("Carol Officer", lab=lab)
    outsider = make_user("Oscar Outsider", lab=other_lab)

    template = make_template(distributor, labs=[lab])

    class World:
        pass

    w = World()
    w.lab, w.other_lab = lab, other_lab
    w.distributor, w.a, w.b, w.c, w.outsider = distributor, a, b, c, outsider
    w.template = template
    return w


# =============================================================================
# Events
# =============================================================================

@pytest.fixture
def events() -> Generator[RecordingSink, None, None]:
    sink = RecordingSink()
    previous = chain.set_event_sink(sink)
    try:
        yield sink
    finally:
        chain.set_event_sink(previous)


# =============================================================================
# HTTP
# =============================================================================

@pytest.fixture
def client(db: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def login(client: TestClient):
    """Switch the client's session cookie to the given user."""

    def _login(user: User) -> TestClient:
        client.cookies.set(SESSION_COOKIE, sign_session({"user_id": user.id}))
        return client

    return _login
