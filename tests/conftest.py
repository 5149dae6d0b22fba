from __future__ import annotations

import os
import pathlib
import sys

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["CRON_SECRET"] = ""
os.environ["SMTP_HOST"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import database  # noqa: E402
from auth import create_access_token, hash_password  # noqa: E402
from database import Base, Budget, Category, Expense, NotificationThreshold, User  # noqa: E402
from main import app  # noqa: E402
from notifications import SendResult  # noqa: E402


@pytest.fixture(scope="session")
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    TestingSessionLocal = sessionmaker(bind=connection, autoflush=False, autocommit=False)
    session: Session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture()
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[database.get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class RecordingSender:
    """Stands in for the SMTP sender and remembers every alert."""

    def __init__(self, success: bool = True):
        self.success = success
        self.calls = []

    def __call__(self, data, channel="email"):
        self.calls.append((data, channel))
        if not self.success:
            return SendResult(success=False, error="smtp down")
        return SendResult(success=True, message_id=f"<msg-{len(self.calls)}@test>")


@pytest.fixture()
def sender():
    return RecordingSender()


@pytest.fixture()
def make_user(db_session):
    def _make_user(email="alice@example.com", name="Alice", password="secret123"):
        user = User(email=email, name=name, password_hash=hash_password(password))
        db_session.add(user)
        db_session.flush()
        return user

    return _make_user


@pytest.fixture()
def user(make_user):
    return make_user()


def headers_for(user):
    token = create_access_token(data={"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_headers(user):
    return headers_for(user)


@pytest.fixture()
def make_budget(db_session):
    def _make_budget(user, amount=100.0, category_name="food", name=None, thresholds=()):
        category = Category(user_id=user.id, name=category_name)
        db_session.add(category)
        db_session.flush()
        budget = Budget(user_id=user.id, category_id=category.id, amount=amount, name=name)
        db_session.add(budget)
        db_session.flush()
        for entry in thresholds:
            value, enabled = entry if isinstance(entry, tuple) else (entry, True)
            db_session.add(
                NotificationThreshold(
                    user_id=user.id,
                    budget_id=budget.id,
                    threshold=value,
                    type="email",
                    enabled=enabled,
                )
            )
        db_session.flush()
        return budget

    return _make_budget


@pytest.fixture()
def add_expense(db_session):
    def _add_expense(budget, amount, on, description="expense"):
        expense = Expense(
            user_id=budget.user_id,
            category_id=budget.category_id,
            description=description,
            amount=amount,
            date=on,
        )
        db_session.add(expense)
        db_session.flush()
        return expense

    return _add_expense


@pytest.fixture()
def login_as():
    return headers_for


@pytest.fixture()
def make_sender():
    return RecordingSender
