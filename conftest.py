import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth import get_identity_gate
from database import get_db
from errors import Unauthenticated
from main import app
from models import Base, User
from redis_client import RedisClient, get_notifier

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TOKENS = {
    "alice-token": {"sub": "alice", "name": "Alice Smith", "email": "alice@example.com"},
    "bob-token": {"sub": "bob", "given_name": "Bob", "family_name": "Jones"},
    "carol-token": {"sub": "carol", "preferred_username": "carol"},
}


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


ALICE = bearer("alice-token")
BOB = bearer("bob-token")
CAROL = bearer("carol-token")


class FakeIdentityGate:
    async def verify(self, token):
        if token not in TOKENS:
            raise Unauthenticated("Invalid or expired token")
        return TOKENS[token]


class RecordingNotifier(RedisClient):
    def __init__(self):
        super().__init__()
        self.events = []

    async def ping(self):
        return True

    async def publish(self, user_id, event):
        self.events.append((user_id, event))
        return True


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(db_session, notifier):
    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_gate] = lambda: FakeIdentityGate()
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def registered(client):
    """Make alice, bob and carol known to the service."""
    for headers in (ALICE, BOB, CAROL):
        assert client.get("/users/me", headers=headers).status_code == 200


@pytest.fixture
def people(db_session):
    users = [
        User(id="alice", display_name="Alice"),
        User(id="bob", display_name="Bob"),
        User(id="carol", display_name="Carol"),
    ]
    db_session.add_all(users)
    db_session.commit()
    return users
