"""
Shared test fixtures: throwaway database, signed-in users and an API client
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from guestlist.core.db import Base, get_db
from guestlist.models import User
from guestlist.schemas.organization import OrganizationCreate
from guestlist.services.broadcast_hub import InMemoryBroadcastHub
from guestlist.services.organization_service import OrganizationService
from guestlist.utils.security import SessionUser
from main import app

# Test database setup
SQLALCHEMY_DATABASE_URL = "sqlite:///./test_guestlist.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def make_user(db, name: str, token: str) -> SessionUser:
    user = User(email=f"{name.lower()}@example.com", name=name, session_token=token)
    db.add(user)
    db.commit()
    db.refresh(user)
    return SessionUser(id=user.id, display_name=user.name, primary_email=user.email)


@pytest.fixture
def db_session():
    """Create test database session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def alice(db_session):
    return make_user(db_session, "Alice", "alice-token")


@pytest.fixture
def bob(db_session):
    return make_user(db_session, "Bob", "bob-token")


@pytest.fixture
def organization(db_session, alice):
    """A wedding organization administered by Alice"""
    return OrganizationService.create_organization(
        OrganizationCreate(name="Alice & Sam's Wedding", event_type="wedding"), alice, db_session
    )


@pytest.fixture
def hub():
    return InMemoryBroadcastHub(connection_timeout=60, sweep_interval=30, queue_size=100)


@pytest.fixture
def client(db_session, hub):
    """API client wired to the test database and a fresh broadcast hub"""
    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.broadcast_hub = hub
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def alice_headers(alice):
    return {"Authorization": "Bearer alice-token"}


@pytest.fixture
def bob_headers(bob):
    return {"Authorization": "Bearer bob-token"}
