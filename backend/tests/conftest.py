import os
import sys
from datetime import timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./data/armoredmart.db")
os.environ.setdefault("SECRET_KEY", "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef")

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.api import deps  # noqa: E402
from app.api.auth import router as auth_router  # noqa: E402
from app.api.errors import register_error_handlers  # noqa: E402
from app.config import get_settings  # noqa: E402
from app.database import Base, utcnow  # noqa: E402
from app.services.auth_gate import AuthGate  # noqa: E402
from app.services.refresh import RefreshCoordinator  # noqa: E402
from app.services.revocation import RevocationManager  # noqa: E402
from app.services.session_store import SessionStore  # noqa: E402
from app.services.tokens import TokenIssuer  # noqa: E402

PASSWORD = "TestPass123!"


class FakeClock:
    """Controllable replacement for ``utcnow``."""

    def __init__(self):
        self.now = utcnow().replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def session_factory(tmp_path):
    # File-backed so separate threads get separate connections to the same data
    engine = create_engine(
        f"sqlite:///{tmp_path / 'auth.db'}",
        connect_args={"check_same_thread": False, "timeout": 5},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db):
    return SessionStore(db)


@pytest.fixture
def issuer(store, settings, clock):
    return TokenIssuer(store, settings, clock)


@pytest.fixture
def coordinator(store, issuer, settings, clock):
    return RefreshCoordinator(store, issuer, settings, clock)


@pytest.fixture
def revocation(store, clock):
    return RevocationManager(store, clock)


@pytest.fixture
def gate(store, settings, clock):
    return AuthGate(store, settings, clock)


@pytest.fixture
def user(store):
    return store.create_user(name="Buyer One", email="buyer@example.com", password_hash="hashed")


def build_test_app(session_factory, clock) -> FastAPI:
    app = FastAPI()
    app.include_router(auth_router, prefix="/api")
    register_error_handlers(app)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_clock] = lambda: clock
    return app


@pytest.fixture
def app(session_factory, clock):
    return build_test_app(session_factory, clock)


@pytest.fixture
def client(app):
    return TestClient(app)
