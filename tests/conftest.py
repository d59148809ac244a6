import time

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mindconnect import config
from mindconnect.db import Base, get_session
from mindconnect.identity import IdentityProviderError, TokenSet, get_identity_provider
from mindconnect.main import app
from mindconnect import crud, models_db  # noqa: F401

ADMIN_KEY = "test-admin-key"


def make_id_token(sub, exp, **claims):
    return jwt.encode(dict(claims, sub=sub, exp=exp), "test-signing-key-that-the-app-never-verifies", algorithm="HS256")


class FakeProvider:
    """Stands in for the OIDC provider; records refresh calls."""

    def __init__(self, refresh_ok=True, lifetime=3600):
        self.refresh_ok = refresh_ok
        self.lifetime = lifetime
        self.refresh_calls = []
        self.exchange_calls = []

    def _tokens(self, sub, refresh_token="rt-new"):
        exp = int(time.time()) + self.lifetime
        return TokenSet(
            access_token="at-new",
            refresh_token=refresh_token,
            id_token=make_id_token(sub, exp, email=f"{sub}@example.org", first_name="Fresh"),
            expires_in=self.lifetime,
            received_at=time.time(),
        )

    def refresh(self, refresh_token):
        self.refresh_calls.append(refresh_token)
        if not self.refresh_ok:
            raise IdentityProviderError("invalid_grant")
        return self._tokens("oidc-user")

    def authorization_url(self, redirect_uri, state, code_challenge):
        return f"https://idp.example.org/authorize?state={state}&redirect_uri={redirect_uri}"

    def exchange_code(self, code, redirect_uri, code_verifier):
        self.exchange_calls.append((code, redirect_uri, code_verifier))
        return self._tokens("oidc-user")

    def end_session_url(self, post_logout_redirect_uri):
        return "https://idp.example.org/logout"


@pytest.fixture()
def db_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture()
def db(db_factory):
    session = db_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db_factory, monkeypatch):
    def _get_session():
        session = db_factory()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(config, "ADMIN_API_KEY", ADMIN_KEY)
    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_identity_provider] = lambda: None
    # No context manager: startup would try to build the real engine.
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def login(client):
    def _login(email="parent@example.org"):
        resp = client.post("/api/login", json={"email": email, "password": "anything"})
        assert resp.status_code == 200, resp.text
        return resp.json()["userId"]
    return _login


@pytest.fixture()
def seeded_test(db):
    return crud.create_test(
        db,
        questions=[
            {"text": "First question", "order": 1, "options": [{"label": "Low", "score": 1}, {"label": "High", "score": 5}]},
            {"text": "Second question", "order": 2},
            {"text": "Third question", "order": 3},
        ],
        title="Parenting Stress",
        description="How stressful parenting feels right now.",
        category="parenting",
        estimated_time=3,
    )


@pytest.fixture()
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_KEY}"}
