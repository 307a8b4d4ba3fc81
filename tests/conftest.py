import os
import tempfile

from cryptography.fernet import Fernet

# settings are read at import time, so the environment must be in place first
_tmpdir = tempfile.mkdtemp(prefix="conversai-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ["FERNET_KEY"] = Fernet.generate_key().decode()
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["APP_OWNER_EMAIL"] = "owner@example.com"
os.environ["APP_URL"] = "http://frontend.test"
os.environ["SCHEDULER_AUTOSTART"] = "false"
os.environ["OPENROUTER_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient

from conversai.auth.security import create_access_token, hash_password
from conversai.db import crud, crud_accounts
from conversai.db.base import Base, SessionLocal, engine
from conversai.main import app


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def user(db):
    return crud.create_user(db, "alice@example.com", "Alice", hash_password("correct-horse"))


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(str(user.id))['token']}"}


@pytest.fixture
def owner(db):
    return crud.create_user(db, "owner@example.com", "Owner", hash_password("owner-password"))


@pytest.fixture
def owner_headers(owner):
    return {"Authorization": f"Bearer {create_access_token(str(owner.id))['token']}"}


@pytest.fixture
def make_account(db):
    def _make(user, platform="TWITTER", account_id=None, **kwargs):
        kwargs.setdefault("access_token", f"{platform.lower()}-access")
        kwargs.setdefault("account_name", f"{platform.title()} account")
        return crud_accounts.upsert_social_account(
            db,
            user_id=user.id,
            platform=platform,
            account_id=account_id or f"{platform.lower()}-{user.id}",
            **kwargs,
        )
    return _make


@pytest.fixture
def make_post(db):
    def _make(user, accounts, **fields):
        fields.setdefault("content", "Hello world")
        fields.setdefault("status", "DRAFT")
        return crud.create_post(db, user_id=user.id, social_account_ids=[a.id for a in accounts], **fields)
    return _make
