from cryptography.fernet import InvalidToken
import pytest
from sqlalchemy import create_engine, inspect, text

from conversai.db import token_crypto
from conversai.db.migrate import migrate


def test_migrate_adds_missing_columns(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'old.db'}")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE posts (id INTEGER PRIMARY KEY, content TEXT)"))

    migrate(engine)
    migrate(engine)  # second run is a no-op

    columns = {c["name"] for c in inspect(engine).get_columns("posts")}
    assert {"title", "description", "videos"} <= columns


def test_token_round_trip_and_tamper():
    cipher = token_crypto.encrypt_token("secret")
    assert cipher != "secret"
    assert token_crypto.decrypt_token(cipher) == "secret"
    with pytest.raises(InvalidToken):
        token_crypto.decrypt_token(cipher[:-4] + "AAAA")


def test_old_key_still_decrypts_after_rotation(monkeypatch):
    from cryptography.fernet import Fernet
    from conversai.config import settings

    old_key = settings.fernet_key
    cipher = token_crypto.encrypt_token("before-rotation")

    monkeypatch.setattr(settings, "fernet_key", f"{Fernet.generate_key().decode()},{old_key}")
    assert token_crypto.decrypt_token(cipher) == "before-rotation"
    assert token_crypto.decrypt_token(token_crypto.encrypt_token("after")) == "after"

    monkeypatch.setattr(settings, "fernet_key", "")
    with pytest.raises(RuntimeError):
        token_crypto.encrypt_token("x")
