from typing import Generator, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from conversai.api_utils import error_detail
from conversai.auth.security import decode_token
from conversai.config import settings
from conversai.db import crud, models  # noqa: F401  (registers tables on Base)
from conversai.db.base import Base, SessionLocal, engine
from conversai.db.migrate import migrate

bearer_scheme = HTTPBearer(auto_error=False)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)
    migrate(engine)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> models.User:
    if credentials is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    try:
        payload = decode_token(credentials.credentials)
        if payload.get("type") != "access":
            raise JWTError("not an access token")
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    user = crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    return user


def is_app_owner(user: models.User) -> bool:
    owner = settings.app_owner_email.strip().lower()
    return bool(owner) and user.email.lower() == owner


def require_app_owner(user: models.User = Depends(get_current_user)) -> models.User:
    if not is_app_owner(user):
        raise HTTPException(
            status.HTTP_403_FORBIDDEN,
            error_detail("App owner access required", "APP_OWNER_ACCESS_REQUIRED"),
        )
    return user
