# conversai/auth/security.py
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import structlog
from jose import JWTError, jwt
from passlib.context import CryptContext

from conversai.config import settings

logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

OAUTH_STATE_TTL = timedelta(minutes=10)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError as e:
        logger.warning("password_verify_failed", error=str(e))
        return False


def _now_ts() -> int:
    return int(datetime.utcnow().timestamp())


def create_access_token(subject: str, expires_delta: Optional[timedelta] = None) -> Dict[str, Any]:
    jti = str(uuid.uuid4())
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload = {"sub": subject, "exp": int(expire.timestamp()), "jti": jti, "type": "access", "iat": _now_ts()}
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    logger.debug("create_access_token", sub=subject, jti=jti, exp=payload["exp"])
    return {"token": token, "jti": jti, "exp": payload["exp"]}


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.warning("token_decode_failed", error=str(e))
        raise


# --- OAuth state: signed, short-lived, carries who started the connect flow ---

def create_oauth_state(user_id: int, platform: str, code_verifier: Optional[str] = None) -> str:
    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "platform": platform,
        "type": "oauth_state",
        "nonce": uuid.uuid4().hex,
        "exp": int((datetime.utcnow() + OAUTH_STATE_TTL).timestamp()),
    }
    if code_verifier:
        payload["cv"] = code_verifier
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def read_oauth_state(state: str, platform: str) -> Dict[str, Any]:
    """Return the state claims; raises JWTError when forged, expired or for another platform."""
    claims = decode_token(state)
    if claims.get("type") != "oauth_state" or claims.get("platform") != platform:
        raise JWTError("OAuth state does not match this platform")
    return claims
