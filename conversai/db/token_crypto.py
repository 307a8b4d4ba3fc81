import structlog
from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from conversai.config import settings

logger = structlog.get_logger(__name__)


def _cipher() -> MultiFernet:
    """
    FERNET_KEY may hold several comma-separated keys. The first one encrypts,
    all of them are tried when decrypting, so old tokens survive a key rotation.
    """
    keys = [k.strip() for k in settings.fernet_key.split(",") if k.strip()]
    if not keys:
        raise RuntimeError("FERNET_KEY is missing in .env")
    return MultiFernet([Fernet(k.encode()) for k in keys])


def encrypt_token(plain: str) -> str:
    return _cipher().encrypt(plain.encode()).decode()


def decrypt_token(cipher: str) -> str:
    try:
        return _cipher().decrypt(cipher.encode()).decode()
    except (TypeError, InvalidToken) as e:
        # caller decides how to surface it (reconnect / 400)
        logger.error("token_decrypt_failed", error=str(e) or type(e).__name__)
        raise
