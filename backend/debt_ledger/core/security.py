from datetime import datetime, timedelta, timezone

import jwt
from passlib.context import CryptContext

from debt_ledger.core.config import settings

pwd = CryptContext(schemes=["bcrypt"], deprecated="auto")

JWT_ALG = "HS256"


def _clip(p: str) -> str:
    # bcrypt only looks at the first 72 bytes
    b = str(p).encode("utf-8")
    if len(b) > 72:
        return b[:72].decode("utf-8", errors="ignore")
    return str(p)


def hash_password(p: str) -> str:
    if p is None:
        raise ValueError("password is required")
    return pwd.hash(_clip(p))


def verify_password(p: str, hashed: str) -> bool:
    if p is None or hashed is None:
        return False
    return pwd.verify(_clip(p), hashed)


def create_access_token(sub: str, user_id: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "uid": user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.jwt_expires_min)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALG)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALG])
