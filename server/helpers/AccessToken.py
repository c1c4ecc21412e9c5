from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import jwt, JWTError

from config.config import SECRET_KEY, JWT_ALGORITHM, TOKEN_EXPIRE_MINUTES


def create_access_token(user_id: str, role: str, expires_minutes: int = TOKEN_EXPIRE_MINUTES) -> str:
    payload = {
        "sub": user_id,
        "role": role,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_access_token(token: str) -> Optional[dict]:
    """Returns the payload, or None for a bad signature, malformed or expired token"""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload
