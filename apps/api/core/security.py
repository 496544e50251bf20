"""
Token utilities for the identity provider seam.

Identity is owned by an external provider; this service only validates the
bearer tokens it issues and reads the actor id (`sub`) and `role` claims.
`create_access_token` exists for service-to-service calls and tests.

SECRET_KEY is shared with the provider and must be at least 32 characters;
importing this module fails otherwise.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
import hmac
from jose import JWTError, jwt
from core.config import settings

SECRET_KEY = settings.SECRET_KEY

if len(SECRET_KEY) < 32:
    raise ValueError(
        "SECRET_KEY must be at least 32 characters. "
        "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 1 day

ROLE_COACH = "coach"
ROLE_STUDENT = "student"
VALID_ROLES = (ROLE_COACH, ROLE_STUDENT)


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict]:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


def verify_cron_secret(presented: Optional[str]) -> bool:
    """Constant-time check of the secret sent by the cron trigger."""
    expected = settings.CRON_SECRET
    if not expected or not presented:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))
