import hashlib
import hmac
import secrets
from datetime import timedelta
from typing import Optional, Dict, Any
from jose import jwt
from jose.exceptions import JWTError
from app.config import settings
from app.utils.dates import utc_now

PBKDF2_ITERATIONS = 100000


def get_password_hash(password: str) -> str:
    """Salted PBKDF2-SHA256, stored as 'salt$hash'"""
    salt = secrets.token_hex(16)
    hash_val = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS).hex()
    return f"{salt}${hash_val}"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password or "$" not in hashed_password:
        return False
    salt, hash_val = hashed_password.split("$", 1)
    computed = hashlib.pbkdf2_hmac("sha256", plain_password.encode(), salt.encode(), PBKDF2_ITERATIONS).hex()
    return hmac.compare_digest(computed, hash_val)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()
    expire = utc_now() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Decoded payload, or None if the token is invalid or expired"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
