"""
Core security utilities for one-time codes and approval tokens.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import jwt, JWTError
from passlib.context import CryptContext
import secrets
import string
import re
import logging

from ..config import settings

# Set up logging
logger = logging.getLogger(__name__)

CODE_LENGTH = 6
APPROVAL_CODE_ALPHABET = string.ascii_uppercase + string.digits

# Salted hashing context for one-time codes
code_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

_NON_DIGITS = re.compile(r"\D")

def generate_challenge_code() -> str:
    """
    Generate a numeric one-time code drawn uniformly from [100000, 999999].

    Returns:
        str: A 6 digit code that never starts with zero
    """
    return str(100000 + secrets.randbelow(900000))

def generate_approval_code(length: int = CODE_LENGTH) -> str:
    """
    Generate an uppercase alphanumeric approval code.

    Args:
        length: Length of the code (default: 6)

    Returns:
        str: Random code containing uppercase letters and digits
    """
    return ''.join(secrets.choice(APPROVAL_CODE_ALPHABET) for _ in range(length))

def normalize_code(submitted_code: Optional[str], length: int = CODE_LENGTH) -> str:
    """
    Strip formatting noise from a manually entered code.

    Every non-digit character is removed and the result is cut to ``length``
    digits, so ``"12 34-56"`` and ``"123456"`` compare equal.

    Args:
        submitted_code: Code as typed by the user
        length: Maximum number of digits kept

    Returns:
        str: Normalized digit string (possibly shorter than ``length``)
    """
    if not submitted_code:
        return ""
    return _NON_DIGITS.sub("", submitted_code)[:length]

def hash_code(code: str) -> str:
    """
    Hash a one-time code with a random salt for storage.

    Args:
        code: Plain text code

    Returns:
        str: Salted hash
    """
    return code_context.hash(code)

def verify_code_hash(code: str, code_hash: str) -> bool:
    """
    Verify a code against its stored salted hash.

    Args:
        code: Plain text code
        code_hash: Stored hash to compare against

    Returns:
        bool: True if the code matches
    """
    if not code or not code_hash:
        return False
    return code_context.verify(code, code_hash)

def create_approval_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed token proving a companion app approval.

    Args:
        data: Claims to encode in the token
        expires_delta: Token lifetime (default: 1 day)

    Returns:
        str: Encoded JWT token
    """
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    to_encode.update({
        "iat": now,
        "exp": now + (expires_delta or timedelta(days=1)),
        "type": "companion_approval",
    })
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)

def verify_approval_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify and decode a companion approval token.

    Args:
        token: JWT token string

    Returns:
        Dict containing token payload if valid, None if invalid
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if payload.get("type") != "companion_approval":
        return None
    return payload

def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)

def as_utc(moment: datetime) -> datetime:
    """
    Attach UTC to naive datetimes read back from databases without timezone support.
    """
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)

def is_expired(expiry_time: datetime, now: Optional[datetime] = None) -> bool:
    """
    Check if an expiry time has passed.

    Args:
        expiry_time: Expiration time
        now: Reference time (default: current UTC time)

    Returns:
        bool: True if expired
    """
    return as_utc(now or utcnow()) >= as_utc(expiry_time)
