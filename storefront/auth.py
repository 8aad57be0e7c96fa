import logging
import time
from typing import NamedTuple, Optional

import jwt
from fastapi import Depends, Header
from passlib.context import CryptContext

from . import config
from .errors import Forbidden, InvalidToken, Unauthenticated
from .models import ROLE_ADMIN

logger = logging.getLogger(__name__)

# Use pbkdf2_sha256 as default to avoid bcrypt 72-byte limitation in some envs
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")

ALGORITHM = "HS256"


class Identity(NamedTuple):
    id: int
    username: str
    role: str
    email: Optional[str]

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def create_access_token(user, expires_delta: Optional[int] = None) -> str:
    settings = config.get_settings()
    now = int(time.time())
    exp = now + (expires_delta or settings.token_ttl_seconds)
    payload = {
        "sub": str(user.id),
        "username": user.username,
        "role": user.role,
        "email": user.email,
        "iat": now,
        "exp": exp,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.get_settings().jwt_secret, algorithms=[ALGORITHM])


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def authenticate(token: Optional[str]) -> Identity:
    """Verify a bearer token and return the identity embedded in its claims."""
    if not token:
        logger.warning("Authentication attempt without token")
        raise Unauthenticated("Access denied: No token provided")
    try:
        claims = decode_access_token(token)
        return Identity(
            id=int(claims["sub"]),
            username=claims["username"],
            role=claims["role"],
            email=claims.get("email"),
        )
    except (jwt.PyJWTError, KeyError, ValueError) as e:
        logger.error("Token verification failed: %s", e)
        raise InvalidToken("Invalid token") from e


def authorize_admin(identity: Identity) -> Identity:
    if not identity.is_admin:
        logger.warning("Unauthorized admin access attempt by user: %s", identity.username)
        raise Forbidden("Admin access required")
    return identity


def authorize_self_or_admin(identity: Identity, user_id: int) -> Identity:
    if identity.id != user_id and not identity.is_admin:
        logger.warning("User %s (ID: %s) denied access to user ID: %s", identity.username, identity.id, user_id)
        raise Forbidden("Access denied: You can only access your own profile unless you are an admin.")
    return identity


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Second word of the header, whatever the scheme; it is verified as a token anyway."""
    parts = (authorization or "").split()
    return parts[1] if len(parts) > 1 else None


# FastAPI dependencies

def current_identity(authorization: Optional[str] = Header(default=None)) -> Identity:
    return authenticate(bearer_token(authorization))


def admin_identity(identity: Identity = Depends(current_identity)) -> Identity:
    return authorize_admin(identity)
