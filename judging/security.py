"""
judging/security.py
Identity-token verification and access dependencies

Tokens are issued by the platform's auth provider; this service only
verifies them. Claims carry the user id ("sub") and role ("role"). Tokens
minted by the legacy provider use "id" and "type" instead; both are accepted.
"""
import hmac
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Header
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from judging.config import Settings
from judging.core.timeutil import utcnow
from judging.errors import ErrorCode, ForbiddenError, UnauthorizedError

logger = logging.getLogger(__name__)

ROLE_LISTENER = "listener"
ROLE_CREATOR = "creator"
ROLE_MASTER = "master"

ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    """Authenticated caller: platform user id plus role."""
    user_id: str
    role: str

    @property
    def is_master(self) -> bool:
        return self.role == ROLE_MASTER


class TokenVerifier:
    """Verifies identity tokens with the configured secret."""

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self.secret_key = secret_key
        self.algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenVerifier":
        return cls(settings.jwt_secret_key, settings.jwt_algorithm)

    def verify(self, token: Optional[str]) -> Identity:
        """
        Decode a token into an Identity.

        Raises:
            UnauthorizedError: missing, malformed, expired or incomplete token
        """
        if not token:
            raise UnauthorizedError("No token provided")
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError:
            raise UnauthorizedError("Invalid or expired token", ErrorCode.AUTH_INVALID)

        user_id = payload.get("sub") or payload.get("id")
        role = payload.get("role") or payload.get("type")
        if not role or (not user_id and role != ROLE_MASTER):
            raise UnauthorizedError("Invalid token payload", ErrorCode.AUTH_INVALID)
        return Identity(user_id=str(user_id) if user_id else ROLE_MASTER, role=str(role))

    def create_access_token(
        self,
        user_id: Optional[str],
        role: str,
        expires_delta: Optional[timedelta] = None
    ) -> str:
        """Mint a token; used by tests and local tooling."""
        expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
        to_encode = {"role": role, "exp": expire}
        if user_id is not None:
            to_encode["sub"] = str(user_id)
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)


# ================= AUTH DEPENDENCIES =================

def get_token_verifier(conn: HTTPConnection) -> TokenVerifier:
    return conn.app.state.token_verifier


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> Identity:
    """Authenticate any platform user from the Authorization header."""
    token = credentials.credentials if credentials else None
    return verifier.verify(token)


async def require_admin(
    conn: HTTPConnection,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    x_master_password: Optional[str] = Header(default=None),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> Identity:
    """
    Admin access: X-Master-Password header matching the configured master
    password, or a token whose role is master.
    """
    settings: Settings = conn.app.state.settings
    if (
        x_master_password
        and settings.master_password
        and hmac.compare_digest(x_master_password, settings.master_password)
    ):
        return Identity(user_id=ROLE_MASTER, role=ROLE_MASTER)

    if credentials:
        try:
            identity = verifier.verify(credentials.credentials)
        except UnauthorizedError:
            identity = None
        if identity and identity.is_master:
            return identity

    logger.warning(f"Admin access denied on {conn.url.path}")
    raise ForbiddenError("Unauthorized")
