"""Bearer-token verification and admin checks for FastAPI."""

from dataclasses import dataclass, field
from typing import Optional, Protocol

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .errors import ForbiddenError, UnauthenticatedError
from .logging_config import get_logger

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

UID_CLAIMS = ("uid", "user_id", "sub")
ADMIN_CLAIMS = ("admin", "isAdmin")


@dataclass
class Identity:
    uid: str
    display_name: Optional[str] = None
    claims: dict = field(default_factory=dict)


class IdentityVerifier(Protocol):
    def verify(self, token: str) -> Identity:
        ...


class JWTIdentityVerifier:
    def __init__(self, secret_key: str, algorithm: str = "HS256", audience: Optional[str] = None):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.audience = audience

    def verify(self, token: str) -> Identity:
        """
        Decode and validate a bearer token.

        Raises:
            UnauthenticatedError: bad signature, expired, wrong audience, or no uid claim
        """
        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError as e:
            logger.warning("token_rejected", reason=str(e))
            raise UnauthenticatedError("Invalid ID token") from e

        uid = next((claims[c] for c in UID_CLAIMS if claims.get(c)), None)
        if not uid:
            logger.warning("token_rejected", reason="missing uid claim")
            raise UnauthenticatedError("Invalid ID token")
        return Identity(uid=str(uid), display_name=claims.get("name"), claims=claims)


def is_admin(identity: Identity, admin_uids: list[str]) -> bool:
    if identity.uid in admin_uids:
        return True
    return any(identity.claims.get(c) is True for c in ADMIN_CLAIMS)


def require_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Identity:
    if not credentials:
        raise UnauthenticatedError("Missing Authorization header")
    verifier: IdentityVerifier = request.app.state.identity_verifier
    identity = verifier.verify(credentials.credentials)
    request.state.identity = identity
    return identity


def require_admin(request: Request, identity: Identity = Depends(require_identity)) -> Identity:
    if not is_admin(identity, request.app.state.config.admin_uid_list):
        raise ForbiddenError("Admin only")
    return identity
