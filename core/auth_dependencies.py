"""
FastAPI Authentication Dependencies for Microservices

Resolves the `Authorization: Bearer <token>` header to a verified
(user_id, role) identity. Routes trust the identity as ground truth.
"""

from dataclasses import dataclass
from typing import Callable, Optional
import logging

from fastapi import Depends, Header, HTTPException, status

from .jwt_manager import JWTManager, UserRole, get_jwt_manager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Verified caller identity"""
    user_id: str
    role: UserRole


class IdentityGate:
    """Verifies bearer tokens and yields an Identity"""

    def __init__(self, jwt_manager: JWTManager):
        self.jwt_manager = jwt_manager

    def verify(self, bearer_token: str) -> Identity:
        """
        Verify a bearer token.

        Raises:
            HTTPException 401: token missing, malformed, expired or forged
        """
        result = self.jwt_manager.verify_token(bearer_token)
        if not result.get("valid"):
            logger.info(f"Rejected bearer token: {result.get('error')}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=result.get("error", "Invalid token"),
            )
        return Identity(user_id=result["user_id"], role=UserRole(result["role"]))


_identity_gate: Optional[IdentityGate] = None


def get_identity_gate() -> IdentityGate:
    """Get or create the identity gate backed by the platform JWT settings"""
    global _identity_gate

    if _identity_gate is None:
        from .config import get_settings

        settings = get_settings()
        _identity_gate = IdentityGate(
            get_jwt_manager(
                secret_key=settings.jwt_secret,
                algorithm=settings.jwt_algorithm,
                issuer=settings.jwt_issuer,
                access_token_expiry=settings.jwt_expiration,
            )
        )
    return _identity_gate


async def require_identity(
    authorization: Optional[str] = Header(None),
    gate: IdentityGate = Depends(get_identity_gate),
) -> Identity:
    """
    认证依赖：require a valid bearer token

    Raises:
        HTTPException 401: missing or invalid credentials
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
        )

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must use the Bearer scheme",
        )

    return gate.verify(token.strip())


def require_roles(*roles: UserRole) -> Callable:
    """
    Build a dependency that admits only callers holding one of `roles`.

    使用示例：
        @app.post("/api/v1/matches/{match_id}/approve")
        async def approve(identity: Identity = Depends(require_roles(UserRole.SHOPPER))):
            ...
    """
    allowed = frozenset(roles)

    async def _dependency(identity: Identity = Depends(require_identity)) -> Identity:
        if identity.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{identity.role.value}' may not perform this action",
            )
        return identity

    return _dependency


__all__ = [
    "Identity",
    "IdentityGate",
    "get_identity_gate",
    "require_identity",
    "require_roles",
]
