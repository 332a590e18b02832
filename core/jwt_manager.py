"""
JWT Token Manager for the BagXtra platform

Issues and verifies self-signed access tokens carrying the caller's
marketplace role.
"""

import jwt
import uuid
import secrets
import logging
from typing import Dict, Any, Optional
from datetime import datetime, timedelta, timezone
from enum import Enum
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class UserRole(str, Enum):
    """Marketplace roles"""
    SHOPPER = "shopper"
    TRAVELER = "traveler"
    VENDOR = "vendor"
    ADMIN = "admin"


@dataclass
class TokenClaims:
    """Standard token claims"""
    user_id: str
    role: UserRole
    email: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class JWTManager:
    """
    JWT Token Manager

    Tokens carry `sub` (user id) and `role`. Verification never raises; it
    returns a result dict with `valid` and either the identity or an error.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: str = "HS256",
        issuer: str = "bagxtra",
        access_token_expiry: int = 3600,  # 1 hour
    ):
        """
        Initialize JWT Manager

        Args:
            secret_key: Secret key for signing tokens (will auto-generate if not provided)
            algorithm: JWT algorithm (default: HS256)
            issuer: Token issuer identifier
            access_token_expiry: Access token expiry in seconds
        """
        import os

        self.secret_key = secret_key or os.getenv("JWT_SECRET") or self._generate_secret()
        self.algorithm = algorithm
        self.issuer = issuer
        self.access_token_expiry = access_token_expiry

        if not secret_key and not os.getenv("JWT_SECRET"):
            logger.warning(
                "No JWT_SECRET provided - using generated secret. "
                "This should ONLY be used in development!"
            )

    def _generate_secret(self) -> str:
        """Generate a secure random secret"""
        return secrets.token_urlsafe(64)

    def create_access_token(
        self,
        claims: TokenClaims,
        expires_delta: Optional[timedelta] = None
    ) -> str:
        """
        Create an access token

        Args:
            claims: Token claims
            expires_delta: Custom expiration time (optional, may be negative in tests)

        Returns:
            JWT access token string
        """
        now = datetime.now(tz=timezone.utc)
        expires = now + (expires_delta if expires_delta is not None else timedelta(seconds=self.access_token_expiry))

        payload = {
            "iss": self.issuer,
            "sub": claims.user_id,
            "iat": int(now.timestamp()),
            "exp": int(expires.timestamp()),
            "jti": str(uuid.uuid4()),
            "role": UserRole(claims.role).value,
            "email": claims.email,
            "metadata": claims.metadata or None,
        }

        # Remove None values
        payload = {k: v for k, v in payload.items() if v is not None}

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

        logger.debug(f"Created access token for user: {claims.user_id}, role: {payload['role']}")
        return token

    def verify_token(self, token: str) -> Dict[str, Any]:
        """
        Verify and decode a JWT token

        Returns:
            Dictionary with verification result; on success includes
            user_id, role, email, expires_at
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"require": ["sub", "exp"]},
            )

            role = payload.get("role")
            if role not in {r.value for r in UserRole}:
                return {
                    "valid": False,
                    "error": f"Invalid role claim: {role}"
                }

            return {
                "valid": True,
                "payload": payload,
                "user_id": payload.get("sub"),
                "role": role,
                "email": payload.get("email"),
                "expires_at": datetime.fromtimestamp(payload.get("exp", 0), tz=timezone.utc),
                "jti": payload.get("jti"),
            }

        except jwt.ExpiredSignatureError:
            return {
                "valid": False,
                "error": "Token has expired"
            }
        except jwt.InvalidIssuerError:
            return {
                "valid": False,
                "error": "Invalid token issuer"
            }
        except jwt.InvalidTokenError as e:
            return {
                "valid": False,
                "error": f"Invalid token: {str(e)}"
            }


# Singleton instance for application-wide use
_jwt_manager_instance: Optional[JWTManager] = None


def get_jwt_manager(
    secret_key: Optional[str] = None,
    algorithm: str = "HS256",
    issuer: str = "bagxtra",
    access_token_expiry: int = 3600,
) -> JWTManager:
    """Get or create JWT manager singleton instance"""
    global _jwt_manager_instance

    if _jwt_manager_instance is None:
        _jwt_manager_instance = JWTManager(
            secret_key=secret_key,
            algorithm=algorithm,
            issuer=issuer,
            access_token_expiry=access_token_expiry,
        )

    return _jwt_manager_instance
