#!/usr/bin/env python3
"""Platform main configuration

Combines all sub-configs with environment, service and auth settings.
"""
import os
from dataclasses import dataclass, field
from typing import Optional

from .infra_config import InfraConfig
from .logging_config import LoggingConfig
from .match_config import MatchPolicyConfig


def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


@dataclass
class PlatformConfig:
    """Main platform configuration with all sub-configs"""

    # Environment
    environment: str = "development"
    debug: bool = False

    # Service settings
    host: str = "0.0.0.0"
    port: int = 8260

    # JWT/Auth Configuration
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_expiration: int = 3600
    jwt_issuer: str = "bagxtra"

    # Sub-configurations
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    infrastructure: InfraConfig = field(default_factory=InfraConfig)
    match: MatchPolicyConfig = field(default_factory=MatchPolicyConfig)

    @classmethod
    def from_env(cls) -> 'PlatformConfig':
        """Load complete configuration from environment"""
        env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
        return cls(
            # Environment
            environment=env,
            debug=_bool(os.getenv("DEBUG", "true" if env == "development" else "false")),

            # Service settings
            host=os.getenv("HOST", "0.0.0.0"),
            port=_int(os.getenv("SERVICE_PORT") or os.getenv("PORT", "8260"), 8260),

            # JWT/Auth
            jwt_secret=os.getenv("JWT_SECRET"),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            jwt_expiration=_int(os.getenv("JWT_EXPIRATION", "3600"), 3600),
            jwt_issuer=os.getenv("JWT_ISSUER", "bagxtra"),

            # Load sub-configs
            logging=LoggingConfig.from_env(),
            infrastructure=InfraConfig.from_env(),
            match=MatchPolicyConfig.from_env(),
        )
