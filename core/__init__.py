#!/usr/bin/env python3
"""
Core Module for Microservices Architecture

Shared infrastructure for the BagXtra services.

COMPONENTS:
    - config/: dataclass configuration loaded from environment (.env via python-dotenv)
    - jwt_manager.py: self-issued JWT access tokens carrying the marketplace role
    - auth_dependencies.py: FastAPI dependencies resolving bearer tokens to identities
    - nats_client.py: NATS JetStream event bus
    - postgres_client.py: asyncpg pool wrapper

USAGE:
    from core.config import get_settings
    from core.auth_dependencies import require_roles
    from core.jwt_manager import UserRole

VERSION: 1.0.0
"""

__version__ = "1.0.0"
