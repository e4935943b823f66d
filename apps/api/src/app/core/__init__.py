"""
Core module - configuration and the infrastructure the admissions engine
runs on: database sessions, Redis, tokens, blob storage and payments.
"""

from app.core.auth import CallerIdentity, get_caller_identity
from app.core.config import get_settings, settings
from app.core.database import Base, get_db
from app.core.payments import PaymentGateway, get_payment_gateway
from app.core.redis import get_redis, redis_key
from app.core.security import create_access_token, decode_token
from app.core.storage import BlobStorage, get_blob_storage

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Storage backends
    "Base",
    "get_db",
    "get_redis",
    "redis_key",
    "get_blob_storage",
    "BlobStorage",
    # Callers
    "CallerIdentity",
    "get_caller_identity",
    "create_access_token",
    "decode_token",
    # Payments
    "PaymentGateway",
    "get_payment_gateway",
]
