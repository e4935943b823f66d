"""
Admissions Dependencies

FastAPI dependencies that wire the store, the service and the acting
principal for the admissions routers.
"""

import logging

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import CallerIdentity, get_caller_identity
from app.core.config import settings
from app.core.database import get_db
from app.core.storage import BlobStorage, get_blob_storage

from .exceptions import AccountNotFoundError, StoreUnavailableError
from .models import Role
from .permissions import Actor
from .repository import AggregateStore, InMemoryAggregateStore, SqlAlchemyAggregateStore
from .service import AdmissionsService

logger = logging.getLogger(__name__)

_memory_store: InMemoryAggregateStore | None = None


def get_memory_store() -> InMemoryAggregateStore:
    """Process-wide in-memory store (aggregate_store = "memory")."""
    global _memory_store
    if _memory_store is None:
        _memory_store = InMemoryAggregateStore()
    return _memory_store


def get_store(db: AsyncSession = Depends(get_db)) -> AggregateStore:
    """Return the configured aggregate store."""
    if settings.aggregate_store == "memory":
        return get_memory_store()
    return SqlAlchemyAggregateStore(db)


def get_admissions_service(
    store: AggregateStore = Depends(get_store),
    blob_storage: BlobStorage = Depends(get_blob_storage),
) -> AdmissionsService:
    return AdmissionsService(store, blob_storage=blob_storage)


async def resolve_actor(store: AggregateStore, identity: CallerIdentity) -> Actor:
    """
    Build the acting principal from the caller identity and stored account.

    Admins are resolved from the identity alone; their stored permission map
    is never consulted. Everyone else must have an account, whose stored role
    and capabilities take precedence over token claims.

    Raises:
        AccountNotFoundError: If a non-admin caller has no account
    """
    if identity.role == Role.ADMIN.value:
        return Actor(account_id=identity.account_id, role=Role.ADMIN)

    account = await store.read_aggregate(identity.account_id)
    return Actor.from_account(account.id, account.role, account.permissions)


async def get_current_actor(
    identity: CallerIdentity = Depends(get_caller_identity),
    store: AggregateStore = Depends(get_store),
) -> Actor:
    """
    FastAPI dependency returning the acting principal.

    Raises:
        HTTPException 403: If the caller has no registered account
        HTTPException 503: If the store is unavailable
    """
    try:
        return await resolve_actor(store, identity)
    except AccountNotFoundError as e:
        logger.warning(f"Caller {identity.account_id} has no registered account")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "ACCOUNT_NOT_REGISTERED",
                "message": "Complete registration before using this endpoint.",
            },
        ) from e
    except StoreUnavailableError as e:
        raise HTTPException(
            status_code=e.status_code,
            detail={"error": e.error_code, "message": e.message},
        ) from e
