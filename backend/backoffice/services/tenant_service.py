# Overview: Store ownership checks shared by every lottery operation.

"""
Multi-Tenant Service: Ownership Validation Helpers

WHY: Every lottery transition references several records (pack, bin, shift,
cashier). Each one must belong to the store the operation runs in before
anything is mutated. Centralizing the checks keeps the error semantics
identical across services.

RULES:
1. Missing record -> NotFoundError with a refined code (PACK_NOT_FOUND, ...)
2. Record in another organization -> NotFoundError as well. The caller must
   not learn that the id exists in some other tenant.
3. Record in the same organization but another store ->
   ValidationError CROSS_STORE_REFERENCE. Never silently reassigned.
4. Users with no home store (org-level staff) may act in any store of
   their organization.

USAGE:
    from backoffice.services.tenant_service import require_store, require_pack_in_store

    store = require_store(store_id)
    pack = require_pack_in_store(pack_id, store)
"""

from __future__ import annotations

import logging

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import LotteryBin, LotteryPack, Shift, Store, User

logger = logging.getLogger(__name__)


def require_store(store_id: int) -> Store:
    """Load a store or raise NotFoundError STORE_NOT_FOUND."""
    store = db.session.get(Store, store_id) if store_id is not None else None
    if store is None:
        raise NotFoundError(f"Store {store_id} not found", code="STORE_NOT_FOUND")
    return store


def _as_store(store: Store | int) -> Store:
    return store if isinstance(store, Store) else require_store(store)


def _require_owned(model, entity_id: int, store: Store, label: str, code: str):
    entity = db.session.get(model, entity_id) if entity_id is not None else None
    if entity is None:
        raise NotFoundError(f"{label} {entity_id} not found", code=code)

    if entity.store_id == store.id:
        return entity

    owner = db.session.get(Store, entity.store_id)
    if owner is None or owner.org_id != store.org_id:
        # SECURITY: other tenant's records look exactly like missing ones
        logger.warning(
            "Cross-tenant reference rejected: %s %s requested from store %s",
            label, entity_id, store.id,
        )
        raise NotFoundError(f"{label} {entity_id} not found", code=code)

    raise ValidationError(
        f"{label} {entity_id} belongs to store {entity.store_id}, not store {store.id}",
        code="CROSS_STORE_REFERENCE",
    )


def require_pack_in_store(pack_id: int, store: Store | int) -> LotteryPack:
    return _require_owned(LotteryPack, pack_id, _as_store(store), "Pack", "PACK_NOT_FOUND")


def require_bin_in_store(bin_id: int, store: Store | int) -> LotteryBin:
    return _require_owned(LotteryBin, bin_id, _as_store(store), "Bin", "BIN_NOT_FOUND")


def require_shift_in_store(shift_id: int, store: Store | int) -> Shift:
    return _require_owned(Shift, shift_id, _as_store(store), "Shift", "SHIFT_NOT_FOUND")


def require_user_in_store(user_id: int, store: Store | int) -> User:
    """
    Validate that a user may act in the given store.

    Org-level users (store_id NULL) are accepted for any store of their
    organization; store-bound users only for their own store.
    """
    store = _as_store(store)
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None or not user.is_active or user.org_id != store.org_id:
        raise NotFoundError(f"User {user_id} not found", code="USER_NOT_FOUND")

    if user.store_id is not None and user.store_id != store.id:
        raise ValidationError(
            f"User {user_id} is assigned to store {user.store_id}, not store {store.id}",
            code="CROSS_STORE_REFERENCE",
        )
    return user
