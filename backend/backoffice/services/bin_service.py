# Overview: Bin administration and the pack-in-bin history log.

"""
Bin Assignment Tracker

WHY: A bin is the one shared, mutable slot in the lottery core. The
current occupant is stored on the pack (LotteryPack.current_bin_id), so
"what is in bin X" is always a query, and every change of that pointer is
mirrored by an append-only LotteryPackBinHistory row.

Only lifecycle_service writes current_bin_id. This module reads it and
appends history rows inside the caller's transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import LotteryBin, LotteryPack, LotteryPackBinHistory
from ..models.lottery import (
    BIN_ACTION_ACTIVATED,
    BIN_ACTION_MOVED,
    BIN_ACTION_REMOVED,
    PACK_STATUS_ACTIVE,
)
from backoffice.time_utils import utcnow
from . import audit_service
from .concurrency import atomic
from .tenant_service import require_bin_in_store, require_pack_in_store, require_store

logger = logging.getLogger(__name__)

BIN_ACTIONS = {BIN_ACTION_ACTIVATED, BIN_ACTION_MOVED, BIN_ACTION_REMOVED}


def create_bin(
    store_id: int,
    *,
    name: str,
    location: str | None = None,
    display_order: int | None = None,
    created_by: int | None = None,
) -> LotteryBin:
    """
    Create a bin. Without display_order the bin is appended after the
    store's last bin.
    """
    if not name or not name.strip():
        raise ValidationError("Bin name is required")
    if display_order is not None and display_order < 0:
        raise ValidationError("display_order cannot be negative")

    with atomic():
        store = require_store(store_id)

        if display_order is None:
            max_order = (
                db.session.query(func.max(LotteryBin.display_order))
                .filter(LotteryBin.store_id == store.id)
                .scalar()
            )
            display_order = 0 if max_order is None else max_order + 1

        lottery_bin = LotteryBin(
            store_id=store.id,
            name=name.strip(),
            location=location,
            display_order=display_order,
            is_active=True,
        )
        db.session.add(lottery_bin)
        db.session.flush()

        audit_service.append_audit_event(
            store_id=store.id,
            action=audit_service.BIN_CREATED,
            entity_type="lottery_bin",
            entity_id=lottery_bin.id,
            actor_user_id=created_by,
            new_values={"name": lottery_bin.name, "display_order": display_order},
        )

    return lottery_bin


def list_bins(store_id: int, *, include_inactive: bool = False) -> list[LotteryBin]:
    query = db.session.query(LotteryBin).filter(LotteryBin.store_id == store_id)
    if not include_inactive:
        query = query.filter(LotteryBin.is_active.is_(True))
    return query.order_by(LotteryBin.display_order.asc(), LotteryBin.id.asc()).all()


def get_active_pack_in_bin(bin_id: int) -> LotteryPack | None:
    """Current ACTIVE occupant of a bin, if any."""
    return (
        db.session.query(LotteryPack)
        .filter(
            LotteryPack.current_bin_id == bin_id,
            LotteryPack.status == PACK_STATUS_ACTIVE,
        )
        .first()
    )


def deactivate_bin(store_id: int, bin_id: int, *, deactivated_by: int | None = None) -> LotteryBin:
    """
    Take a bin out of service.

    Rejected with BIN_OCCUPIED while an ACTIVE pack sits in it; move,
    deplete or return the pack first.
    """
    with atomic():
        lottery_bin = require_bin_in_store(bin_id, store_id)
        if not lottery_bin.is_active:
            return lottery_bin

        occupant = get_active_pack_in_bin(lottery_bin.id)
        if occupant is not None:
            raise ConflictError(
                f"Bin {lottery_bin.bin_number} still holds active pack {occupant.pack_number}",
                code="BIN_OCCUPIED",
            )

        lottery_bin.is_active = False

        audit_service.append_audit_event(
            store_id=lottery_bin.store_id,
            action=audit_service.BIN_DEACTIVATED,
            entity_type="lottery_bin",
            entity_id=lottery_bin.id,
            actor_user_id=deactivated_by,
            old_values={"is_active": True},
            new_values={"is_active": False},
        )

    return lottery_bin


def record_bin_event(
    *,
    pack_id: int,
    bin_id: int,
    action: str,
    moved_by: int | None = None,
    previous_bin_id: int | None = None,
    reason: str | None = None,
    occurred_at: datetime | None = None,
) -> LotteryPackBinHistory:
    """Append a history row. No commit; the caller's transaction decides."""
    if action not in BIN_ACTIONS:
        raise ValueError(f"Unknown bin history action '{action}'")

    entry = LotteryPackBinHistory(
        pack_id=pack_id,
        bin_id=bin_id,
        previous_bin_id=previous_bin_id,
        action=action,
        moved_by_user_id=moved_by,
        reason=reason,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(entry)
    return entry


def get_pack_bin_history(pack_id: int, store_id: int) -> list[LotteryPackBinHistory]:
    """Bin history of a pack, oldest first."""
    pack = require_pack_in_store(pack_id, store_id)
    return (
        db.session.query(LotteryPackBinHistory)
        .filter(LotteryPackBinHistory.pack_id == pack.id)
        .order_by(LotteryPackBinHistory.occurred_at.asc(), LotteryPackBinHistory.id.asc())
        .all()
    )
