# Overview: Pack lifecycle state machine; every status change of a lottery pack goes through here.

"""
Lottery Pack Lifecycle Service

================================================================================
PURPOSE: Enforce RECEIVED -> ACTIVE -> DEPLETED / RETURNED for lottery packs
================================================================================

STATE MACHINE:
    RECEIVED -> ACTIVE -> DEPLETED
    RECEIVED -> RETURNED
    ACTIVE   -> RETURNED

    RECEIVED: In the back room, not sellable, no bin
    ACTIVE:   On display in a bin (or evicted and waiting for a decision)
    DEPLETED: Sold out. Terminal
    RETURNED: Sent back to the supplier. Terminal

RULES (NON-NEGOTIABLE):
1. Status is changed ONLY through conditional updates keyed on the expected
   prior status (UPDATE ... WHERE status = 'RECEIVED'). Zero affected rows
   means someone else got there first -> ConflictError, never an overwrite.
2. A bin holds at most one ACTIVE pack. Activating into an occupied bin
   evicts the occupant (current_bin_id -> NULL, history REMOVED) in the
   same transaction. Writers of a bin's slot lock the bin row first
   (SELECT ... FOR UPDATE) so two packs cannot both claim it.
3. Every referenced record (pack, bin, shift, cashier) must belong to the
   operation's store before anything is written.
4. Each transition writes bin history and one audit event in the same
   transaction as the status change.

IDEMPOTENCY:
    Activating a pack that is already ACTIVE in the same bin by the same
    cashier is a no-op success (client retry). Any other activation of an
    ACTIVE pack is PACK_ALREADY_ACTIVE.

================================================================================
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..errors import ConflictError, IllegalStateTransition, ValidationError
from ..extensions import db
from ..models import LotteryBin, LotteryPack, LotteryShiftOpening, Shift
from ..models.lottery import (
    BIN_ACTION_ACTIVATED,
    BIN_ACTION_MOVED,
    BIN_ACTION_REMOVED,
    PACK_STATUS_ACTIVE,
    PACK_STATUS_DEPLETED,
    PACK_STATUS_RECEIVED,
    PACK_STATUS_RETURNED,
)
from ..models.shifts import SHIFT_STATUS_OPEN
from backoffice.time_utils import utcnow
from . import audit_service
from .bin_service import get_active_pack_in_bin, record_bin_event
from .concurrency import atomic, lock_for_update, run_with_retry
from .serial_service import parse_serial
from .tenant_service import (
    require_bin_in_store,
    require_pack_in_store,
    require_shift_in_store,
    require_store,
    require_user_in_store,
)

logger = logging.getLogger(__name__)


# Valid lifecycle states (must match models/lottery.py)
VALID_STATUSES = {PACK_STATUS_RECEIVED, PACK_STATUS_ACTIVE, PACK_STATUS_DEPLETED, PACK_STATUS_RETURNED}

TERMINAL_STATUSES = {PACK_STATUS_DEPLETED, PACK_STATUS_RETURNED}

VALID_TRANSITIONS = {
    (PACK_STATUS_RECEIVED, PACK_STATUS_ACTIVE),
    (PACK_STATUS_ACTIVE, PACK_STATUS_DEPLETED),
    (PACK_STATUS_RECEIVED, PACK_STATUS_RETURNED),
    (PACK_STATUS_ACTIVE, PACK_STATUS_RETURNED),
}

# Depletion reasons
DEPLETION_SHIFT_CLOSE = "SHIFT_CLOSE"
DEPLETION_AUTO_REPLACED = "AUTO_REPLACED"
DEPLETION_MANUAL_SOLD_OUT = "MANUAL_SOLD_OUT"
DEPLETION_POS_LAST_TICKET = "POS_LAST_TICKET"
DEPLETION_REASONS = {
    DEPLETION_SHIFT_CLOSE,
    DEPLETION_AUTO_REPLACED,
    DEPLETION_MANUAL_SOLD_OUT,
    DEPLETION_POS_LAST_TICKET,
}

# Return reasons
RETURN_REASONS = {
    "SUPPLIER_RECALL",
    "DAMAGED",
    "EXPIRED",
    "INVENTORY_ADJUSTMENT",
    "STORE_CLOSURE",
}


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """
    Check if a pack status transition is allowed.

    Same-state transitions are reported as not allowed; the one idempotent
    case (re-activating into the same bin) is decided by activate_pack.
    """
    validate_status(from_status)
    validate_status(to_status)
    return (from_status, to_status) in VALID_TRANSITIONS


def _pack_snapshot(pack: LotteryPack) -> dict:
    return {
        "status": pack.status,
        "current_bin_id": pack.current_bin_id,
        "activated_by_user_id": pack.activated_by_user_id,
        "activated_shift_id": pack.activated_shift_id,
    }


def _require_open_shift(shift_id: int | None, store) -> Shift | None:
    if shift_id is None:
        return None
    shift = require_shift_in_store(shift_id, store)
    if shift.status != SHIFT_STATUS_OPEN:
        raise IllegalStateTransition(f"Shift {shift_id} is not open", code="SHIFT_NOT_OPEN")
    return shift


def _lock_bin(bin_id: int) -> LotteryBin:
    """Re-read a bin under a row lock before its current pack is decided."""
    return lock_for_update(db.session.query(LotteryBin).filter(LotteryBin.id == bin_id)).one()


def _bin_payload(lottery_bin: LotteryBin, pack: LotteryPack | None) -> dict:
    payload = lottery_bin.to_dict()
    payload["pack"] = pack.to_dict() if pack is not None else None
    return payload


# =============================================================================
# ACTIVATE
# =============================================================================

def activate_pack(
    pack_id: int,
    *,
    store_id: int,
    bin_id: int,
    activated_by: int,
    shift_id: int | None = None,
    serial_start: str | None = None,
) -> dict:
    """
    RECEIVED -> ACTIVE, placing the pack into a bin.

    Args:
        serial_start: opening serial recorded for the shift (defaults to the
            pack's serial_start). Ignored when no shift is given.
        shift_id: may be None when no shift is open; the pack is then
            activated without a shift opening.

    Returns:
        {"updatedBin": {...bin, "pack": {...}}, "previousPack": {...} | None}

    Raises:
        ConflictError: PACK_ALREADY_ACTIVE, CONCURRENT_MODIFICATION
        IllegalStateTransition: INVALID_PACK_STATUS, SHIFT_NOT_OPEN
        ValidationError: CROSS_STORE_REFERENCE, SERIAL_OUT_OF_RANGE, inactive bin
        NotFoundError: pack, bin, shift or user missing
    """

    def _activate() -> dict:
        with atomic():
            store = require_store(store_id)
            pack = require_pack_in_store(pack_id, store)
            lottery_bin = require_bin_in_store(bin_id, store)
            require_user_in_store(activated_by, store)
            shift = _require_open_shift(shift_id, store)

            if not lottery_bin.is_active:
                raise ValidationError(f"Bin {lottery_bin.bin_number} is inactive")

            opening_serial = serial_start if serial_start is not None else pack.serial_start
            if not (parse_serial(pack.serial_start) <= parse_serial(opening_serial) <= parse_serial(pack.serial_end)):
                raise ValidationError(
                    f"Serial {opening_serial} is outside pack range {pack.serial_start}-{pack.serial_end}",
                    code="SERIAL_OUT_OF_RANGE",
                )

            if pack.status == PACK_STATUS_ACTIVE:
                if pack.current_bin_id == lottery_bin.id and pack.activated_by_user_id == activated_by:
                    return {"pack_id": pack.id, "bin_id": lottery_bin.id, "previous_pack_id": None}
                raise ConflictError(
                    f"Pack {pack.pack_number} is already active",
                    code="PACK_ALREADY_ACTIVE",
                )
            if pack.status != PACK_STATUS_RECEIVED:
                raise IllegalStateTransition(
                    f"Cannot activate pack in status {pack.status}",
                    code="INVALID_PACK_STATUS",
                )

            old_values = _pack_snapshot(pack)
            now = utcnow()

            # Held until commit; concurrent activations into this bin queue here
            lottery_bin = _lock_bin(lottery_bin.id)

            # Compare-and-swap: only one activation of a RECEIVED pack can win
            updated = (
                db.session.query(LotteryPack)
                .filter(LotteryPack.id == pack.id, LotteryPack.status == PACK_STATUS_RECEIVED)
                .update(
                    {
                        "status": PACK_STATUS_ACTIVE,
                        "current_bin_id": lottery_bin.id,
                        "activated_at": now,
                        "activated_by_user_id": activated_by,
                        "activated_shift_id": shift.id if shift else None,
                    },
                    synchronize_session=False,
                )
            )
            if updated == 0:
                logger.info("Lost activation race for pack %s", pack.id)
                raise ConflictError(
                    f"Pack {pack.pack_number} was modified concurrently",
                    code="CONCURRENT_MODIFICATION",
                )

            previous = (
                db.session.query(LotteryPack)
                .filter(
                    LotteryPack.current_bin_id == lottery_bin.id,
                    LotteryPack.status == PACK_STATUS_ACTIVE,
                    LotteryPack.id != pack.id,
                )
                .first()
            )
            previous_pack_id = None
            if previous is not None:
                evicted = (
                    db.session.query(LotteryPack)
                    .filter(
                        LotteryPack.id == previous.id,
                        LotteryPack.current_bin_id == lottery_bin.id,
                    )
                    .update({"current_bin_id": None}, synchronize_session=False)
                )
                if evicted == 0:
                    raise ConflictError(
                        f"Bin {lottery_bin.bin_number} was modified concurrently",
                        code="CONCURRENT_MODIFICATION",
                    )
                record_bin_event(
                    pack_id=previous.id,
                    bin_id=lottery_bin.id,
                    action=BIN_ACTION_REMOVED,
                    moved_by=activated_by,
                    reason=f"Replaced by pack {pack.pack_number}",
                    occurred_at=now,
                )
                previous_pack_id = previous.id

            record_bin_event(
                pack_id=pack.id,
                bin_id=lottery_bin.id,
                action=BIN_ACTION_ACTIVATED,
                moved_by=activated_by,
                occurred_at=now,
            )

            if shift is not None:
                db.session.add(
                    LotteryShiftOpening(
                        shift_id=shift.id,
                        pack_id=pack.id,
                        bin_id=lottery_bin.id,
                        opening_serial=opening_serial,
                    )
                )

            audit_service.append_audit_event(
                store_id=store.id,
                action=audit_service.PACK_ACTIVATED,
                entity_type="lottery_pack",
                entity_id=pack.id,
                actor_user_id=activated_by,
                old_values=old_values,
                new_values={
                    "status": PACK_STATUS_ACTIVE,
                    "current_bin_id": lottery_bin.id,
                    "activated_by_user_id": activated_by,
                    "activated_shift_id": shift.id if shift else None,
                    "previous_pack_id": previous_pack_id,
                },
                occurred_at=now,
            )

            return {"pack_id": pack.id, "bin_id": lottery_bin.id, "previous_pack_id": previous_pack_id}

    result = run_with_retry(_activate)

    lottery_bin = db.session.get(LotteryBin, result["bin_id"])
    pack = db.session.get(LotteryPack, result["pack_id"])
    previous = (
        db.session.get(LotteryPack, result["previous_pack_id"])
        if result["previous_pack_id"] is not None
        else None
    )
    return {
        "updatedBin": _bin_payload(lottery_bin, pack),
        "previousPack": previous.to_dict() if previous is not None else None,
    }


# =============================================================================
# DEPLETE
# =============================================================================

def apply_depletion(
    pack: LotteryPack,
    *,
    depleted_by: int | None,
    reason: str,
    shift_id: int | None = None,
    closing_serial: str | None = None,
    occurred_at: datetime | None = None,
) -> None:
    """
    ACTIVE -> DEPLETED inside the caller's transaction.

    Used directly by shift close and day-close commit, which already hold a
    transaction covering all of their packs.
    """
    if reason not in DEPLETION_REASONS:
        raise ValidationError(
            f"Invalid depletion reason '{reason}'. Must be one of: {', '.join(sorted(DEPLETION_REASONS))}"
        )
    if pack.status != PACK_STATUS_ACTIVE:
        raise IllegalStateTransition(
            f"Cannot deplete pack {pack.pack_number} in status {pack.status}",
            code="INVALID_PACK_STATUS",
        )
    if closing_serial is not None and parse_serial(closing_serial) > parse_serial(pack.serial_end):
        raise ValidationError(
            f"Closing serial {closing_serial} exceeds pack serial_end {pack.serial_end}",
            code="SERIAL_OUT_OF_RANGE",
        )

    now = occurred_at or utcnow()
    previous_bin_id = pack.current_bin_id

    updated = (
        db.session.query(LotteryPack)
        .filter(LotteryPack.id == pack.id, LotteryPack.status == PACK_STATUS_ACTIVE)
        .update(
            {
                "status": PACK_STATUS_DEPLETED,
                "current_bin_id": None,
                "depleted_at": now,
                "depleted_by_user_id": depleted_by,
                "depleted_shift_id": shift_id,
                "depletion_reason": reason,
            },
            synchronize_session=False,
        )
    )
    if updated == 0:
        raise ConflictError(
            f"Pack {pack.pack_number} was modified concurrently",
            code="CONCURRENT_MODIFICATION",
        )

    if previous_bin_id is not None:
        record_bin_event(
            pack_id=pack.id,
            bin_id=previous_bin_id,
            action=BIN_ACTION_REMOVED,
            moved_by=depleted_by,
            reason=f"Depleted ({reason})",
            occurred_at=now,
        )

    audit_service.append_audit_event(
        store_id=pack.store_id,
        action=audit_service.PACK_DEPLETED,
        entity_type="lottery_pack",
        entity_id=pack.id,
        actor_user_id=depleted_by,
        old_values={"status": PACK_STATUS_ACTIVE, "current_bin_id": previous_bin_id},
        new_values={
            "status": PACK_STATUS_DEPLETED,
            "depletion_reason": reason,
            "depleted_shift_id": shift_id,
            "closing_serial": closing_serial,
        },
        occurred_at=now,
    )


def deplete_pack(
    pack_id: int,
    *,
    store_id: int,
    depleted_by: int,
    reason: str = DEPLETION_MANUAL_SOLD_OUT,
    shift_id: int | None = None,
    closing_serial: str | None = None,
) -> LotteryPack:
    """
    Explicit sold-out operation.

    A closing serial beyond serial_end raises SERIAL_OUT_OF_RANGE and the
    pack stays ACTIVE.
    """
    with atomic():
        store = require_store(store_id)
        pack = require_pack_in_store(pack_id, store)
        require_user_in_store(depleted_by, store)
        if shift_id is not None:
            require_shift_in_store(shift_id, store)

        apply_depletion(
            pack,
            depleted_by=depleted_by,
            reason=reason,
            shift_id=shift_id,
            closing_serial=closing_serial,
        )

    db.session.refresh(pack)
    return pack


# =============================================================================
# RETURN
# =============================================================================

def return_pack(
    pack_id: int,
    *,
    store_id: int,
    returned_by: int,
    return_reason: str,
    return_notes: str | None = None,
    last_sold_serial: str | None = None,
    tickets_sold_on_return: int | None = None,
    shift_id: int | None = None,
) -> LotteryPack:
    """
    RECEIVED or ACTIVE -> RETURNED.

    When only last_sold_serial is given, tickets_sold_on_return is derived
    as the count of tickets from serial_start through last_sold_serial.
    """
    if return_reason not in RETURN_REASONS:
        raise ValidationError(
            f"Invalid return reason '{return_reason}'. Must be one of: {', '.join(sorted(RETURN_REASONS))}"
        )
    if tickets_sold_on_return is not None and tickets_sold_on_return < 0:
        raise ValidationError("tickets_sold_on_return cannot be negative")

    with atomic():
        store = require_store(store_id)
        pack = require_pack_in_store(pack_id, store)
        require_user_in_store(returned_by, store)
        if shift_id is not None:
            require_shift_in_store(shift_id, store)

        if pack.status not in (PACK_STATUS_RECEIVED, PACK_STATUS_ACTIVE):
            raise IllegalStateTransition(
                f"Cannot return pack {pack.pack_number} in status {pack.status}",
                code="INVALID_PACK_STATUS",
            )

        if last_sold_serial is not None:
            last = parse_serial(last_sold_serial)
            if not (parse_serial(pack.serial_start) <= last <= parse_serial(pack.serial_end)):
                raise ValidationError(
                    f"last_sold_serial {last_sold_serial} is outside pack range {pack.serial_start}-{pack.serial_end}",
                    code="SERIAL_OUT_OF_RANGE",
                )
            if tickets_sold_on_return is None:
                tickets_sold_on_return = last - parse_serial(pack.serial_start) + 1

        pack_size = parse_serial(pack.serial_end) - parse_serial(pack.serial_start) + 1
        if tickets_sold_on_return is not None and tickets_sold_on_return > pack_size:
            raise ValidationError(
                f"tickets_sold_on_return {tickets_sold_on_return} exceeds pack size {pack_size}",
                code="SERIAL_OUT_OF_RANGE",
            )

        prior_status = pack.status
        previous_bin_id = pack.current_bin_id
        now = utcnow()

        updated = (
            db.session.query(LotteryPack)
            .filter(LotteryPack.id == pack.id, LotteryPack.status == prior_status)
            .update(
                {
                    "status": PACK_STATUS_RETURNED,
                    "current_bin_id": None,
                    "returned_at": now,
                    "returned_by_user_id": returned_by,
                    "returned_shift_id": shift_id,
                    "return_reason": return_reason,
                    "return_notes": return_notes,
                    "last_sold_serial": last_sold_serial,
                    "tickets_sold_on_return": tickets_sold_on_return,
                },
                synchronize_session=False,
            )
        )
        if updated == 0:
            raise ConflictError(
                f"Pack {pack.pack_number} was modified concurrently",
                code="CONCURRENT_MODIFICATION",
            )

        if previous_bin_id is not None:
            record_bin_event(
                pack_id=pack.id,
                bin_id=previous_bin_id,
                action=BIN_ACTION_REMOVED,
                moved_by=returned_by,
                reason=f"Returned ({return_reason})",
                occurred_at=now,
            )

        audit_service.append_audit_event(
            store_id=store.id,
            action=audit_service.PACK_RETURNED,
            entity_type="lottery_pack",
            entity_id=pack.id,
            actor_user_id=returned_by,
            old_values={"status": prior_status, "current_bin_id": previous_bin_id},
            new_values={
                "status": PACK_STATUS_RETURNED,
                "return_reason": return_reason,
                "last_sold_serial": last_sold_serial,
                "tickets_sold_on_return": tickets_sold_on_return,
            },
            reason=return_notes,
            occurred_at=now,
        )

    db.session.refresh(pack)
    return pack


# =============================================================================
# MOVE
# =============================================================================

def move_pack(
    pack_id: int,
    *,
    store_id: int,
    to_bin_id: int,
    moved_by: int,
    reason: str | None = None,
) -> LotteryPack:
    """
    Move an ACTIVE pack to another bin. Status is unchanged.

    An evicted pack (ACTIVE, no bin) may be moved back into a bin; its
    history row then has no previous_bin_id.
    """
    with atomic():
        store = require_store(store_id)
        pack = require_pack_in_store(pack_id, store)
        target = require_bin_in_store(to_bin_id, store)
        require_user_in_store(moved_by, store)

        if pack.status != PACK_STATUS_ACTIVE:
            raise IllegalStateTransition(
                f"Cannot move pack {pack.pack_number} in status {pack.status}",
                code="INVALID_PACK_STATUS",
            )
        if not target.is_active:
            raise ValidationError(f"Bin {target.bin_number} is inactive")
        if pack.current_bin_id == target.id:
            return pack

        target = _lock_bin(target.id)
        occupant = get_active_pack_in_bin(target.id)
        if occupant is not None:
            raise ConflictError(
                f"Bin {target.bin_number} already holds pack {occupant.pack_number}",
                code="BIN_OCCUPIED",
            )

        from_bin_id = pack.current_bin_id
        now = utcnow()

        query = db.session.query(LotteryPack).filter(
            LotteryPack.id == pack.id,
            LotteryPack.status == PACK_STATUS_ACTIVE,
        )
        if from_bin_id is None:
            query = query.filter(LotteryPack.current_bin_id.is_(None))
        else:
            query = query.filter(LotteryPack.current_bin_id == from_bin_id)
        updated = query.update({"current_bin_id": target.id}, synchronize_session=False)
        if updated == 0:
            raise ConflictError(
                f"Pack {pack.pack_number} was modified concurrently",
                code="CONCURRENT_MODIFICATION",
            )

        record_bin_event(
            pack_id=pack.id,
            bin_id=target.id,
            previous_bin_id=from_bin_id,
            action=BIN_ACTION_MOVED,
            moved_by=moved_by,
            reason=reason,
            occurred_at=now,
        )

        audit_service.append_audit_event(
            store_id=store.id,
            action=audit_service.PACK_MOVED,
            entity_type="lottery_pack",
            entity_id=pack.id,
            actor_user_id=moved_by,
            old_values={"current_bin_id": from_bin_id},
            new_values={"current_bin_id": target.id},
            reason=reason,
            occurred_at=now,
        )

    db.session.refresh(pack)
    return pack
