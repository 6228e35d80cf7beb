# Overview: Shift opening/closing recorder for lottery packs.

"""
Shift Lottery Service

WHY: Each shift is a period of accountability for one cashier. Lottery sales
are not rung up ticket by ticket; they are derived from the serial on top of
each pack when the shift opens and when it closes.

LIFECYCLE:
    open_shift          -> Shift OPEN, one LotteryShiftOpening per ACTIVE
                           pack sitting in an active bin
    get_closing_data    -> what the cashier has to count: {bins, soldPacks}
    close_shift_lottery -> LotteryShiftClosing per counted pack, variances,
                           depletion of sold-out packs, Shift CLOSED
                           (one transaction)

OPENING SERIAL of a pack for a new shift:
    1. closing serial of the most recent closing recorded for the pack
    2. else the earliest opening recorded for the pack
    3. else the pack's serial_start

IMMUTABLE: Once closed, a shift cannot be reopened.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from ..errors import ConflictError, IllegalStateTransition, ValidationError
from ..extensions import db
from ..models import (
    LotteryBin,
    LotteryGame,
    LotteryPack,
    LotteryShiftClosing,
    LotteryShiftOpening,
    Shift,
)
from ..models.lottery import (
    ENTRY_METHOD_MANUAL,
    ENTRY_METHOD_SCAN,
    PACK_STATUS_ACTIVE,
)
from ..models.shifts import SHIFT_STATUS_CLOSED, SHIFT_STATUS_OPEN
from backoffice.time_utils import utcnow
from . import audit_service
from .concurrency import atomic
from .lifecycle_service import DEPLETION_SHIFT_CLOSE, apply_depletion
from .tenant_service import (
    require_pack_in_store,
    require_shift_in_store,
    require_store,
    require_user_in_store,
)
from .variance_service import calculate_sales, compute_variance, record_variance

logger = logging.getLogger(__name__)

ENTRY_METHODS = {ENTRY_METHOD_SCAN, ENTRY_METHOD_MANUAL}


# =============================================================================
# SHARED HELPERS
# =============================================================================

def shift_opening_serial(pack: LotteryPack) -> str:
    """Serial a pack starts a new shift at (see module docstring)."""
    last_closing = (
        db.session.query(LotteryShiftClosing.closing_serial)
        .filter(LotteryShiftClosing.pack_id == pack.id)
        .order_by(LotteryShiftClosing.created_at.desc(), LotteryShiftClosing.id.desc())
        .first()
    )
    if last_closing is not None:
        return last_closing[0]

    first_opening = (
        db.session.query(LotteryShiftOpening.opening_serial)
        .filter(LotteryShiftOpening.pack_id == pack.id)
        .order_by(LotteryShiftOpening.created_at.asc(), LotteryShiftOpening.id.asc())
        .first()
    )
    if first_opening is not None:
        return first_opening[0]

    return pack.serial_start


def validate_entry_method(entry_method: str, manual_entry_authorized_by: int | None, store) -> None:
    """
    SCAN needs nothing extra. MANUAL (keyed-in serials) needs a second
    person on record who authorized it, and that person must be able to act
    in the store.
    """
    if entry_method not in ENTRY_METHODS:
        raise ValidationError(
            f"Invalid entry_method '{entry_method}'. Must be one of: {', '.join(sorted(ENTRY_METHODS))}"
        )
    if entry_method == ENTRY_METHOD_MANUAL:
        if manual_entry_authorized_by is None:
            raise ValidationError(
                "Manual entry requires manual_entry_authorized_by",
                code="MANUAL_ENTRY_UNAUTHORIZED",
            )
        require_user_in_store(manual_entry_authorized_by, store)


def reject_duplicate_packs(pack_ids: Iterable[int]) -> None:
    seen = set()
    for pack_id in pack_ids:
        if pack_id in seen:
            raise ValidationError(f"Pack {pack_id} appears more than once")
        seen.add(pack_id)


# =============================================================================
# OPEN
# =============================================================================

def open_shift(store_id: int, *, cashier_id: int, notes: str | None = None) -> Shift:
    """
    Open a shift and snapshot the opening serial of every pack on display.

    Raises:
        ConflictError: SHIFT_ALREADY_OPEN if the cashier already has an open
            shift in this store
    """
    with atomic():
        store = require_store(store_id)
        require_user_in_store(cashier_id, store)

        existing_open = (
            db.session.query(Shift)
            .filter(
                Shift.store_id == store.id,
                Shift.cashier_id == cashier_id,
                Shift.status == SHIFT_STATUS_OPEN,
            )
            .first()
        )
        if existing_open is not None:
            raise ConflictError(
                f"Cashier already has open shift {existing_open.id}",
                code="SHIFT_ALREADY_OPEN",
            )

        now = utcnow()
        shift = Shift(
            store_id=store.id,
            cashier_id=cashier_id,
            status=SHIFT_STATUS_OPEN,
            opened_at=now,
            notes=notes,
        )
        db.session.add(shift)
        db.session.flush()

        packs_on_display = (
            db.session.query(LotteryPack)
            .join(LotteryBin, LotteryPack.current_bin_id == LotteryBin.id)
            .filter(
                LotteryPack.store_id == store.id,
                LotteryPack.status == PACK_STATUS_ACTIVE,
                LotteryBin.is_active.is_(True),
            )
            .order_by(LotteryBin.display_order.asc(), LotteryPack.id.asc())
            .all()
        )
        for pack in packs_on_display:
            db.session.add(
                LotteryShiftOpening(
                    shift_id=shift.id,
                    pack_id=pack.id,
                    bin_id=pack.current_bin_id,
                    opening_serial=shift_opening_serial(pack),
                )
            )

        audit_service.append_audit_event(
            store_id=store.id,
            action=audit_service.SHIFT_OPENED,
            entity_type="shift",
            entity_id=shift.id,
            actor_user_id=cashier_id,
            new_values={"status": SHIFT_STATUS_OPEN, "openings": len(packs_on_display)},
            occurred_at=now,
        )

    return shift


def get_shift_openings(shift_id: int) -> list[LotteryShiftOpening]:
    return (
        db.session.query(LotteryShiftOpening)
        .filter(LotteryShiftOpening.shift_id == shift_id)
        .order_by(LotteryShiftOpening.id.asc())
        .all()
    )


def _opening_for_shift(shift_id: int, pack: LotteryPack) -> str:
    opening = (
        db.session.query(LotteryShiftOpening.opening_serial)
        .filter(LotteryShiftOpening.shift_id == shift_id, LotteryShiftOpening.pack_id == pack.id)
        .first()
    )
    if opening is not None:
        return opening[0]
    return shift_opening_serial(pack)


# =============================================================================
# CLOSING DATA
# =============================================================================

def get_closing_data(shift_id: int, *, store_id: int) -> dict[str, list[dict]]:
    """
    Everything a cashier needs on the close-shift screen.

    bins:      every active bin in display order, with its current pack
               (or None) and the serial the pack opened the shift at
    soldPacks: packs depleted during this shift

    Read-only; the close itself re-reads every pack inside its own
    transaction.
    """
    store = require_store(store_id)
    shift = require_shift_in_store(shift_id, store)

    bins = (
        db.session.query(LotteryBin)
        .filter(LotteryBin.store_id == store.id, LotteryBin.is_active.is_(True))
        .order_by(LotteryBin.display_order.asc(), LotteryBin.id.asc())
        .all()
    )

    bin_rows = []
    for lottery_bin in bins:
        pack = (
            db.session.query(LotteryPack)
            .filter(
                LotteryPack.current_bin_id == lottery_bin.id,
                LotteryPack.status == PACK_STATUS_ACTIVE,
            )
            .first()
        )
        pack_row = None
        if pack is not None:
            game = pack.game
            pack_row = {
                "pack_id": pack.id,
                "pack_number": pack.pack_number,
                "game_code": game.game_code,
                "game_name": game.name,
                "game_price_cents": game.price_cents,
                "starting_serial": _opening_for_shift(shift.id, pack),
                "serial_end": pack.serial_end,
            }
        bin_rows.append({
            "bin_id": lottery_bin.id,
            "bin_number": lottery_bin.bin_number,
            "name": lottery_bin.name,
            "is_active": lottery_bin.is_active,
            "pack": pack_row,
        })

    sold = (
        db.session.query(LotteryPack, LotteryGame)
        .join(LotteryGame, LotteryPack.game_id == LotteryGame.id)
        .filter(LotteryPack.store_id == store.id, LotteryPack.depleted_shift_id == shift.id)
        .order_by(LotteryPack.depleted_at.asc(), LotteryPack.id.asc())
        .all()
    )
    sold_rows = []
    for pack, game in sold:
        closing = (
            db.session.query(LotteryShiftClosing)
            .filter(LotteryShiftClosing.shift_id == shift.id, LotteryShiftClosing.pack_id == pack.id)
            .first()
        )
        sold_rows.append({
            "pack_id": pack.id,
            "pack_number": pack.pack_number,
            "game_code": game.game_code,
            "game_name": game.name,
            "game_price_cents": game.price_cents,
            "serial_start": pack.serial_start,
            "serial_end": pack.serial_end,
            "bin_id": closing.bin_id if closing is not None else None,
            "depleted_at": pack.to_dict()["depleted_at"],
            "depletion_reason": pack.depletion_reason,
        })

    return {"bins": bin_rows, "soldPacks": sold_rows}


# =============================================================================
# CLOSE
# =============================================================================

def close_shift_lottery(
    shift_id: int,
    *,
    store_id: int,
    closed_by: int,
    closings: list[dict[str, Any]],
    manual_entry_authorized_by: int | None = None,
    notes: str | None = None,
) -> dict:
    """
    Record closing serials and close the shift.

    Each closing line: {pack_id, closing_serial, entry_method="SCAN",
    reported_tickets_sold=None}.

    A closing serial equal to the pack's serial_end depletes the pack
    (reason SHIFT_CLOSE). A closing serial beyond serial_end rejects the
    whole close; nothing is written.

    Returns:
        {"shift", "closings", "variances", "depleted_pack_ids", "lottery_total_cents"}
    """
    reject_duplicate_packs(line.get("pack_id") for line in closings)

    with atomic():
        store = require_store(store_id)
        shift = require_shift_in_store(shift_id, store)
        require_user_in_store(closed_by, store)

        if shift.status != SHIFT_STATUS_OPEN:
            raise IllegalStateTransition(f"Shift {shift_id} is not open", code="SHIFT_NOT_OPEN")

        now = utcnow()
        created_closings = []
        variances = []
        depleted_pack_ids = []
        total_cents = 0

        for line in closings:
            pack = require_pack_in_store(line.get("pack_id"), store)
            if pack.status != PACK_STATUS_ACTIVE:
                raise IllegalStateTransition(
                    f"Pack {pack.pack_number} is {pack.status}, not ACTIVE",
                    code="INVALID_PACK_STATUS",
                )

            entry_method = line.get("entry_method") or ENTRY_METHOD_SCAN
            validate_entry_method(entry_method, manual_entry_authorized_by, store)

            closing_serial = line.get("closing_serial")
            opening_serial = _opening_for_shift(shift.id, pack)
            price_cents = pack.game.price_cents
            sales = calculate_sales(opening_serial, closing_serial, price_cents, serial_end=pack.serial_end)

            closing = LotteryShiftClosing(
                store_id=store.id,
                shift_id=shift.id,
                pack_id=pack.id,
                bin_id=pack.current_bin_id,
                opening_serial=opening_serial,
                closing_serial=closing_serial,
                tickets_sold=sales.tickets_sold,
                sales_amount_cents=sales.amount_cents,
                entry_method=entry_method,
                closed_by_user_id=closed_by,
                manual_entry_authorized_by_user_id=(
                    manual_entry_authorized_by if entry_method == ENTRY_METHOD_MANUAL else None
                ),
                manual_entry_authorized_at=now if entry_method == ENTRY_METHOD_MANUAL else None,
            )
            db.session.add(closing)
            created_closings.append(closing)
            total_cents += sales.amount_cents

            result = compute_variance(sales.tickets_sold, line.get("reported_tickets_sold"), price_cents)
            variance = record_variance(store_id=store.id, pack_id=pack.id, result=result, shift_id=shift.id)
            if variance is not None:
                variances.append(variance)

            if closing_serial == pack.serial_end:
                apply_depletion(
                    pack,
                    depleted_by=closed_by,
                    reason=DEPLETION_SHIFT_CLOSE,
                    shift_id=shift.id,
                    closing_serial=closing_serial,
                    occurred_at=now,
                )
                depleted_pack_ids.append(pack.id)

        updated = (
            db.session.query(Shift)
            .filter(Shift.id == shift.id, Shift.status == SHIFT_STATUS_OPEN)
            .update(
                {
                    "status": SHIFT_STATUS_CLOSED,
                    "closed_at": now,
                    "closed_by_user_id": closed_by,
                    "notes": notes if notes is not None else shift.notes,
                },
                synchronize_session=False,
            )
        )
        if updated == 0:
            raise ConflictError(f"Shift {shift_id} was closed concurrently", code="CONCURRENT_MODIFICATION")

        audit_service.append_audit_event(
            store_id=store.id,
            action=audit_service.SHIFT_LOTTERY_CLOSED,
            entity_type="shift",
            entity_id=shift.id,
            actor_user_id=closed_by,
            old_values={"status": SHIFT_STATUS_OPEN},
            new_values={
                "status": SHIFT_STATUS_CLOSED,
                "closings": len(created_closings),
                "variances": len(variances),
                "depleted_pack_ids": depleted_pack_ids,
                "lottery_total_cents": total_cents,
            },
            occurred_at=now,
        )

    db.session.refresh(shift)
    logger.info("Shift %s closed with %s lottery closings", shift.id, len(created_closings))

    return {
        "shift": shift.to_dict(),
        "closings": [closing.to_dict() for closing in created_closings],
        "variances": [variance.to_dict() for variance in variances],
        "depleted_pack_ids": depleted_pack_ids,
        "lottery_total_cents": total_cents,
    }
