# Overview: Two-phase (prepare / commit / cancel) lottery day close.

"""
Lottery Day-Close Service

================================================================================
PURPOSE: Close a store's lottery business day across every pack in one step
================================================================================

STATE MACHINE (LotteryBusinessDay):
    OPEN -> PENDING_CLOSE     prepare_day_close
    PENDING_CLOSE -> CLOSED   commit_day_close
    PENDING_CLOSE -> OPEN     cancel_day_close, or expiry

PREPARE:
    Validates every submitted ending serial against its pack (ownership,
    ACTIVE status, starting serial <= ending serial <= serial_end, entry
    method, manual-entry authorization) and stores the lines in a
    LotteryDayCloseStaging row with expires_at. No pack, shift or closing
    record is touched.

COMMIT:
    If the staging row has expired, it is marked EXPIRED, the day returns
    to OPEN (committed), and the caller gets PENDING_EXPIRED. Otherwise one
    transaction writes every closing, variance and depletion, marks the day
    CLOSED and the staging COMMITTED. Any failing pack rolls back all of it.

CANCEL:
    Marks the staging CANCELLED and returns the day to OPEN. Always safe.

CONCURRENCY:
    The day status moves only through conditional updates keyed on the
    expected prior status, so two prepares (or two commits) of the same day
    cannot both succeed.

STARTING SERIAL of a pack for a day:
    1. ending serial recorded by the most recent closed day
    2. else the earliest shift opening of the pack
    3. else serial_start
================================================================================
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, IllegalStateTransition, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    LotteryBin,
    LotteryBusinessDay,
    LotteryDayCloseStaging,
    LotteryPack,
    LotteryShiftClosing,
    LotteryShiftOpening,
    Shift,
)
from ..models.day_close import (
    DAY_STATUS_CLOSED,
    DAY_STATUS_OPEN,
    DAY_STATUS_PENDING_CLOSE,
    STAGING_STATUS_CANCELLED,
    STAGING_STATUS_COMMITTED,
    STAGING_STATUS_EXPIRED,
    STAGING_STATUS_PENDING,
)
from ..models.lottery import ENTRY_METHOD_MANUAL, ENTRY_METHOD_SCAN, PACK_STATUS_ACTIVE
from ..models.shifts import SHIFT_STATUS_OPEN
from backoffice.time_utils import to_utc_z, utcnow
from . import audit_service
from .concurrency import atomic, lock_for_update, run_with_retry
from .lifecycle_service import DEPLETION_SHIFT_CLOSE, apply_depletion
from .shift_service import reject_duplicate_packs, validate_entry_method
from .tenant_service import (
    require_pack_in_store,
    require_shift_in_store,
    require_store,
    require_user_in_store,
)
from .variance_service import calculate_sales, compute_variance, record_variance

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_MINUTES = 60
MIN_EXPIRY_MINUTES = 5
MAX_EXPIRY_MINUTES = 120


def _config_int(key: str, default: int) -> int:
    if has_app_context():
        return int(current_app.config.get(key, default))
    return default


def resolve_expiry_minutes(expires_in_minutes: int | None) -> int:
    minimum = _config_int("DAY_CLOSE_MIN_EXPIRY_MINUTES", MIN_EXPIRY_MINUTES)
    maximum = _config_int("DAY_CLOSE_MAX_EXPIRY_MINUTES", MAX_EXPIRY_MINUTES)
    if expires_in_minutes is None:
        return _config_int("DAY_CLOSE_DEFAULT_EXPIRY_MINUTES", DEFAULT_EXPIRY_MINUTES)
    if not isinstance(expires_in_minutes, int) or not (minimum <= expires_in_minutes <= maximum):
        raise ValidationError(f"Expiry must be between {minimum} and {maximum} minutes")
    return expires_in_minutes


# =============================================================================
# LOOKUPS
# =============================================================================

def _find_day(store_id: int, business_date: date, *, for_update: bool = False) -> LotteryBusinessDay | None:
    query = db.session.query(LotteryBusinessDay).filter(
        LotteryBusinessDay.store_id == store_id,
        LotteryBusinessDay.business_date == business_date,
    )
    if for_update:
        query = lock_for_update(query)
    return query.first()


def _get_or_create_day(store_id: int, business_date: date, opened_by: int | None) -> LotteryBusinessDay:
    day = _find_day(store_id, business_date)
    if day is not None:
        return day

    day = LotteryBusinessDay(
        store_id=store_id,
        business_date=business_date,
        status=DAY_STATUS_OPEN,
        opened_by_user_id=opened_by,
    )
    try:
        with db.session.begin_nested():
            db.session.add(day)
    except IntegrityError:
        # Created by a concurrent request
        day = _find_day(store_id, business_date)
    return day


def _pending_staging(day_id: int) -> LotteryDayCloseStaging | None:
    return (
        db.session.query(LotteryDayCloseStaging)
        .filter(
            LotteryDayCloseStaging.day_id == day_id,
            LotteryDayCloseStaging.status == STAGING_STATUS_PENDING,
        )
        .order_by(LotteryDayCloseStaging.id.desc())
        .first()
    )


def _resolve_staging(
    staging: LotteryDayCloseStaging,
    *,
    to_status: str,
    day_status: str,
    now: datetime,
) -> bool:
    """
    Move a PENDING staging to to_status and its day from PENDING_CLOSE to
    day_status. Returns False when someone else resolved it first.
    """
    resolved = (
        db.session.query(LotteryDayCloseStaging)
        .filter(
            LotteryDayCloseStaging.id == staging.id,
            LotteryDayCloseStaging.status == STAGING_STATUS_PENDING,
        )
        .update({"status": to_status, "resolved_at": now}, synchronize_session=False)
    )
    if resolved == 0:
        return False

    day_values = {"status": day_status}
    if day_status == DAY_STATUS_CLOSED:
        day_values["closed_at"] = now
    db.session.query(LotteryBusinessDay).filter(
        LotteryBusinessDay.id == staging.day_id,
        LotteryBusinessDay.status == DAY_STATUS_PENDING_CLOSE,
    ).update(day_values, synchronize_session=False)
    return True


def day_starting_serial(pack: LotteryPack) -> str:
    """Serial a pack starts the business day at (see module docstring)."""
    last_day_closing = (
        db.session.query(LotteryShiftClosing.closing_serial)
        .join(LotteryBusinessDay, LotteryShiftClosing.day_id == LotteryBusinessDay.id)
        .filter(
            LotteryShiftClosing.pack_id == pack.id,
            LotteryBusinessDay.status == DAY_STATUS_CLOSED,
        )
        .order_by(LotteryBusinessDay.business_date.desc(), LotteryShiftClosing.id.desc())
        .first()
    )
    if last_day_closing is not None:
        return last_day_closing[0]

    first_opening = (
        db.session.query(LotteryShiftOpening.opening_serial)
        .filter(LotteryShiftOpening.pack_id == pack.id)
        .order_by(LotteryShiftOpening.created_at.asc(), LotteryShiftOpening.id.asc())
        .first()
    )
    if first_opening is not None:
        return first_opening[0]

    return pack.serial_start


def _bin_number(bin_id: int | None) -> int | None:
    if bin_id is None:
        return None
    lottery_bin = db.session.get(LotteryBin, bin_id)
    return lottery_bin.bin_number if lottery_bin is not None else None


# =============================================================================
# PREPARE
# =============================================================================

def prepare_day_close(
    store_id: int,
    *,
    closings: list[dict[str, Any]],
    initiated_by: int,
    business_date: date | None = None,
    manual_entry_authorized_by: int | None = None,
    current_shift_id: int | None = None,
    expires_in_minutes: int | None = None,
) -> dict:
    """
    Phase 1: validate and stage the day's ending serials.

    Each closing line: {pack_id, ending_serial, entry_method="SCAN",
    reported_tickets_sold=None}.

    Raises:
        ConflictError: DAY_CLOSE_PENDING (unexpired staging outstanding)
        IllegalStateTransition: DAY_ALREADY_CLOSED, SHIFTS_STILL_OPEN,
            INVALID_PACK_STATUS, SHIFT_NOT_OPEN
        ValidationError: SERIAL_OUT_OF_RANGE, MANUAL_ENTRY_UNAUTHORIZED,
            CROSS_STORE_REFERENCE, bad expiry window
    """
    minutes = resolve_expiry_minutes(expires_in_minutes)
    reject_duplicate_packs(line.get("pack_id") for line in closings)

    def _prepare() -> dict:
        with atomic():
            store = require_store(store_id)
            require_user_in_store(initiated_by, store)
            if current_shift_id is not None:
                current_shift = require_shift_in_store(current_shift_id, store)
                if current_shift.status != SHIFT_STATUS_OPEN:
                    raise IllegalStateTransition(
                        f"Shift {current_shift_id} is not open", code="SHIFT_NOT_OPEN"
                    )

            now = utcnow()
            day_date = business_date or now.date()
            day = _get_or_create_day(store.id, day_date, initiated_by)

            if day.status == DAY_STATUS_CLOSED:
                raise IllegalStateTransition(
                    f"Business day {day_date.isoformat()} is already closed",
                    code="DAY_ALREADY_CLOSED",
                )
            if day.status == DAY_STATUS_PENDING_CLOSE:
                pending = _pending_staging(day.id)
                if pending is not None and pending.expires_at > now:
                    raise ConflictError(
                        f"A day close is already pending until {to_utc_z(pending.expires_at)}",
                        code="DAY_CLOSE_PENDING",
                    )
                if pending is not None:
                    _resolve_staging(pending, to_status=STAGING_STATUS_EXPIRED, day_status=DAY_STATUS_OPEN, now=now)
                    logger.info("Expired stale day-close staging %s for day %s", pending.id, day.id)
                else:
                    db.session.query(LotteryBusinessDay).filter(
                        LotteryBusinessDay.id == day.id,
                        LotteryBusinessDay.status == DAY_STATUS_PENDING_CLOSE,
                    ).update({"status": DAY_STATUS_OPEN}, synchronize_session=False)

            open_shifts_query = db.session.query(Shift).filter(
                Shift.store_id == store.id,
                Shift.status == SHIFT_STATUS_OPEN,
            )
            if current_shift_id is not None:
                open_shifts_query = open_shifts_query.filter(Shift.id != current_shift_id)
            open_shift_ids = [shift.id for shift in open_shifts_query.all()]
            if open_shift_ids:
                raise IllegalStateTransition(
                    f"Close open shifts before closing the day: {open_shift_ids}",
                    code="SHIFTS_STILL_OPEN",
                    details={"open_shift_ids": open_shift_ids},
                )

            staged_lines = []
            bins_preview = []
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

                reported = line.get("reported_tickets_sold")
                if reported is not None and (not isinstance(reported, int) or reported < 0):
                    raise ValidationError("reported_tickets_sold must be a non-negative integer")

                ending_serial = line.get("ending_serial")
                starting_serial = day_starting_serial(pack)
                sales = calculate_sales(starting_serial, ending_serial, pack.game.price_cents, serial_end=pack.serial_end)
                total_cents += sales.amount_cents

                staged_lines.append({
                    "pack_id": pack.id,
                    "bin_id": pack.current_bin_id,
                    "starting_serial": starting_serial,
                    "ending_serial": ending_serial,
                    "entry_method": entry_method,
                    "reported_tickets_sold": reported,
                })
                bins_preview.append({
                    "bin_id": pack.current_bin_id,
                    "bin_number": _bin_number(pack.current_bin_id),
                    "pack_id": pack.id,
                    "pack_number": pack.pack_number,
                    "game_name": pack.game.name,
                    "starting_serial": starting_serial,
                    "ending_serial": ending_serial,
                    "tickets_sold": sales.tickets_sold,
                    "sales_amount_cents": sales.amount_cents,
                    "will_deplete": ending_serial == pack.serial_end,
                })

            # Compare-and-swap on the day: a concurrent prepare loses here
            updated = (
                db.session.query(LotteryBusinessDay)
                .filter(
                    LotteryBusinessDay.id == day.id,
                    LotteryBusinessDay.status == DAY_STATUS_OPEN,
                )
                .update({"status": DAY_STATUS_PENDING_CLOSE}, synchronize_session=False)
            )
            if updated == 0:
                raise ConflictError("A day close is already pending", code="DAY_CLOSE_PENDING")

            expires_at = now + timedelta(minutes=minutes)
            uses_manual = any(line["entry_method"] == ENTRY_METHOD_MANUAL for line in staged_lines)
            staging = LotteryDayCloseStaging(
                day_id=day.id,
                store_id=store.id,
                status=STAGING_STATUS_PENDING,
                closings=staged_lines,
                initiated_by_user_id=initiated_by,
                manual_entry_authorized_by_user_id=manual_entry_authorized_by if uses_manual else None,
                current_shift_id=current_shift_id,
                prepared_at=now,
                expires_at=expires_at,
            )
            db.session.add(staging)
            db.session.flush()

            audit_service.append_audit_event(
                store_id=store.id,
                action=audit_service.DAY_CLOSE_PREPARED,
                entity_type="lottery_business_day",
                entity_id=day.id,
                actor_user_id=initiated_by,
                old_values={"status": DAY_STATUS_OPEN},
                new_values={
                    "status": DAY_STATUS_PENDING_CLOSE,
                    "staging_id": staging.id,
                    "closings_count": len(staged_lines),
                    "expires_at": to_utc_z(expires_at),
                },
                occurred_at=now,
            )

            return {
                "day_id": day.id,
                "staging_id": staging.id,
                "business_date": day_date.isoformat(),
                "status": DAY_STATUS_PENDING_CLOSE,
                "pending_close_at": to_utc_z(now),
                "pending_close_expires_at": to_utc_z(expires_at),
                "closings_count": len(staged_lines),
                "estimated_lottery_total_cents": total_cents,
                "bins_preview": bins_preview,
            }

    return run_with_retry(_prepare)


# =============================================================================
# COMMIT
# =============================================================================

def commit_day_close(
    store_id: int,
    *,
    committed_by: int,
    business_date: date | None = None,
) -> dict:
    """
    Phase 2: apply the staged closings.

    Raises:
        NotFoundError: DAY_NOT_FOUND
        IllegalStateTransition: DAY_ALREADY_CLOSED, DAY_NOT_PENDING,
            PENDING_EXPIRED, INVALID_PACK_STATUS
        ConflictError: CONCURRENT_MODIFICATION
    """

    def _commit() -> tuple[bool, dict]:
        with atomic():
            store = require_store(store_id)
            require_user_in_store(committed_by, store)

            now = utcnow()
            day_date = business_date or now.date()
            day = _find_day(store.id, day_date, for_update=True)
            if day is None:
                raise NotFoundError(f"No business day {day_date.isoformat()} for store {store.id}", code="DAY_NOT_FOUND")
            if day.status == DAY_STATUS_CLOSED:
                raise IllegalStateTransition(
                    f"Business day {day_date.isoformat()} is already closed",
                    code="DAY_ALREADY_CLOSED",
                )

            staging = _pending_staging(day.id) if day.status == DAY_STATUS_PENDING_CLOSE else None
            if staging is None:
                raise IllegalStateTransition(
                    f"Business day {day_date.isoformat()} has no pending close",
                    code="DAY_NOT_PENDING",
                )

            if staging.expires_at <= now:
                # Committed so the expired staging is released, then reported below
                _resolve_staging(staging, to_status=STAGING_STATUS_EXPIRED, day_status=DAY_STATUS_OPEN, now=now)
                logger.info("Commit rejected: day-close staging %s expired at %s", staging.id, staging.expires_at)
                return True, {}

            if not _resolve_staging(staging, to_status=STAGING_STATUS_COMMITTED, day_status=DAY_STATUS_CLOSED, now=now):
                raise ConflictError("Day close was resolved concurrently", code="CONCURRENT_MODIFICATION")
            db.session.query(LotteryBusinessDay).filter(LotteryBusinessDay.id == day.id).update(
                {"closed_by_user_id": committed_by}, synchronize_session=False
            )
            result = _apply_staged_closings(store, day, staging, committed_by=committed_by, now=now)

            audit_service.append_audit_event(
                store_id=store.id,
                action=audit_service.DAY_CLOSE_COMMITTED,
                entity_type="lottery_business_day",
                entity_id=day.id,
                actor_user_id=committed_by,
                old_values={"status": DAY_STATUS_PENDING_CLOSE},
                new_values={
                    "status": DAY_STATUS_CLOSED,
                    "staging_id": staging.id,
                    "closings_created": result["closings_created"],
                    "lottery_total_cents": result["lottery_total_cents"],
                },
                occurred_at=now,
            )
            return False, result

    expired, result = run_with_retry(_commit)
    if expired:
        raise IllegalStateTransition(
            "Day close expired; prepare it again",
            code="PENDING_EXPIRED",
        )

    logger.info("Business day %s closed with %s closings", result["day_id"], result["closings_created"])
    return result


def _apply_staged_closings(store, day, staging, *, committed_by: int, now: datetime) -> dict:
    bins_closed = []
    variances = []
    total_cents = 0
    shift_id = staging.current_shift_id

    for line in staging.closings:
        pack = require_pack_in_store(line["pack_id"], store)
        if pack.status != PACK_STATUS_ACTIVE:
            raise IllegalStateTransition(
                f"Pack {pack.pack_number} is {pack.status}, not ACTIVE",
                code="INVALID_PACK_STATUS",
            )

        entry_method = line["entry_method"]
        is_manual = entry_method == ENTRY_METHOD_MANUAL
        price_cents = pack.game.price_cents
        sales = calculate_sales(line["starting_serial"], line["ending_serial"], price_cents, serial_end=pack.serial_end)

        db.session.add(
            LotteryShiftClosing(
                store_id=store.id,
                day_id=day.id,
                pack_id=pack.id,
                bin_id=line["bin_id"],
                opening_serial=line["starting_serial"],
                closing_serial=line["ending_serial"],
                tickets_sold=sales.tickets_sold,
                sales_amount_cents=sales.amount_cents,
                entry_method=entry_method,
                closed_by_user_id=committed_by,
                manual_entry_authorized_by_user_id=staging.manual_entry_authorized_by_user_id if is_manual else None,
                manual_entry_authorized_at=staging.prepared_at if is_manual else None,
            )
        )
        total_cents += sales.amount_cents

        variance = record_variance(
            store_id=store.id,
            pack_id=pack.id,
            result=compute_variance(sales.tickets_sold, line.get("reported_tickets_sold"), price_cents),
            shift_id=shift_id,
            day_id=day.id,
        )
        if variance is not None:
            variances.append(variance)

        depleted = line["ending_serial"] == pack.serial_end
        if depleted:
            apply_depletion(
                pack,
                depleted_by=committed_by,
                reason=DEPLETION_SHIFT_CLOSE,
                shift_id=shift_id,
                closing_serial=line["ending_serial"],
                occurred_at=now,
            )

        bins_closed.append({
            "bin_id": line["bin_id"],
            "bin_number": _bin_number(line["bin_id"]),
            "pack_id": pack.id,
            "pack_number": pack.pack_number,
            "game_name": pack.game.name,
            "starting_serial": line["starting_serial"],
            "closing_serial": line["ending_serial"],
            "tickets_sold": sales.tickets_sold,
            "sales_amount_cents": sales.amount_cents,
            "depleted": depleted,
        })

    db.session.flush()
    return {
        "day_id": day.id,
        "business_date": day.business_date.isoformat(),
        "closed_at": to_utc_z(now),
        "closings_created": len(bins_closed),
        "lottery_total_cents": total_cents,
        "bins_closed": bins_closed,
        "variances": [
            {
                "id": variance.id,
                "pack_id": variance.pack_id,
                "expected_qty": variance.expected_qty,
                "actual_qty": variance.actual_qty,
                "difference": variance.difference,
                "dollar_variance_cents": variance.dollar_variance_cents,
                "status": variance.status,
            }
            for variance in variances
        ],
    }


# =============================================================================
# CANCEL / STATUS / EXPIRY
# =============================================================================

def cancel_day_close(
    store_id: int,
    *,
    cancelled_by: int,
    business_date: date | None = None,
) -> bool:
    """
    Discard the pending close and return the day to OPEN.

    Returns True when a pending close was cancelled, False when there was
    nothing to cancel.
    """
    with atomic():
        store = require_store(store_id)
        require_user_in_store(cancelled_by, store)

        now = utcnow()
        day = _find_day(store.id, business_date or now.date())
        if day is None or day.status != DAY_STATUS_PENDING_CLOSE:
            return False

        staging = _pending_staging(day.id)
        if staging is None:
            db.session.query(LotteryBusinessDay).filter(
                LotteryBusinessDay.id == day.id,
                LotteryBusinessDay.status == DAY_STATUS_PENDING_CLOSE,
            ).update({"status": DAY_STATUS_OPEN}, synchronize_session=False)
            return True

        if not _resolve_staging(staging, to_status=STAGING_STATUS_CANCELLED, day_status=DAY_STATUS_OPEN, now=now):
            return False

        audit_service.append_audit_event(
            store_id=store.id,
            action=audit_service.DAY_CLOSE_CANCELLED,
            entity_type="lottery_business_day",
            entity_id=day.id,
            actor_user_id=cancelled_by,
            old_values={"status": DAY_STATUS_PENDING_CLOSE},
            new_values={"status": DAY_STATUS_OPEN, "staging_id": staging.id},
            occurred_at=now,
        )
    return True


def get_day_status(store_id: int, business_date: date | None = None) -> dict:
    """Current status of a business day. A day with no row yet is OPEN."""
    store = require_store(store_id)
    now = utcnow()
    day_date = business_date or now.date()
    day = _find_day(store.id, day_date)

    if day is None:
        return {
            "day_id": None,
            "business_date": day_date.isoformat(),
            "status": DAY_STATUS_OPEN,
            "pending_close": None,
        }

    pending = None
    if day.status == DAY_STATUS_PENDING_CLOSE:
        staging = _pending_staging(day.id)
        if staging is not None:
            pending = staging.to_dict()
            pending["is_expired"] = staging.expires_at <= now

    return {
        "day_id": day.id,
        "business_date": day_date.isoformat(),
        "status": day.status,
        "closed_at": to_utc_z(day.closed_at) if day.closed_at else None,
        "pending_close": pending,
    }


def expire_pending_closes(now: datetime | None = None) -> int:
    """
    Revert every expired PENDING staging to OPEN. Returns how many were expired.

    Commit and prepare already treat expired stagings correctly on their own;
    this only tidies up days nobody touched again.
    """
    now = now or utcnow()
    count = 0
    with atomic():
        stale = (
            db.session.query(LotteryDayCloseStaging)
            .filter(
                LotteryDayCloseStaging.status == STAGING_STATUS_PENDING,
                LotteryDayCloseStaging.expires_at <= now,
            )
            .all()
        )
        for staging in stale:
            if _resolve_staging(staging, to_status=STAGING_STATUS_EXPIRED, day_status=DAY_STATUS_OPEN, now=now):
                count += 1
    if count:
        logger.info("Expired %s pending day closes", count)
    return count
