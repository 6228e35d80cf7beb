# Overview: Ticket-sales arithmetic and variance bookkeeping for reconciliation.

"""
Variance Calculator

PURE PART (no I/O):
    calculate_tickets_sold(opening, closing, serial_end=None)
    calculate_sales(opening, closing, price_cents, serial_end=None)
    compute_variance(expected_qty, actual_qty, price_cents)

    tickets_sold = closing - opening   (serials are zero-padded digit strings)
    amount_cents = tickets_sold * price_cents

    A closing serial above serial_end, or below the opening serial, is a
    ValidationError. Values are never clamped.

PERSISTENT PART:
    record_variance(...)   called by shift close and day-close commit
    approve_variance(...)  UNRESOLVED -> APPROVED, needs approver + notes
    list_variances(...)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import LotteryVariance
from ..models.lottery import VARIANCE_STATUS_APPROVED, VARIANCE_STATUS_UNRESOLVED
from backoffice.time_utils import utcnow
from . import audit_service
from .concurrency import atomic
from .serial_service import parse_serial
from .tenant_service import require_store, require_user_in_store

logger = logging.getLogger(__name__)

VALID_VARIANCE_STATUSES = {VARIANCE_STATUS_UNRESOLVED, VARIANCE_STATUS_APPROVED}


@dataclass(frozen=True)
class SalesResult:
    tickets_sold: int
    amount_cents: int


@dataclass(frozen=True)
class VarianceResult:
    expected_qty: int
    actual_qty: int
    difference: int
    dollar_variance_cents: int

    @property
    def has_variance(self) -> bool:
        return self.difference != 0


def calculate_tickets_sold(opening_serial: str, closing_serial: str, serial_end: Optional[str] = None) -> int:
    opening = parse_serial(opening_serial)
    closing = parse_serial(closing_serial)

    if serial_end is not None and closing > parse_serial(serial_end):
        raise ValidationError(
            f"Closing serial {closing_serial} exceeds pack serial_end {serial_end}",
            code="SERIAL_OUT_OF_RANGE",
        )
    if closing < opening:
        raise ValidationError(
            f"Closing serial {closing_serial} is before opening serial {opening_serial}",
            code="SERIAL_OUT_OF_RANGE",
        )
    return closing - opening


def calculate_sales(
    opening_serial: str,
    closing_serial: str,
    price_cents: int,
    serial_end: Optional[str] = None,
) -> SalesResult:
    """Tickets sold between two serials and their value in cents."""
    tickets_sold = calculate_tickets_sold(opening_serial, closing_serial, serial_end)
    return SalesResult(tickets_sold=tickets_sold, amount_cents=tickets_sold * price_cents)


def compute_variance(expected_qty: int, actual_qty: Optional[int], price_cents: int) -> VarianceResult:
    """
    Compare serial-derived sales with the reported count.

    A missing report (actual_qty None) means "no independent count", so the
    serial-derived number stands and the difference is zero.
    """
    if actual_qty is None:
        actual_qty = expected_qty
    if actual_qty < 0:
        raise ValidationError("Reported tickets sold cannot be negative")
    difference = actual_qty - expected_qty
    return VarianceResult(
        expected_qty=expected_qty,
        actual_qty=actual_qty,
        difference=difference,
        dollar_variance_cents=difference * price_cents,
    )


def record_variance(
    *,
    store_id: int,
    pack_id: int,
    result: VarianceResult,
    shift_id: int | None = None,
    day_id: int | None = None,
) -> LotteryVariance | None:
    """
    Persist a variance row when the counts disagree. Caller owns the transaction.

    Returns None when there is nothing to record.
    """
    if not result.has_variance:
        return None

    variance = LotteryVariance(
        store_id=store_id,
        shift_id=shift_id,
        day_id=day_id,
        pack_id=pack_id,
        expected_qty=result.expected_qty,
        actual_qty=result.actual_qty,
        difference=result.difference,
        dollar_variance_cents=result.dollar_variance_cents,
        status=VARIANCE_STATUS_UNRESOLVED,
    )
    db.session.add(variance)
    db.session.flush()
    logger.info(
        "Variance recorded for pack %s: expected=%s actual=%s",
        pack_id, result.expected_qty, result.actual_qty,
    )
    return variance


def approve_variance(
    variance_id: int,
    *,
    store_id: int,
    approved_by: int,
    approval_notes: str,
) -> LotteryVariance:
    """
    Sign off a variance.

    Approval only records the manager decision; it does not touch packs,
    closings or depletion state.
    """
    if not approval_notes or not approval_notes.strip():
        raise ValidationError("approval_notes is required to approve a variance")

    with atomic():
        store = require_store(store_id)
        require_user_in_store(approved_by, store)

        variance = db.session.get(LotteryVariance, variance_id)
        if variance is None or variance.store_id != store.id:
            raise NotFoundError(f"Variance {variance_id} not found", code="VARIANCE_NOT_FOUND")

        now = utcnow()
        notes = approval_notes.strip()
        updated = (
            db.session.query(LotteryVariance)
            .filter(
                LotteryVariance.id == variance.id,
                LotteryVariance.status == VARIANCE_STATUS_UNRESOLVED,
            )
            .update(
                {
                    "status": VARIANCE_STATUS_APPROVED,
                    "approved_by_user_id": approved_by,
                    "approved_at": now,
                    "approval_notes": notes,
                },
                synchronize_session=False,
            )
        )
        if updated == 0:
            raise ConflictError(f"Variance {variance_id} is already approved", code="ALREADY_APPROVED")

        audit_service.append_audit_event(
            store_id=store.id,
            action=audit_service.VARIANCE_APPROVED,
            entity_type="lottery_variance",
            entity_id=variance.id,
            actor_user_id=approved_by,
            old_values={"status": VARIANCE_STATUS_UNRESOLVED},
            new_values={"status": VARIANCE_STATUS_APPROVED, "approval_notes": notes},
            occurred_at=now,
        )

    db.session.refresh(variance)
    return variance


def list_variances(
    store_id: int,
    *,
    status: str | None = None,
    shift_id: int | None = None,
    day_id: int | None = None,
) -> list[LotteryVariance]:
    if status is not None and status not in VALID_VARIANCE_STATUSES:
        raise ValidationError(f"Invalid variance status '{status}'")

    query = db.session.query(LotteryVariance).filter(LotteryVariance.store_id == store_id)
    if status is not None:
        query = query.filter(LotteryVariance.status == status)
    if shift_id is not None:
        query = query.filter(LotteryVariance.shift_id == shift_id)
    if day_id is not None:
        query = query.filter(LotteryVariance.day_id == day_id)
    return query.order_by(LotteryVariance.id.asc()).all()
