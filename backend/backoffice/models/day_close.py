from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


# Business day statuses
DAY_STATUS_OPEN = "OPEN"
DAY_STATUS_PENDING_CLOSE = "PENDING_CLOSE"
DAY_STATUS_CLOSED = "CLOSED"

# Staging statuses
STAGING_STATUS_PENDING = "PENDING"
STAGING_STATUS_COMMITTED = "COMMITTED"
STAGING_STATUS_CANCELLED = "CANCELLED"
STAGING_STATUS_EXPIRED = "EXPIRED"


class LotteryBusinessDay(db.Model):
    """
    Lottery business day for a store.

    LIFECYCLE:
        OPEN -> PENDING_CLOSE (prepare)
        PENDING_CLOSE -> CLOSED (commit)
        PENDING_CLOSE -> OPEN (cancel or expiry)

    While PENDING_CLOSE, exactly one PENDING staging row references the day.
    """
    __tablename__ = "lottery_business_days"
    __table_args__ = (
        db.UniqueConstraint("store_id", "business_date", name="uq_lottery_business_days_store_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    business_date = db.Column(db.Date, nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=DAY_STATUS_OPEN, index=True)

    opened_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("lottery_business_days", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "business_date": self.business_date.isoformat() if self.business_date else None,
            "status": self.status,
            "opened_by_user_id": self.opened_by_user_id,
            "closed_by_user_id": self.closed_by_user_id,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "created_at": to_utc_z(self.created_at),
        }


class LotteryDayCloseStaging(db.Model):
    """
    Durable, time-boxed intermediate state of a day close.

    WHY: Prepare and commit happen in separate requests (often from different
    terminals). The staged closings live in the database so they survive
    restarts and are visible to concurrent requests immediately.

    closings is a JSON list of
        {pack_id, ending_serial, entry_method, bin_id, reported_tickets_sold}

    LIFECYCLE:
        PENDING -> COMMITTED | CANCELLED | EXPIRED

    Resolved rows are kept for inspection; only PENDING rows gate the day.
    """
    __tablename__ = "lottery_day_close_stagings"
    __table_args__ = (
        db.Index("ix_lottery_day_close_stagings_day_status", "day_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    day_id = db.Column(db.Integer, db.ForeignKey("lottery_business_days.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=STAGING_STATUS_PENDING, index=True)

    closings = db.Column(db.JSON, nullable=False)

    initiated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    manual_entry_authorized_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    current_shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True)

    prepared_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    day = db.relationship("LotteryBusinessDay", backref=db.backref("stagings", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "day_id": self.day_id,
            "store_id": self.store_id,
            "status": self.status,
            "closings": self.closings,
            "initiated_by_user_id": self.initiated_by_user_id,
            "manual_entry_authorized_by_user_id": self.manual_entry_authorized_by_user_id,
            "current_shift_id": self.current_shift_id,
            "prepared_at": to_utc_z(self.prepared_at),
            "expires_at": to_utc_z(self.expires_at),
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
        }
