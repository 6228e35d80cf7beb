from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


SHIFT_STATUS_OPEN = "OPEN"
SHIFT_STATUS_CLOSED = "CLOSED"


class Shift(db.Model):
    """
    Cashier shift.

    WHY: Cashier accountability. Lottery packs opened and closed during a
    shift produce the per-pack opening/closing serials that reconciliation
    compares.

    LIFECYCLE:
    - OPEN: Shift is active, packs may be activated against it
    - CLOSED: Shift ended, lottery closings recorded

    IMMUTABLE: Once closed, a shift cannot be reopened.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index("ix_shifts_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=SHIFT_STATUS_OPEN, index=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    store = db.relationship("Store", backref=db.backref("shifts", lazy=True))
    cashier = db.relationship("User", foreign_keys=[cashier_id], backref=db.backref("shifts", lazy=True))
    closed_by = db.relationship("User", foreign_keys=[closed_by_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "cashier_id": self.cashier_id,
            "status": self.status,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "closed_by_user_id": self.closed_by_user_id,
            "notes": self.notes,
        }
