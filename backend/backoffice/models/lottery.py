from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


# Pack statuses (must match lifecycle_service)
PACK_STATUS_RECEIVED = "RECEIVED"
PACK_STATUS_ACTIVE = "ACTIVE"
PACK_STATUS_DEPLETED = "DEPLETED"
PACK_STATUS_RETURNED = "RETURNED"

# Bin history actions
BIN_ACTION_ACTIVATED = "ACTIVATED"
BIN_ACTION_MOVED = "MOVED"
BIN_ACTION_REMOVED = "REMOVED"

# Closing entry methods
ENTRY_METHOD_SCAN = "SCAN"
ENTRY_METHOD_MANUAL = "MANUAL"

# Variance statuses
VARIANCE_STATUS_UNRESOLVED = "UNRESOLVED"
VARIANCE_STATUS_APPROVED = "APPROVED"


class LotteryGame(db.Model):
    """
    Scratch-ticket game definition.

    SCOPING:
    - store_id NULL: global game, visible to every store
    - store_id set: store-scoped game; overrides a global game with the same
      game_code when that store looks the code up

    Games are treated as immutable once packs reference them (administrative
    correction only).
    """
    __tablename__ = "lottery_games"
    __table_args__ = (
        db.UniqueConstraint("store_id", "game_code", name="uq_lottery_games_store_code"),
        db.Index("ix_lottery_games_code", "game_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)

    game_code = db.Column(db.String(4), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Ticket price in cents
    price_cents = db.Column(db.Integer, nullable=False)
    tickets_per_pack = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("lottery_games", lazy=True))

    def __repr__(self) -> str:
        return f"<LotteryGame id={self.id} code={self.game_code!r} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "game_code": self.game_code,
            "name": self.name,
            "price_cents": self.price_cents,
            "tickets_per_pack": self.tickets_per_pack,
            "is_global": self.store_id is None,
            "created_at": to_utc_z(self.created_at),
        }


class LotteryBin(db.Model):
    """
    Physical display slot holding at most one ACTIVE pack.

    The "current pack" is NOT stored here: LotteryPack.current_bin_id is the
    authoritative back-reference, and "what's in bin X" is always a lookup.
    display_order is 0-based; the number shown to staff is display_order + 1.
    """
    __tablename__ = "lottery_bins"
    __table_args__ = (
        db.Index("ix_lottery_bins_store_order", "store_id", "display_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    name = db.Column(db.String(128), nullable=False)
    location = db.Column(db.String(128), nullable=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("lottery_bins", lazy=True))

    @property
    def bin_number(self) -> int:
        return (self.display_order or 0) + 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "location": self.location,
            "display_order": self.display_order,
            "bin_number": self.bin_number,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class LotteryPack(db.Model):
    """
    Physical booklet of sequentially numbered tickets.

    LIFECYCLE:
        RECEIVED -> ACTIVE -> DEPLETED
        RECEIVED -> RETURNED
        ACTIVE   -> RETURNED

    DEPLETED and RETURNED are terminal. Status changes are made through
    conditional updates in lifecycle_service, never by assigning status on a
    loaded instance.

    SERIALS: serial_start is always "000"; serial_end is tickets_per_pack - 1,
    zero-padded to the same width.
    """
    __tablename__ = "lottery_packs"
    __table_args__ = (
        db.UniqueConstraint("store_id", "game_id", "pack_number", name="uq_lottery_packs_store_game_number"),
        db.Index("ix_lottery_packs_store_status", "store_id", "status"),
        db.Index("ix_lottery_packs_current_bin", "current_bin_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    game_id = db.Column(db.Integer, db.ForeignKey("lottery_games.id"), nullable=False, index=True)

    pack_number = db.Column(db.String(7), nullable=False)
    serial_start = db.Column(db.String(3), nullable=False, default="000")
    serial_end = db.Column(db.String(3), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=PACK_STATUS_RECEIVED, index=True)
    current_bin_id = db.Column(db.Integer, db.ForeignKey("lottery_bins.id"), nullable=True)

    # Reception
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Activation
    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    activated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    activated_shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True)

    # Depletion
    depleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    depleted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    depleted_shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True)
    depletion_reason = db.Column(db.String(32), nullable=True)

    # Return to supplier
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    returned_shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True)
    return_reason = db.Column(db.String(32), nullable=True)
    return_notes = db.Column(db.String(500), nullable=True)
    last_sold_serial = db.Column(db.String(3), nullable=True)
    tickets_sold_on_return = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("lottery_packs", lazy=True))
    game = db.relationship("LotteryGame", backref=db.backref("packs", lazy=True))
    current_bin = db.relationship("LotteryBin", foreign_keys=[current_bin_id])

    def __repr__(self) -> str:
        return f"<LotteryPack id={self.id} pack_number={self.pack_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "game_id": self.game_id,
            "pack_number": self.pack_number,
            "serial_start": self.serial_start,
            "serial_end": self.serial_end,
            "status": self.status,
            "current_bin_id": self.current_bin_id,
            "received_at": to_utc_z(self.received_at) if self.received_at else None,
            "received_by_user_id": self.received_by_user_id,
            "activated_at": to_utc_z(self.activated_at) if self.activated_at else None,
            "activated_by_user_id": self.activated_by_user_id,
            "activated_shift_id": self.activated_shift_id,
            "depleted_at": to_utc_z(self.depleted_at) if self.depleted_at else None,
            "depleted_by_user_id": self.depleted_by_user_id,
            "depleted_shift_id": self.depleted_shift_id,
            "depletion_reason": self.depletion_reason,
            "returned_at": to_utc_z(self.returned_at) if self.returned_at else None,
            "returned_by_user_id": self.returned_by_user_id,
            "returned_shift_id": self.returned_shift_id,
            "return_reason": self.return_reason,
            "last_sold_serial": self.last_sold_serial,
            "tickets_sold_on_return": self.tickets_sold_on_return,
        }


class LotteryPackBinHistory(db.Model):
    """
    Append-only log of bin-affecting events for a pack.

    ACTIONS:
    - ACTIVATED: pack placed into bin_id on activation
    - MOVED: pack moved from previous_bin_id to bin_id
    - REMOVED: pack left bin_id (evicted, depleted or returned)

    Rows are never updated or deleted.
    """
    __tablename__ = "lottery_pack_bin_history"
    __table_args__ = (
        db.Index("ix_lottery_bin_history_pack_occurred", "pack_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pack_id = db.Column(db.Integer, db.ForeignKey("lottery_packs.id"), nullable=False, index=True)
    bin_id = db.Column(db.Integer, db.ForeignKey("lottery_bins.id"), nullable=False, index=True)
    previous_bin_id = db.Column(db.Integer, db.ForeignKey("lottery_bins.id"), nullable=True)

    action = db.Column(db.String(16), nullable=False, index=True)
    moved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reason = db.Column(db.String(500), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    pack = db.relationship("LotteryPack", backref=db.backref("bin_history", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pack_id": self.pack_id,
            "bin_id": self.bin_id,
            "previous_bin_id": self.previous_bin_id,
            "action": self.action,
            "moved_by_user_id": self.moved_by_user_id,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class LotteryShiftOpening(db.Model):
    """Starting serial of a pack for a shift. One row per (shift, pack)."""
    __tablename__ = "lottery_shift_openings"
    __table_args__ = (
        db.UniqueConstraint("shift_id", "pack_id", name="uq_lottery_shift_openings_shift_pack"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    pack_id = db.Column(db.Integer, db.ForeignKey("lottery_packs.id"), nullable=False, index=True)
    bin_id = db.Column(db.Integer, db.ForeignKey("lottery_bins.id"), nullable=True)

    opening_serial = db.Column(db.String(3), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "pack_id": self.pack_id,
            "bin_id": self.bin_id,
            "opening_serial": self.opening_serial,
            "created_at": to_utc_z(self.created_at),
        }


class LotteryShiftClosing(db.Model):
    """
    Ending serial of a pack for a reconciliation period.

    A closing belongs to a shift (shift close), to a business day (day-close
    commit), or to both when the day is closed from within a shift.
    tickets_sold and sales_amount_cents are frozen at creation.
    """
    __tablename__ = "lottery_shift_closings"
    __table_args__ = (
        db.UniqueConstraint("shift_id", "pack_id", name="uq_lottery_shift_closings_shift_pack"),
        db.UniqueConstraint("day_id", "pack_id", name="uq_lottery_shift_closings_day_pack"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)
    day_id = db.Column(db.Integer, db.ForeignKey("lottery_business_days.id"), nullable=True, index=True)
    pack_id = db.Column(db.Integer, db.ForeignKey("lottery_packs.id"), nullable=False, index=True)
    bin_id = db.Column(db.Integer, db.ForeignKey("lottery_bins.id"), nullable=True)

    opening_serial = db.Column(db.String(3), nullable=False)
    closing_serial = db.Column(db.String(3), nullable=False)
    tickets_sold = db.Column(db.Integer, nullable=False)
    sales_amount_cents = db.Column(db.Integer, nullable=False)

    entry_method = db.Column(db.String(16), nullable=False)  # SCAN, MANUAL
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    manual_entry_authorized_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    manual_entry_authorized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    pack = db.relationship("LotteryPack")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "shift_id": self.shift_id,
            "day_id": self.day_id,
            "pack_id": self.pack_id,
            "bin_id": self.bin_id,
            "opening_serial": self.opening_serial,
            "closing_serial": self.closing_serial,
            "tickets_sold": self.tickets_sold,
            "sales_amount_cents": self.sales_amount_cents,
            "entry_method": self.entry_method,
            "closed_by_user_id": self.closed_by_user_id,
            "manual_entry_authorized_by_user_id": self.manual_entry_authorized_by_user_id,
            "manual_entry_authorized_at": (
                to_utc_z(self.manual_entry_authorized_at) if self.manual_entry_authorized_at else None
            ),
            "created_at": to_utc_z(self.created_at),
        }


class LotteryVariance(db.Model):
    """
    Discrepancy between serial-derived and reported ticket sales for a pack.

    expected_qty: tickets sold according to opening/closing serials
    actual_qty:   tickets sold according to the point-of-sale report
    difference:   actual_qty - expected_qty

    Created UNRESOLVED; moves to APPROVED once a manager signs off with notes.
    """
    __tablename__ = "lottery_variances"
    __table_args__ = (
        db.Index("ix_lottery_variances_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)
    day_id = db.Column(db.Integer, db.ForeignKey("lottery_business_days.id"), nullable=True, index=True)
    pack_id = db.Column(db.Integer, db.ForeignKey("lottery_packs.id"), nullable=False, index=True)

    expected_qty = db.Column(db.Integer, nullable=False)
    actual_qty = db.Column(db.Integer, nullable=False)
    difference = db.Column(db.Integer, nullable=False)
    dollar_variance_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=VARIANCE_STATUS_UNRESOLVED, index=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    pack = db.relationship("LotteryPack")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "shift_id": self.shift_id,
            "day_id": self.day_id,
            "pack_id": self.pack_id,
            "expected_qty": self.expected_qty,
            "actual_qty": self.actual_qty,
            "difference": self.difference,
            "dollar_variance_cents": self.dollar_variance_cents,
            "status": self.status,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "approval_notes": self.approval_notes,
            "created_at": to_utc_z(self.created_at),
        }
