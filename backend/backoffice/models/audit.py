from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class AuditLogEntry(db.Model):
    """
    Append-only audit trail for lottery mutations.

    One row per mutating operation: action name (PACK_ACTIVATED,
    BATCH_PACK_RECEIVED, ...), actor, target record and a snapshot of the
    values written. The core never reads these rows back.
    """
    __tablename__ = "audit_log_entries"
    __table_args__ = (
        db.Index("ix_audit_log_store_occurred", "store_id", "occurred_at"),
        db.Index("ix_audit_log_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)

    # What happened
    action = db.Column(db.String(64), nullable=False, index=True)

    # What it refers to (generic pointer; NULL for batch summaries)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)
    reason = db.Column(db.String(500), nullable=True)

    # Business vs system time
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
