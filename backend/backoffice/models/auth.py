from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z

class User(db.Model):
    """
    Staff accounts (cashiers, managers) used for attribution.

    MULTI-TENANT: Users belong to exactly one organization (org_id) and
    optionally to a home store. Credentials and role administration live
    outside the lottery core; this table only answers "who did it" and
    "may this person act in this store".
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("org_id", "username", name="uq_users_org_username"),
        db.Index("ix_users_org_id", "org_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)

    username = db.Column(db.String(64), nullable=False, index=True)
    display_name = db.Column(db.String(128), nullable=True)

    # Store association (nullable for org-level users such as owners)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("users", lazy=True))
    store = db.relationship("Store", backref=db.backref("users", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "username": self.username,
            "display_name": self.display_name,
            "store_id": self.store_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
