# Overview: Write-only audit sink for lottery mutations.

from __future__ import annotations

from typing import Any, Optional
from datetime import datetime

from ..extensions import db
from ..models import AuditLogEntry
from backoffice.time_utils import utcnow
"""
Audit Log Invariants

- Append-only: no updates or deletes of existing entries.
- No domain/business logic in the audit sink itself.
- Entries are written inside the same DB transaction as the mutation they
  record, so a rolled-back operation leaves no audit row behind.
- occurred_at is business time; created_at is system time (DB default).
"""

# Action names
PACK_RECEIVED = "PACK_RECEIVED"
BATCH_PACK_RECEIVED = "BATCH_PACK_RECEIVED"
PACK_ACTIVATED = "PACK_ACTIVATED"
PACK_MOVED = "PACK_MOVED"
PACK_DEPLETED = "PACK_DEPLETED"
PACK_RETURNED = "PACK_RETURNED"
SHIFT_OPENED = "SHIFT_OPENED"
SHIFT_LOTTERY_CLOSED = "SHIFT_LOTTERY_CLOSED"
DAY_CLOSE_PREPARED = "DAY_CLOSE_PREPARED"
DAY_CLOSE_COMMITTED = "DAY_CLOSE_COMMITTED"
DAY_CLOSE_CANCELLED = "DAY_CLOSE_CANCELLED"
VARIANCE_APPROVED = "VARIANCE_APPROVED"
GAME_CREATED = "GAME_CREATED"
BIN_CREATED = "BIN_CREATED"
BIN_DEACTIVATED = "BIN_DEACTIVATED"


def append_audit_event(
    *,
    store_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int | None,
    actor_user_id: int | None = None,
    new_values: Optional[dict[str, Any]] = None,
    old_values: Optional[dict[str, Any]] = None,
    reason: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> AuditLogEntry:
    """
    Append an audit entry to the current transaction.

    - No commit here; the caller's transaction decides.
    - occurred_at defaults to utcnow().
    """
    entry = AuditLogEntry(
        store_id=store_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        new_values=new_values,
        old_values=old_values,
        reason=reason,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry
