# Overview: Batch reception of lottery packs from scanned barcodes.

"""
Batch Pack Reception Service

WHY: Packs arrive from the supplier in cartons and are scanned in bulk. One
bad barcode must not stop the rest of the carton from being received, but a
storage failure must not leave half a carton in the database either.

RESULT PARTITIONS:
- created:         packs inserted, each with its resolved game
- duplicates:      serials whose (store, game, pack_number) already exists,
                   earlier in the same batch or in storage
- games_not_found: {serial, game_code} for codes with no store or global game
- errors:          {serial, error[, code]} for anything else (bad format, failed
                   scan check, unexpected per-item failure; the latter
                   carries a generic message, details go to the log)

DESIGN:
- The whole batch is one transaction; each insert runs in its own savepoint
  so a unique-constraint violation only discards that one pack.
- Partitioned failures never abort the batch. Any other database error
  rolls back everything and surfaces as UnexpectedError.
- One BATCH_PACK_RECEIVED audit entry summarizes the batch.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Sequence

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import AppError, ValidationError
from ..extensions import db
from backoffice.time_utils import utcnow
from . import audit_service
from .concurrency import atomic, run_with_retry
from .pack_service import build_pack, find_pack, resolve_game
from .serial_service import parse_serialized_number
from .tenant_service import require_store, require_user_in_store

logger = logging.getLogger(__name__)

DEFAULT_BATCH_MAX_SIZE = 100

UNEXPECTED_ITEM_ERROR = "Unexpected error while receiving pack"

# (serialized_number, scan_metadata) -> passed?
ScanValidator = Callable[[str, Optional[dict]], bool]


def _batch_max_size() -> int:
    if has_app_context():
        return int(current_app.config.get("LOTTERY_BATCH_MAX_SIZE", DEFAULT_BATCH_MAX_SIZE))
    return DEFAULT_BATCH_MAX_SIZE


def receive_packs_batch(
    store_id: int,
    serialized_numbers: Sequence[str],
    *,
    received_by: int,
    scan_metadata: Optional[Sequence[Optional[dict]]] = None,
    scan_validator: Optional[ScanValidator] = None,
) -> dict[str, list[Any]]:
    """
    Receive up to LOTTERY_BATCH_MAX_SIZE packs in one transaction.

    Args:
        scan_metadata: optional per-serial metadata, same length as
            serialized_numbers, handed to scan_validator unchanged
        scan_validator: external scan-authenticity check; a False result
            puts the serial in errors

    Returns:
        {"created": [...], "duplicates": [...], "games_not_found": [...], "errors": [...]}

    Raises:
        ValidationError: empty batch, BATCH_TOO_LARGE, mismatched metadata
        UnexpectedError: storage failure (nothing is kept)
    """
    if not serialized_numbers:
        raise ValidationError("At least one serialized number is required")
    max_size = _batch_max_size()
    if len(serialized_numbers) > max_size:
        raise ValidationError(
            f"Batch of {len(serialized_numbers)} exceeds the maximum of {max_size}",
            code="BATCH_TOO_LARGE",
        )
    if scan_metadata is not None and len(scan_metadata) != len(serialized_numbers):
        raise ValidationError("scan_metadata must have one entry per serialized number")

    def _receive_batch() -> dict[str, list[Any]]:
        created: list[dict] = []
        duplicates: list[str] = []
        games_not_found: list[dict] = []
        errors: list[dict] = []

        with atomic():
            store = require_store(store_id)
            require_user_in_store(received_by, store)

            now = utcnow()
            seen: set[tuple[int, str]] = set()
            games = {}

            for index, serial in enumerate(serialized_numbers):
                metadata = scan_metadata[index] if scan_metadata is not None else None
                try:
                    parsed = parse_serialized_number(serial)

                    if scan_validator is not None and not scan_validator(serial, metadata):
                        errors.append({"serial": serial, "error": "Scan validation failed"})
                        continue

                    if parsed.game_code not in games:
                        games[parsed.game_code] = resolve_game(store.id, parsed.game_code)
                    game = games[parsed.game_code]
                    if game is None:
                        games_not_found.append({"serial": serial, "game_code": parsed.game_code})
                        continue

                    key = (game.id, parsed.pack_number)
                    if key in seen:
                        duplicates.append(serial)
                        continue
                    seen.add(key)

                    if find_pack(store.id, game.id, parsed.pack_number) is not None:
                        duplicates.append(serial)
                        continue

                    pack = build_pack(
                        store_id=store.id,
                        game=game,
                        parsed=parsed,
                        received_by=received_by,
                        received_at=now,
                    )
                    try:
                        with db.session.begin_nested():
                            db.session.add(pack)
                    except IntegrityError:
                        duplicates.append(serial)
                        continue

                    item = pack.to_dict()
                    item["game"] = game.to_dict()
                    created.append(item)

                except SQLAlchemyError:
                    # Not a per-item failure: abort and roll back the batch
                    raise
                except AppError as exc:
                    errors.append({"serial": serial, "error": exc.message, "code": exc.code})
                except Exception:
                    logger.exception("Unexpected failure receiving serial at index %s", index)
                    errors.append({"serial": serial, "error": UNEXPECTED_ITEM_ERROR, "code": "INTERNAL_ERROR"})

            audit_service.append_audit_event(
                store_id=store.id,
                action=audit_service.BATCH_PACK_RECEIVED,
                entity_type="lottery_pack_batch",
                entity_id=None,
                actor_user_id=received_by,
                new_values={
                    "submitted": len(serialized_numbers),
                    "created": len(created),
                    "duplicates": len(duplicates),
                    "games_not_found": len(games_not_found),
                    "errors": len(errors),
                    "pack_ids": [item["id"] for item in created],
                },
                occurred_at=now,
            )

        return {
            "created": created,
            "duplicates": duplicates,
            "games_not_found": games_not_found,
            "errors": errors,
        }

    # A batch that loses a race for one of its packs starts over and then
    # reports that pack under duplicates
    result = run_with_retry(_receive_batch)

    logger.info(
        "Batch reception for store %s: %s created, %s duplicates, %s unknown games, %s errors",
        store_id,
        len(result["created"]),
        len(result["duplicates"]),
        len(result["games_not_found"]),
        len(result["errors"]),
    )
    return result
