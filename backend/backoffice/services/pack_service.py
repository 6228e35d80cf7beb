# Overview: Game catalogue and store-scoped pack repository.

"""
Pack Repository

WHY: Packs are the ownership root of the lottery core. Everything that needs
to look a pack up by store, game or serial goes through here so tenant
scoping and the (store, game, pack_number) uniqueness rule live in one place.

GAME RESOLUTION:
    A store-scoped game wins over a global game (store_id NULL) that shares
    its game_code. Lookups never fall through to another store's games.

SERIAL NORMALIZATION:
    serial_start is always "000". The scanned serial_start only reflects
    which ticket was on top of the pack when it was scanned.
    serial_end = tickets_per_pack - 1, zero-padded.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import LotteryGame, LotteryPack
from ..models.lottery import (
    PACK_STATUS_ACTIVE,
    PACK_STATUS_DEPLETED,
    PACK_STATUS_RECEIVED,
    PACK_STATUS_RETURNED,
)
from backoffice.time_utils import utcnow
from . import audit_service
from .concurrency import atomic, run_with_retry
from .serial_service import (
    CANONICAL_SERIAL_START,
    GAME_CODE_LENGTH,
    ParsedSerial,
    parse_serialized_number,
    serial_end_for,
)
from .tenant_service import require_store, require_user_in_store

logger = logging.getLogger(__name__)

PACK_STATUSES = {PACK_STATUS_RECEIVED, PACK_STATUS_ACTIVE, PACK_STATUS_DEPLETED, PACK_STATUS_RETURNED}


# =============================================================================
# GAMES
# =============================================================================

def resolve_game(store_id: int, game_code: str) -> LotteryGame | None:
    """Effective game for a code in a store: store-scoped first, then global."""
    store_game = (
        db.session.query(LotteryGame)
        .filter(LotteryGame.store_id == store_id, LotteryGame.game_code == game_code)
        .first()
    )
    if store_game is not None:
        return store_game
    return (
        db.session.query(LotteryGame)
        .filter(LotteryGame.store_id.is_(None), LotteryGame.game_code == game_code)
        .first()
    )


def require_game(store_id: int, game_code: str) -> LotteryGame:
    game = resolve_game(store_id, game_code)
    if game is None:
        raise NotFoundError(f"Game code {game_code} not found for store {store_id}", code="GAME_NOT_FOUND")
    return game


def list_games(store_id: int) -> list[LotteryGame]:
    """All games visible to a store, with store-scoped games shadowing globals."""
    games = (
        db.session.query(LotteryGame)
        .filter((LotteryGame.store_id == store_id) | (LotteryGame.store_id.is_(None)))
        .all()
    )
    effective: dict[str, LotteryGame] = {}
    for game in games:
        current = effective.get(game.game_code)
        if current is None or (current.store_id is None and game.store_id is not None):
            effective[game.game_code] = game
    return sorted(effective.values(), key=lambda g: g.game_code)


def create_game(
    *,
    game_code: str,
    name: str,
    price_cents: int,
    tickets_per_pack: int,
    store_id: int | None = None,
    created_by: int | None = None,
) -> LotteryGame:
    """
    Create a global (store_id None) or store-scoped game definition.

    Raises:
        ValidationError: bad code, price or pack size
        ConflictError: code already defined at the same scope
    """
    if not isinstance(game_code, str) or len(game_code) != GAME_CODE_LENGTH or not game_code.isdigit():
        raise ValidationError(f"game_code must be {GAME_CODE_LENGTH} digits")
    if not name or not name.strip():
        raise ValidationError("name is required")
    if price_cents is None or price_cents <= 0:
        raise ValidationError("price_cents must be positive")
    # validates the range as a side effect
    serial_end_for(tickets_per_pack)

    with atomic():
        if store_id is not None:
            require_store(store_id)

        existing = (
            db.session.query(LotteryGame)
            .filter(
                LotteryGame.game_code == game_code,
                LotteryGame.store_id.is_(None) if store_id is None else LotteryGame.store_id == store_id,
            )
            .first()
        )
        if existing is not None:
            raise ConflictError(f"Game code {game_code} already exists", code="DUPLICATE_GAME")

        game = LotteryGame(
            store_id=store_id,
            game_code=game_code,
            name=name.strip(),
            price_cents=price_cents,
            tickets_per_pack=tickets_per_pack,
        )
        db.session.add(game)
        db.session.flush()

        audit_service.append_audit_event(
            store_id=store_id,
            action=audit_service.GAME_CREATED,
            entity_type="lottery_game",
            entity_id=game.id,
            actor_user_id=created_by,
            new_values={
                "game_code": game_code,
                "name": game.name,
                "price_cents": price_cents,
                "tickets_per_pack": tickets_per_pack,
            },
        )

    return game


# =============================================================================
# PACKS
# =============================================================================

def get_pack(pack_id: int, store_id: int) -> LotteryPack:
    pack = db.session.get(LotteryPack, pack_id)
    if pack is None or pack.store_id != store_id:
        raise NotFoundError(f"Pack {pack_id} not found", code="PACK_NOT_FOUND")
    return pack


def find_pack(store_id: int, game_id: int, pack_number: str) -> LotteryPack | None:
    return (
        db.session.query(LotteryPack)
        .filter(
            LotteryPack.store_id == store_id,
            LotteryPack.game_id == game_id,
            LotteryPack.pack_number == pack_number,
        )
        .first()
    )


def list_packs(
    store_id: int,
    *,
    status: str | None = None,
    game_id: int | None = None,
    bin_id: int | None = None,
) -> list[LotteryPack]:
    if status is not None and status not in PACK_STATUSES:
        raise ValidationError(f"Invalid pack status '{status}'")

    query = db.session.query(LotteryPack).filter(LotteryPack.store_id == store_id)
    if status is not None:
        query = query.filter(LotteryPack.status == status)
    if game_id is not None:
        query = query.filter(LotteryPack.game_id == game_id)
    if bin_id is not None:
        query = query.filter(LotteryPack.current_bin_id == bin_id)
    return query.order_by(LotteryPack.id.asc()).all()


def build_pack(
    *,
    store_id: int,
    game: LotteryGame,
    parsed: ParsedSerial,
    received_by: int | None,
    received_at: datetime,
) -> LotteryPack:
    """New RECEIVED pack with normalized serial range. Not added to the session."""
    return LotteryPack(
        store_id=store_id,
        game_id=game.id,
        pack_number=parsed.pack_number,
        serial_start=CANONICAL_SERIAL_START,
        serial_end=serial_end_for(game.tickets_per_pack),
        status=PACK_STATUS_RECEIVED,
        received_at=received_at,
        received_by_user_id=received_by,
    )


def receive_pack(store_id: int, serialized_number: str, *, received_by: int) -> LotteryPack:
    """
    Receive a single pack.

    Unlike batch reception this raises on every failure:
        FormatError     INVALID_SERIAL
        NotFoundError   GAME_NOT_FOUND
        ConflictError   DUPLICATE_PACK

    A reception that loses a race to a concurrent one for the same pack is
    retried, and the retry reports DUPLICATE_PACK.
    """
    parsed = parse_serialized_number(serialized_number)

    def _receive() -> LotteryPack:
        with atomic():
            store = require_store(store_id)
            require_user_in_store(received_by, store)
            game = require_game(store.id, parsed.game_code)

            if find_pack(store.id, game.id, parsed.pack_number) is not None:
                raise ConflictError(
                    f"Pack {parsed.pack_number} of game {parsed.game_code} already received",
                    code="DUPLICATE_PACK",
                )

            now = utcnow()
            pack = build_pack(store_id=store.id, game=game, parsed=parsed, received_by=received_by, received_at=now)
            try:
                with db.session.begin_nested():
                    db.session.add(pack)
            except IntegrityError:
                # Lost the race to a concurrent reception of the same pack
                raise ConflictError(
                    f"Pack {parsed.pack_number} of game {parsed.game_code} already received",
                    code="DUPLICATE_PACK",
                )

            audit_service.append_audit_event(
                store_id=store.id,
                action=audit_service.PACK_RECEIVED,
                entity_type="lottery_pack",
                entity_id=pack.id,
                actor_user_id=received_by,
                new_values={
                    "game_code": game.game_code,
                    "pack_number": pack.pack_number,
                    "serial_start": pack.serial_start,
                    "serial_end": pack.serial_end,
                    "status": pack.status,
                },
                occurred_at=now,
            )

        return pack

    return run_with_retry(_receive)
