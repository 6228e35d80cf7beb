# Overview: Flask API routes for the lottery core; parses input and returns JSON responses.

# backend/backoffice/routes/lottery.py
"""
Lottery API Routes

WHY: Thin JSON adapter over the lottery services. All business rules live in
the services; routes only parse input and shape output.

DESIGN:
- Actor ids (received_by, activated_by, ...) come from the request body;
  authentication and permissions are handled in front of this blueprint
- AppError subclasses propagate to the registered error handlers, which
  render {"success": false, "error": {"code", "message"}}
- Anything else is logged here and answered with a generic 500
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import AppError, ValidationError
from ..services import (
    bin_service,
    day_close_service,
    lifecycle_service,
    pack_service,
    receive_service,
    shift_service,
    variance_service,
)
from backoffice.time_utils import parse_iso_date


lottery_bp = Blueprint("lottery", __name__, url_prefix="/api/lottery")


def _body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _require(data: dict, *keys: str) -> None:
    missing = [key for key in keys if data.get(key) is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _store_id_arg() -> int:
    store_id = request.args.get("store_id", type=int)
    if store_id is None:
        raise ValidationError("store_id query parameter is required")
    return store_id


def _business_date(value):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"Invalid business_date '{value}'")


def _ok(data, status: int = 200):
    return jsonify({"success": True, "data": data}), status


def _internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"success": False, "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}}), 500


# =============================================================================
# GAMES & BINS
# =============================================================================

@lottery_bp.post("/games")
def create_game_route():
    """
    Request body:
    {"game_code": "0042", "name": "Lucky 7s", "price_cents": 500,
     "tickets_per_pack": 150, "store_id": 1 (optional, omit for global)}
    """
    try:
        data = _body()
        _require(data, "game_code", "name", "price_cents", "tickets_per_pack")
        game = pack_service.create_game(
            game_code=data["game_code"],
            name=data["name"],
            price_cents=data["price_cents"],
            tickets_per_pack=data["tickets_per_pack"],
            store_id=data.get("store_id"),
            created_by=data.get("created_by"),
        )
        return _ok(game.to_dict(), 201)
    except AppError:
        raise
    except Exception:
        return _internal_error("Failed to create lottery game")


@lottery_bp.get("/games")
def list_games_route():
    store_id = _store_id_arg()
    return _ok([game.to_dict() for game in pack_service.list_games(store_id)])


@lottery_bp.post("/bins")
def create_bin_route():
    try:
        data = _body()
        _require(data, "store_id", "name")
        lottery_bin = bin_service.create_bin(
            data["store_id"],
            name=data["name"],
            location=data.get("location"),
            display_order=data.get("display_order"),
            created_by=data.get("created_by"),
        )
        return _ok(lottery_bin.to_dict(), 201)
    except AppError:
        raise
    except Exception:
        return _internal_error("Failed to create lottery bin")


@lottery_bp.get("/bins")
def list_bins_route():
    store_id = _store_id_arg()
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    bins = bin_service.list_bins(store_id, include_inactive=include_inactive)
    return _ok([lottery_bin.to_dict() for lottery_bin in bins])


@lottery_bp.post("/bins/<int:bin_id>/deactivate")
def deactivate_bin_route(bin_id: int):
    try:
        data = _body()
        _require(data, "store_id")
        lottery_bin = bin_service.deactivate_bin(
            data["store_id"], bin_id, deactivated_by=data.get("deactivated_by")
        )
        return _ok(lottery_bin.to_dict())
    except AppError:
        raise
    except Exception:
        return _internal_error("Failed to deactivate lottery bin")


# =============================================================================
# PACKS
# =============================================================================

@lottery_bp.post("/packs/receive")
def receive_pack_route():
    """Request body: {"store_id": 1, "serialized_number": "<24 digits>", "received_by": 3}"""
    try:
        data = _body()
        _require(data, "store_id", "serialized_number", "received_by")
        pack = pack_service.receive_pack(
            data["store_id"], data["serialized_number"], received_by=data["received_by"]
        )
        return _ok(pack.to_dict(), 201)
    except AppError:
        raise
    except Exception:
        return _internal_error("Failed to receive lottery pack")


@lottery_bp.post("/packs/receive/batch")
def receive_batch_route():
    """
    Request body:
    {"store_id": 1, "received_by": 3,
     "serialized_numbers": ["<24 digits>", ...],
     "scan_metadata": [{...}, ...] (optional)}
    """
    try:
        data = _body()
        _require(data, "store_id", "serialized_numbers", "received_by")
        if not isinstance(data["serialized_numbers"], list):
            raise ValidationError("serialized_numbers must be a list")
        result = receive_service.receive_packs_batch(
            data["store_id"],
            data["serialized_numbers"],
            received_by=data["received_by"],
            scan_metadata=data.get("scan_metadata"),
        )
        return _ok(result, 201 if result["created"] else 200)
    except AppError:
        raise
    except Exception:
        return _internal_error("Failed to receive lottery pack batch")


@lottery_bp.get("/packs")
def list_packs_route():
    store_id = _store_id_arg()
    packs = pack_service.list_packs(
        store_id,
        status=request.args.get("status"),
        game_id=request.args.get("game_id", type=int),
        bin_id=request.args.get("bin_id", type=int),
    )
    return _ok([pack.to_dict() for pack in packs])


@lottery_bp.post("/packs/<int:pack_id>/activate")
def activate_pack_route(pack_id: int):
    """
    Request body:
    {"store_id": 1, "bin_id": 2, "activated_by": 3,
     "shift_id": 4 (optional), "serial_start": "000" (optional)}
    """
    try:
        data = _body()
        _require(data, "store_id", "bin_id", "activated_by")
        result = lifecycle_service.activate_pack(
            pack_id,
            store_id=data["store_id"],
            bin_id=data["bin_id"],
            activated_by=data["activated_by"],
            shift_id=data.get("shift_id"),
            serial_start=data.get("serial_start"),
        )
        return _ok(result)
    except AppError:
        raise
    except Exception:
        return _internal_error("Failed to activate lottery pack")


@lottery_bp.post("/packs/<int:pack_id>/deplete")
def deplete_pack_route(pack_id: int):
    try:
        data = _body()
        _require(data, "store_id", "depleted_by")
        pack = lifecycle_service.deplete_pack(
            pack_id,
            store_id=data["store_id"],
            depleted_by=data["depleted_by"],
            reason=data.get("reason") or lifecycle_service.DEPLETION_MANUAL_SOLD_OUT,
            shift_id=data.get("shift_id"),
            closing_serial=data.get("closing_serial"),
        )
        return _ok(pack.to_dict())
    except AppError:
        raise
    except Exception:
        return _internal_error("Failed to deplete lottery pack")


@lottery_bp.post("/packs/<int:pack_id>/return")
def return_pack_route(pack_id: int):
    try:
        data = _body()
        _require(data, "store_id", "returned_by", "return_reason")
        pack = lifecycle_service.return_pack(
            pack_id,
            store_id=data["store_id"],
            returned_by=data["returned_by"],
            return_reason=data["return_reason"],
            return_notes=data.get("return_notes"),
            last_sold_serial=data.get("last_sold_serial"),
            tickets_sold_on_return=data.get("tickets_sold_on_return"),
            shift_id=data.get("shift_id"),
        )
        return _ok(pack.to_dict())
    except AppError:
        raise
    except Exception:
        return _internal_error("Failed to return lottery pack")


@lottery_bp.post("/packs/<int:pack_id>/move")
def move_pack_route(pack_id: int):
    try:
        data = _body()
        _require(data, "store_id", "to_bin_id", "moved_by")
        pack = lifecycle_service.move_pack(
            pack_id,
            store_id=data["store_id"],
            to_bin_id=data["to_bin_id"],
            moved_by=data["moved_by"],
            reason=data.get("reason"),
        )
        return _ok(pack.to_dict())
    except AppError:
        raise
    except Exception:
        return _internal_error("Failed to move lottery pack")


@lottery_bp.get("/packs/<int:pack_id>/history")
def pack_history_route(pack_id: int):
    store_id = _store_id_arg()
    history = bin_service.get_pack_bin_history(pack_id, store_id)
    return _ok([entry.to_dict() for entry in history])


# =============================================================================
# SHIFTS
# =============================================================================

@lottery_bp.post("/shifts/open")
def open_shift_route():
    try:
        data = _body()
        _require(data, "store_id", "cashier_id")
        shift = shift_service.open_shift(data["store_id"], cashier_id=data["cashier_id"], notes=data.get("notes"))
        payload = shift.to_dict()
        payload["openings"] = [opening.to_dict() for opening in shift_service.get_shift_openings(shift.id)]
        return _ok(payload, 201)
    except AppError:
        raise
    except Exception:
        return _internal_error("Failed to open shift")


@lottery_bp.get("/shifts/<int:shift_id>/closing-data")
def closing_data_route(shift_id: int):
    store_id = _store_id_arg()
    return _ok(shift_service.get_closing_data(shift_id, store_id=store_id))


@lottery_bp.post("/shifts/<int:shift_id>/close")
def close_shift_route(shift_id: int):
    """
    Request body:
    {"store_id": 1, "closed_by": 3,
     "closings": [{"pack_id": 7, "closing_serial": "045",
                   "entry_method": "SCAN", "reported_tickets_sold": 45}],
     "manual_entry_authorized_by": 5 (required when any line is MANUAL)}
    """
    try:
        data = _body()
        _require(data, "store_id", "closed_by", "closings")
        result = shift_service.close_shift_lottery(
            shift_id,
            store_id=data["store_id"],
            closed_by=data["closed_by"],
            closings=data["closings"],
            manual_entry_authorized_by=data.get("manual_entry_authorized_by"),
            notes=data.get("notes"),
        )
        return _ok(result)
    except AppError:
        raise
    except Exception:
        return _internal_error("Failed to close shift")


# =============================================================================
# DAY CLOSE
# =============================================================================

@lottery_bp.post("/day-close/prepare")
def prepare_day_close_route():
    """
    Request body:
    {"store_id": 1, "initiated_by": 3, "business_date": "2026-10-16" (optional),
     "closings": [{"pack_id": 7, "ending_serial": "045", "entry_method": "SCAN"}],
     "manual_entry_authorized_by": 5, "current_shift_id": 9,
     "expires_in_minutes": 60}
    """
    try:
        data = _body()
        _require(data, "store_id", "initiated_by", "closings")
        result = day_close_service.prepare_day_close(
            data["store_id"],
            closings=data["closings"],
            initiated_by=data["initiated_by"],
            business_date=_business_date(data.get("business_date")),
            manual_entry_authorized_by=data.get("manual_entry_authorized_by"),
            current_shift_id=data.get("current_shift_id"),
            expires_in_minutes=data.get("expires_in_minutes"),
        )
        return _ok(result)
    except AppError:
        raise
    except Exception:
        return _internal_error("Failed to prepare day close")


@lottery_bp.post("/day-close/commit")
def commit_day_close_route():
    try:
        data = _body()
        _require(data, "store_id", "committed_by")
        result = day_close_service.commit_day_close(
            data["store_id"],
            committed_by=data["committed_by"],
            business_date=_business_date(data.get("business_date")),
        )
        return _ok(result)
    except AppError:
        raise
    except Exception:
        return _internal_error("Failed to commit day close")


@lottery_bp.post("/day-close/cancel")
def cancel_day_close_route():
    try:
        data = _body()
        _require(data, "store_id", "cancelled_by")
        cancelled = day_close_service.cancel_day_close(
            data["store_id"],
            cancelled_by=data["cancelled_by"],
            business_date=_business_date(data.get("business_date")),
        )
        return _ok({"cancelled": cancelled})
    except AppError:
        raise
    except Exception:
        return _internal_error("Failed to cancel day close")


@lottery_bp.get("/day-close/status")
def day_status_route():
    store_id = _store_id_arg()
    business_date = _business_date(request.args.get("business_date"))
    return _ok(day_close_service.get_day_status(store_id, business_date))


# =============================================================================
# VARIANCES
# =============================================================================

@lottery_bp.get("/variances")
def list_variances_route():
    store_id = _store_id_arg()
    variances = variance_service.list_variances(
        store_id,
        status=request.args.get("status"),
        shift_id=request.args.get("shift_id", type=int),
        day_id=request.args.get("day_id", type=int),
    )
    return _ok([variance.to_dict() for variance in variances])


@lottery_bp.post("/variances/<int:variance_id>/approve")
def approve_variance_route(variance_id: int):
    try:
        data = _body()
        _require(data, "store_id", "approved_by")
        variance = variance_service.approve_variance(
            variance_id,
            store_id=data["store_id"],
            approved_by=data["approved_by"],
            approval_notes=data.get("approval_notes") or "",
        )
        return _ok(variance.to_dict())
    except AppError:
        raise
    except Exception:
        return _internal_error("Failed to approve variance")
