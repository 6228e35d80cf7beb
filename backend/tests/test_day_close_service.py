# Overview: Pytest coverage for the two-phase lottery day close.

"""
Day-Close Tests

prepare -> commit / cancel / expiry, including the all-or-nothing commit
and the serial range checks that must reject a prepare before anything is
staged.
"""

from datetime import date, timedelta
from unittest import mock

import pytest
from sqlalchemy.exc import OperationalError

from backoffice.errors import ConflictError, IllegalStateTransition, NotFoundError, ValidationError
from backoffice.models import (
    LotteryBusinessDay,
    LotteryDayCloseStaging,
    LotteryPack,
    LotteryShiftClosing,
    LotteryVariance,
)
from backoffice.services import day_close_service, lifecycle_service, shift_service
from backoffice.time_utils import utcnow

from conftest import activate, receive

BUSINESS_DATE = date(2026, 10, 16)


def _prepare(store, user, closings, **kwargs):
    kwargs.setdefault("business_date", BUSINESS_DATE)
    return day_close_service.prepare_day_close(store.id, closings=closings, initiated_by=user.id, **kwargs)


def _commit(store, user, business_date=BUSINESS_DATE):
    return day_close_service.commit_day_close(store.id, committed_by=user.id, business_date=business_date)


def _expire(db_session, staging_id):
    staging = db_session.get(LotteryDayCloseStaging, staging_id)
    staging.expires_at = utcnow() - timedelta(minutes=1)
    db_session.commit()


@pytest.fixture
def second_pack(store_a, cashier, game, bin_2):
    pack = receive(store_a, cashier, game.game_code, 20)
    activate(pack, store_a, bin_2, cashier)
    return pack


class TestPrepareDayClose:

    def test_prepare_stages_without_writing(self, db_session, store_a, manager, bin_1, active_pack):
        preview = _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "045"}])

        assert preview["status"] == "PENDING_CLOSE"
        assert preview["business_date"] == "2026-10-16"
        assert preview["closings_count"] == 1
        assert preview["estimated_lottery_total_cents"] == 22500
        assert preview["bins_preview"][0]["bin_number"] == bin_1.bin_number
        assert preview["bins_preview"][0]["starting_serial"] == "000"
        assert preview["bins_preview"][0]["will_deplete"] is False

        day = db_session.get(LotteryBusinessDay, preview["day_id"])
        assert day.status == "PENDING_CLOSE"
        staging = db_session.get(LotteryDayCloseStaging, preview["staging_id"])
        assert staging.status == "PENDING"
        assert staging.closings[0]["ending_serial"] == "045"
        assert db_session.query(LotteryShiftClosing).count() == 0
        assert db_session.get(LotteryPack, active_pack.id).status == "ACTIVE"

    def test_second_prepare_while_pending(self, store_a, manager, active_pack):
        _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "045"}])
        with pytest.raises(ConflictError) as exc:
            _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "046"}])
        assert exc.value.code == "DAY_CLOSE_PENDING"

    def test_prepare_after_expiry_replaces_staging(self, db_session, store_a, manager, active_pack):
        first = _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "045"}])
        _expire(db_session, first["staging_id"])

        second = _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "046"}])
        assert second["staging_id"] != first["staging_id"]
        assert db_session.get(LotteryDayCloseStaging, first["staging_id"]).status == "EXPIRED"

    def test_serial_beyond_end_rejected(self, db_session, store_a, manager, active_pack):
        with pytest.raises(ValidationError) as exc:
            _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "150"}])
        assert exc.value.code == "SERIAL_OUT_OF_RANGE"
        assert day_close_service.get_day_status(store_a.id, BUSINESS_DATE)["status"] == "OPEN"
        assert db_session.query(LotteryDayCloseStaging).count() == 0

    def test_serial_before_start_rejected(self, store_a, manager, cashier, active_pack):
        shift = shift_service.open_shift(store_a.id, cashier_id=cashier.id)
        shift_service.close_shift_lottery(
            shift.id,
            store_id=store_a.id,
            closed_by=cashier.id,
            closings=[{"pack_id": active_pack.id, "closing_serial": "030"}],
        )
        _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "040"}])
        _commit(store_a, manager)

        with pytest.raises(ValidationError) as exc:
            _prepare(
                store_a,
                manager,
                [{"pack_id": active_pack.id, "ending_serial": "039"}],
                business_date=BUSINESS_DATE + timedelta(days=1),
            )
        assert exc.value.code == "SERIAL_OUT_OF_RANGE"

    def test_open_shifts_block_prepare(self, store_a, manager, cashier, active_pack):
        shift = shift_service.open_shift(store_a.id, cashier_id=cashier.id)
        with pytest.raises(IllegalStateTransition) as exc:
            _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "045"}])
        assert exc.value.code == "SHIFTS_STILL_OPEN"
        assert exc.value.details == {"open_shift_ids": [shift.id]}

    def test_current_shift_is_exempt(self, store_a, cashier, active_pack):
        shift = shift_service.open_shift(store_a.id, cashier_id=cashier.id)
        preview = _prepare(
            store_a, cashier, [{"pack_id": active_pack.id, "ending_serial": "045"}], current_shift_id=shift.id
        )
        assert preview["status"] == "PENDING_CLOSE"

    def test_manual_entry_requires_authorizer(self, store_a, manager, active_pack):
        with pytest.raises(ValidationError) as exc:
            _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "045", "entry_method": "MANUAL"}])
        assert exc.value.code == "MANUAL_ENTRY_UNAUTHORIZED"

    def test_pack_not_active(self, store_a, manager, received_pack):
        with pytest.raises(IllegalStateTransition) as exc:
            _prepare(store_a, manager, [{"pack_id": received_pack.id, "ending_serial": "010"}])
        assert exc.value.code == "INVALID_PACK_STATUS"

    def test_foreign_pack(self, store_b, user_b, active_pack):
        with pytest.raises(NotFoundError) as exc:
            _prepare(store_b, user_b, [{"pack_id": active_pack.id, "ending_serial": "010"}])
        assert exc.value.code == "PACK_NOT_FOUND"

    @pytest.mark.parametrize("minutes", [4, 121])
    def test_expiry_window_bounds(self, store_a, manager, active_pack, minutes):
        with pytest.raises(ValidationError):
            _prepare(
                store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "010"}], expires_in_minutes=minutes
            )


class TestCommitDayClose:

    def test_commit_applies_everything(self, db_session, store_a, manager, bin_2, active_pack, second_pack):
        _prepare(
            store_a,
            manager,
            [
                {"pack_id": active_pack.id, "ending_serial": "045", "reported_tickets_sold": 44},
                {"pack_id": second_pack.id, "ending_serial": "149"},
            ],
        )
        result = _commit(store_a, manager)

        assert result["closings_created"] == 2
        assert result["lottery_total_cents"] == (45 + 149) * 500
        assert [row["depleted"] for row in result["bins_closed"]] == [False, True]
        assert len(result["variances"]) == 1
        assert result["variances"][0]["difference"] == -1

        closings = db_session.query(LotteryShiftClosing).order_by(LotteryShiftClosing.id).all()
        assert [c.closing_serial for c in closings] == ["045", "149"]
        assert all(c.day_id == result["day_id"] and c.shift_id is None for c in closings)

        variance = db_session.query(LotteryVariance).one()
        assert variance.day_id == result["day_id"]

        depleted = db_session.get(LotteryPack, second_pack.id)
        assert depleted.status == "DEPLETED"
        assert depleted.current_bin_id is None
        assert db_session.get(LotteryPack, active_pack.id).status == "ACTIVE"

        status = day_close_service.get_day_status(store_a.id, BUSINESS_DATE)
        assert status["status"] == "CLOSED"
        assert status["closed_at"] is not None
        assert db_session.query(LotteryDayCloseStaging).one().status == "COMMITTED"

    def test_commit_is_all_or_nothing(self, db_session, store_a, manager, active_pack, second_pack):
        _prepare(
            store_a,
            manager,
            [
                {"pack_id": active_pack.id, "ending_serial": "045"},
                {"pack_id": second_pack.id, "ending_serial": "050"},
            ],
        )
        # Sold out from another terminal between prepare and commit
        lifecycle_service.deplete_pack(second_pack.id, store_id=store_a.id, depleted_by=manager.id)

        with pytest.raises(IllegalStateTransition) as exc:
            _commit(store_a, manager)
        assert exc.value.code == "INVALID_PACK_STATUS"

        assert db_session.query(LotteryShiftClosing).count() == 0
        assert day_close_service.get_day_status(store_a.id, BUSINESS_DATE)["status"] == "PENDING_CLOSE"
        assert db_session.query(LotteryDayCloseStaging).one().status == "PENDING"

    def test_commit_after_expiry(self, db_session, store_a, manager, active_pack):
        preview = _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "045"}])
        _expire(db_session, preview["staging_id"])

        with pytest.raises(IllegalStateTransition) as exc:
            _commit(store_a, manager)
        assert exc.value.code == "PENDING_EXPIRED"

        assert day_close_service.get_day_status(store_a.id, BUSINESS_DATE)["status"] == "OPEN"
        assert db_session.get(LotteryDayCloseStaging, preview["staging_id"]).status == "EXPIRED"
        assert db_session.query(LotteryShiftClosing).count() == 0

    def test_commit_retries_transient_lock(self, db_session, store_a, manager, active_pack):
        _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "045"}])
        real_find_day = day_close_service._find_day
        calls = []

        def locked_once(*args, **kwargs):
            calls.append(kwargs.get("for_update"))
            if len(calls) == 1:
                raise OperationalError("SELECT", {}, Exception("database is locked"))
            return real_find_day(*args, **kwargs)

        with mock.patch.object(day_close_service, "_find_day", side_effect=locked_once):
            result = _commit(store_a, manager)

        assert calls == [True, True]
        assert result["closings_created"] == 1
        assert day_close_service.get_day_status(store_a.id, BUSINESS_DATE)["status"] == "CLOSED"
        assert db_session.query(LotteryShiftClosing).count() == 1

    def test_commit_twice(self, store_a, manager, active_pack):
        _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "045"}])
        _commit(store_a, manager)
        with pytest.raises(IllegalStateTransition) as exc:
            _commit(store_a, manager)
        assert exc.value.code == "DAY_ALREADY_CLOSED"

    def test_prepare_after_close(self, store_a, manager, active_pack):
        _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "045"}])
        _commit(store_a, manager)
        with pytest.raises(IllegalStateTransition) as exc:
            _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "046"}])
        assert exc.value.code == "DAY_ALREADY_CLOSED"

    def test_commit_without_prepare(self, store_a, manager):
        with pytest.raises(NotFoundError) as exc:
            _commit(store_a, manager)
        assert exc.value.code == "DAY_NOT_FOUND"

    def test_commit_after_cancel(self, store_a, manager, active_pack):
        _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "045"}])
        day_close_service.cancel_day_close(store_a.id, cancelled_by=manager.id, business_date=BUSINESS_DATE)
        with pytest.raises(IllegalStateTransition) as exc:
            _commit(store_a, manager)
        assert exc.value.code == "DAY_NOT_PENDING"

    def test_next_day_starts_at_previous_ending(self, store_a, manager, active_pack):
        _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "045"}])
        _commit(store_a, manager)

        preview = _prepare(
            store_a,
            manager,
            [{"pack_id": active_pack.id, "ending_serial": "060"}],
            business_date=BUSINESS_DATE + timedelta(days=1),
        )
        assert preview["bins_preview"][0]["starting_serial"] == "045"
        assert preview["bins_preview"][0]["tickets_sold"] == 15

    def test_current_shift_carried_to_variances(self, db_session, store_a, cashier, active_pack):
        shift = shift_service.open_shift(store_a.id, cashier_id=cashier.id)
        _prepare(
            store_a,
            cashier,
            [{"pack_id": active_pack.id, "ending_serial": "045", "reported_tickets_sold": 40}],
            current_shift_id=shift.id,
        )
        _commit(store_a, cashier)
        variance = db_session.query(LotteryVariance).one()
        assert variance.shift_id == shift.id


class TestCancelAndExpiry:

    def test_cancel_returns_day_to_open(self, db_session, store_a, manager, active_pack):
        preview = _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "045"}])
        assert day_close_service.cancel_day_close(store_a.id, cancelled_by=manager.id, business_date=BUSINESS_DATE)

        assert day_close_service.get_day_status(store_a.id, BUSINESS_DATE)["status"] == "OPEN"
        assert db_session.get(LotteryDayCloseStaging, preview["staging_id"]).status == "CANCELLED"

        again = _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "046"}])
        assert again["status"] == "PENDING_CLOSE"

    def test_cancel_without_pending(self, store_a, manager):
        assert day_close_service.cancel_day_close(
            store_a.id, cancelled_by=manager.id, business_date=BUSINESS_DATE
        ) is False

    def test_status_reports_pending_close(self, store_a, manager, active_pack):
        preview = _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "045"}])
        status = day_close_service.get_day_status(store_a.id, BUSINESS_DATE)
        assert status["status"] == "PENDING_CLOSE"
        assert status["pending_close"]["id"] == preview["staging_id"]
        assert status["pending_close"]["is_expired"] is False

    def test_status_of_untouched_day(self, store_a):
        status = day_close_service.get_day_status(store_a.id, BUSINESS_DATE)
        assert status == {
            "day_id": None,
            "business_date": "2026-10-16",
            "status": "OPEN",
            "pending_close": None,
        }

    def test_sweep_expires_only_stale_stagings(self, db_session, store_a, store_a2, manager, owner, game, active_pack):
        stale = _prepare(store_a, manager, [{"pack_id": active_pack.id, "ending_serial": "045"}])
        _expire(db_session, stale["staging_id"])

        other_pack = receive(store_a2, owner, game.game_code, 30)
        from backoffice.models import LotteryBin
        other_bin = LotteryBin(store_id=store_a2.id, name="A2 Bin", display_order=0)
        db_session.add(other_bin)
        db_session.commit()
        activate(other_pack, store_a2, other_bin, owner)
        fresh = _prepare(store_a2, owner, [{"pack_id": other_pack.id, "ending_serial": "010"}])

        assert day_close_service.expire_pending_closes() == 1
        assert db_session.get(LotteryDayCloseStaging, stale["staging_id"]).status == "EXPIRED"
        assert db_session.get(LotteryDayCloseStaging, fresh["staging_id"]).status == "PENDING"
        assert day_close_service.get_day_status(store_a.id, BUSINESS_DATE)["status"] == "OPEN"
        assert day_close_service.expire_pending_closes() == 0
