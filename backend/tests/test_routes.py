# Overview: HTTP-level coverage for the lottery blueprint, health check and CLI.

from datetime import timedelta

from backoffice.models import LotteryDayCloseStaging, LotteryGame
from backoffice.time_utils import utcnow

from conftest import serial_for


def _error_code(response):
    body = response.get_json()
    assert body["success"] is False
    return body["error"]["code"]


class TestHealth:

    def test_healthy(self, client, db_session):
        response = client.get("/api/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["day_close"]["details"]["pending_closes"] == 0

    def test_expired_staging_degrades(self, client, db_session, store_a, manager, active_pack):
        response = client.post("/api/lottery/day-close/prepare", json={
            "store_id": store_a.id,
            "initiated_by": manager.id,
            "business_date": "2026-10-16",
            "closings": [{"pack_id": active_pack.id, "ending_serial": "010"}],
        })
        assert response.status_code == 200
        staging = db_session.get(LotteryDayCloseStaging, response.get_json()["data"]["staging_id"])
        staging.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        body = client.get("/api/health").get_json()
        assert body["status"] == "degraded"
        assert body["checks"]["day_close"]["details"]["expired_pending_cleanup"] == 1


class TestErrorShape:

    def test_unknown_route(self, client, db_session):
        response = client.get("/api/lottery/nope")
        assert response.status_code == 404
        assert _error_code(response) == "NOT_FOUND"

    def test_missing_fields(self, client, db_session):
        response = client.post("/api/lottery/packs/receive", json={"store_id": 1})
        assert response.status_code == 400
        assert _error_code(response) == "VALIDATION_ERROR"

    def test_missing_store_query_param(self, client, db_session):
        response = client.get("/api/lottery/packs")
        assert response.status_code == 400

    def test_body_must_be_object(self, client, db_session):
        response = client.post("/api/lottery/packs/receive", json=["x"])
        assert response.status_code == 400


class TestPackRoutes:

    def test_receive_then_duplicate(self, client, store_a, cashier, game):
        payload = {
            "store_id": store_a.id,
            "serialized_number": serial_for(game.game_code, 1),
            "received_by": cashier.id,
        }
        first = client.post("/api/lottery/packs/receive", json=payload)
        assert first.status_code == 201
        assert first.get_json()["data"]["status"] == "RECEIVED"

        second = client.post("/api/lottery/packs/receive", json=payload)
        assert second.status_code == 409
        assert _error_code(second) == "DUPLICATE_PACK"

    def test_malformed_serial(self, client, store_a, cashier, game):
        response = client.post("/api/lottery/packs/receive", json={
            "store_id": store_a.id, "serialized_number": "12345", "received_by": cashier.id,
        })
        assert response.status_code == 400
        assert _error_code(response) == "INVALID_SERIAL"

    def test_batch(self, client, store_a, cashier, game):
        response = client.post("/api/lottery/packs/receive/batch", json={
            "store_id": store_a.id,
            "received_by": cashier.id,
            "serialized_numbers": [serial_for(game.game_code, 1), serial_for("9999", 2)],
        })
        assert response.status_code == 201
        data = response.get_json()["data"]
        assert len(data["created"]) == 1
        assert data["games_not_found"][0]["game_code"] == "9999"

    def test_activate_and_history(self, client, store_a, cashier, bin_1, received_pack):
        response = client.post(f"/api/lottery/packs/{received_pack.id}/activate", json={
            "store_id": store_a.id, "bin_id": bin_1.id, "activated_by": cashier.id,
        })
        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["updatedBin"]["pack"]["id"] == received_pack.id
        assert data["previousPack"] is None

        history = client.get(f"/api/lottery/packs/{received_pack.id}/history?store_id={store_a.id}")
        assert [row["action"] for row in history.get_json()["data"]] == ["ACTIVATED"]

    def test_activate_foreign_pack(self, client, store_b, user_b, bin_b, received_pack):
        response = client.post(f"/api/lottery/packs/{received_pack.id}/activate", json={
            "store_id": store_b.id, "bin_id": bin_b.id, "activated_by": user_b.id,
        })
        assert response.status_code == 404
        assert _error_code(response) == "PACK_NOT_FOUND"

    def test_deplete_out_of_range(self, client, store_a, cashier, active_pack):
        response = client.post(f"/api/lottery/packs/{active_pack.id}/deplete", json={
            "store_id": store_a.id, "depleted_by": cashier.id, "closing_serial": "150",
        })
        assert response.status_code == 400
        assert _error_code(response) == "SERIAL_OUT_OF_RANGE"

    def test_list_packs(self, client, store_a, received_pack, active_pack):
        response = client.get(f"/api/lottery/packs?store_id={store_a.id}&status=ACTIVE")
        assert [row["id"] for row in response.get_json()["data"]] == [active_pack.id]


class TestShiftAndDayCloseRoutes:

    def test_shift_round_trip(self, client, store_a, cashier, active_pack):
        opened = client.post("/api/lottery/shifts/open", json={"store_id": store_a.id, "cashier_id": cashier.id})
        assert opened.status_code == 201
        shift = opened.get_json()["data"]
        assert [o["pack_id"] for o in shift["openings"]] == [active_pack.id]

        closing_data = client.get(f"/api/lottery/shifts/{shift['id']}/closing-data?store_id={store_a.id}")
        assert closing_data.get_json()["data"]["bins"][0]["pack"]["starting_serial"] == "000"

        closed = client.post(f"/api/lottery/shifts/{shift['id']}/close", json={
            "store_id": store_a.id,
            "closed_by": cashier.id,
            "closings": [{"pack_id": active_pack.id, "closing_serial": "020", "reported_tickets_sold": 19}],
        })
        assert closed.status_code == 200
        data = closed.get_json()["data"]
        assert data["lottery_total_cents"] == 10000
        variance_id = data["variances"][0]["id"]

        variances = client.get(f"/api/lottery/variances?store_id={store_a.id}&status=UNRESOLVED")
        assert [v["id"] for v in variances.get_json()["data"]] == [variance_id]

    def test_day_close_round_trip(self, client, store_a, manager, active_pack):
        prepared = client.post("/api/lottery/day-close/prepare", json={
            "store_id": store_a.id,
            "initiated_by": manager.id,
            "business_date": "2026-10-16",
            "closings": [{"pack_id": active_pack.id, "ending_serial": "030"}],
        })
        assert prepared.status_code == 200

        again = client.post("/api/lottery/day-close/prepare", json={
            "store_id": store_a.id,
            "initiated_by": manager.id,
            "business_date": "2026-10-16",
            "closings": [{"pack_id": active_pack.id, "ending_serial": "031"}],
        })
        assert again.status_code == 409
        assert _error_code(again) == "DAY_CLOSE_PENDING"

        committed = client.post("/api/lottery/day-close/commit", json={
            "store_id": store_a.id, "committed_by": manager.id, "business_date": "2026-10-16",
        })
        assert committed.status_code == 200
        assert committed.get_json()["data"]["lottery_total_cents"] == 15000

        status = client.get(f"/api/lottery/day-close/status?store_id={store_a.id}&business_date=2026-10-16")
        assert status.get_json()["data"]["status"] == "CLOSED"

    def test_bad_business_date(self, client, store_a, manager):
        response = client.post("/api/lottery/day-close/cancel", json={
            "store_id": store_a.id, "cancelled_by": manager.id, "business_date": "16/10/2026",
        })
        assert response.status_code == 400

    def test_approve_variance_requires_notes(self, client, store_a, cashier, manager, active_pack):
        shift = client.post("/api/lottery/shifts/open", json={
            "store_id": store_a.id, "cashier_id": cashier.id,
        }).get_json()["data"]
        closed = client.post(f"/api/lottery/shifts/{shift['id']}/close", json={
            "store_id": store_a.id,
            "closed_by": cashier.id,
            "closings": [{"pack_id": active_pack.id, "closing_serial": "020", "reported_tickets_sold": 21}],
        }).get_json()["data"]
        variance_id = closed["variances"][0]["id"]

        rejected = client.post(f"/api/lottery/variances/{variance_id}/approve", json={
            "store_id": store_a.id, "approved_by": manager.id,
        })
        assert rejected.status_code == 400

        approved = client.post(f"/api/lottery/variances/{variance_id}/approve", json={
            "store_id": store_a.id, "approved_by": manager.id, "approval_notes": "Miscount",
        })
        assert approved.status_code == 200
        assert approved.get_json()["data"]["status"] == "APPROVED"


class TestCli:

    def test_create_game_and_bin(self, app, db_session, store_a):
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            "lottery", "create-game", "--code", "0300", "--name", "Gold Rush",
            "--price-cents", "1000", "--tickets-per-pack", "100",
        ])
        assert result.exit_code == 0, result.output
        assert "Created game 0300" in result.output
        assert db_session.query(LotteryGame).filter_by(game_code="0300").count() == 1

        duplicate = runner.invoke(args=[
            "lottery", "create-game", "--code", "0300", "--name", "Gold Rush",
            "--price-cents", "1000", "--tickets-per-pack", "100",
        ])
        assert duplicate.exit_code != 0
        assert "DUPLICATE_GAME" in duplicate.output

        created_bin = runner.invoke(args=["lottery", "create-bin", "--store-id", str(store_a.id), "--name", "Front"])
        assert created_bin.exit_code == 0, created_bin.output
        assert "Created bin #1" in created_bin.output

    def test_expire_pending_closes(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["lottery", "expire-pending-closes"])
        assert result.exit_code == 0
        assert "Expired 0 pending day close(s)" in result.output
