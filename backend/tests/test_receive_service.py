# Overview: Pytest coverage for batch pack reception.

from unittest import mock

import pytest
from sqlalchemy.exc import OperationalError

from backoffice.errors import NotFoundError, ValidationError
from backoffice.models import AuditLogEntry, LotteryPack
from backoffice.services import receive_service
from backoffice.services.receive_service import receive_packs_batch

from conftest import serial_for


class TestReceivePacksBatch:

    def test_partitions_results(self, db_session, store_a, cashier, game, received_pack):
        serials = [
            serial_for(game.game_code, 10),
            serial_for(game.game_code, 1),       # already in storage
            serial_for("9999", 11),              # unknown game
            "not-a-serial",
            serial_for(game.game_code, 10),      # repeated within the batch
            serial_for(game.game_code, 12, "033"),
        ]

        result = receive_packs_batch(store_a.id, serials, received_by=cashier.id)

        assert [item["pack_number"] for item in result["created"]] == ["0000010", "0000012"]
        assert all(item["game"]["game_code"] == game.game_code for item in result["created"])
        assert all(item["serial_start"] == "000" for item in result["created"])
        assert result["duplicates"] == [serials[1], serials[4]]
        assert result["games_not_found"] == [{"serial": serials[2], "game_code": "9999"}]
        assert len(result["errors"]) == 1
        assert result["errors"][0]["serial"] == "not-a-serial"
        assert result["errors"][0]["code"] == "INVALID_SERIAL"

        assert db_session.query(LotteryPack).filter_by(store_id=store_a.id).count() == 3

    def test_single_audit_summary(self, db_session, store_a, cashier, game):
        result = receive_packs_batch(
            store_a.id,
            [serial_for(game.game_code, 1), serial_for(game.game_code, 2)],
            received_by=cashier.id,
        )
        entries = db_session.query(AuditLogEntry).filter_by(action="BATCH_PACK_RECEIVED").all()
        assert len(entries) == 1
        assert entries[0].new_values["created"] == 2
        assert entries[0].new_values["pack_ids"] == [item["id"] for item in result["created"]]

    def test_all_duplicates_is_not_an_error(self, store_a, cashier, game, received_pack):
        result = receive_packs_batch(store_a.id, [serial_for(game.game_code, 1)], received_by=cashier.id)
        assert result["created"] == []
        assert result["duplicates"] == [serial_for(game.game_code, 1)]

    def test_store_scoped_game_used(self, store_a, cashier, game):
        from backoffice.services.pack_service import create_game
        local = create_game(
            game_code=game.game_code, name="Local", price_cents=300, tickets_per_pack=50, store_id=store_a.id
        )
        result = receive_packs_batch(store_a.id, [serial_for(game.game_code, 5)], received_by=cashier.id)
        created = result["created"][0]
        assert created["game_id"] == local.id
        assert created["serial_end"] == "049"

    def test_scan_validator_failures_go_to_errors(self, store_a, cashier, game):
        serials = [serial_for(game.game_code, 1), serial_for(game.game_code, 2)]
        metadata = [{"scanner": "ok"}, {"scanner": "tampered"}]

        result = receive_packs_batch(
            store_a.id,
            serials,
            received_by=cashier.id,
            scan_metadata=metadata,
            scan_validator=lambda serial, meta: meta["scanner"] == "ok",
        )
        assert len(result["created"]) == 1
        assert result["errors"] == [{"serial": serials[1], "error": "Scan validation failed"}]

    def test_unexpected_item_failure_is_isolated(self, store_a, cashier, game):
        def flaky(serial, meta):
            if serial.endswith("2" + "000" + "1234567890"):
                raise RuntimeError("scanner offline")
            return True

        serials = [serial_for(game.game_code, 1), serial_for(game.game_code, 2)]
        result = receive_packs_batch(store_a.id, serials, received_by=cashier.id, scan_validator=flaky)
        assert len(result["created"]) == 1
        assert result["errors"] == [
            {"serial": serials[1], "error": "Unexpected error while receiving pack", "code": "INTERNAL_ERROR"}
        ]
        assert "scanner offline" not in str(result)

    def test_transient_lock_is_retried(self, db_session, store_a, cashier, game):
        real_resolve = receive_service.resolve_game
        calls = []

        def locked_once(store_id, game_code):
            calls.append(game_code)
            if len(calls) == 1:
                raise OperationalError("SELECT", {}, Exception("database is locked"))
            return real_resolve(store_id, game_code)

        with mock.patch.object(receive_service, "resolve_game", side_effect=locked_once):
            result = receive_packs_batch(store_a.id, [serial_for(game.game_code, 1)], received_by=cashier.id)

        assert len(calls) == 2
        assert len(result["created"]) == 1
        assert db_session.query(LotteryPack).count() == 1
        assert db_session.query(AuditLogEntry).filter_by(action="BATCH_PACK_RECEIVED").count() == 1

    def test_empty_batch(self, store_a, cashier):
        with pytest.raises(ValidationError):
            receive_packs_batch(store_a.id, [], received_by=cashier.id)

    def test_batch_too_large(self, app, store_a, cashier, game):
        serials = [serial_for(game.game_code, n) for n in range(app.config["LOTTERY_BATCH_MAX_SIZE"] + 1)]
        with pytest.raises(ValidationError) as exc:
            receive_packs_batch(store_a.id, serials, received_by=cashier.id)
        assert exc.value.code == "BATCH_TOO_LARGE"

    def test_metadata_length_mismatch(self, store_a, cashier, game):
        with pytest.raises(ValidationError):
            receive_packs_batch(
                store_a.id, [serial_for(game.game_code, 1)], received_by=cashier.id, scan_metadata=[]
            )

    def test_foreign_store(self, db_session, store_b, cashier, game):
        with pytest.raises(NotFoundError):
            receive_packs_batch(store_b.id, [serial_for(game.game_code, 1)], received_by=cashier.id)
        assert db_session.query(LotteryPack).count() == 0
