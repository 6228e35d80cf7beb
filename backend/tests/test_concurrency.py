# Overview: Concurrency coverage for pack activation and reception.

"""
Concurrency Tests

Two requests racing for the same pack or bin must never both win. The
threaded tests run against a file-backed SQLite database (one connection
per thread); the compare-and-swap test injects a concurrent write into the
middle of an activation so the guard is exercised deterministically.
"""

import os
import shutil
import tempfile
import threading
import unittest
from unittest import mock

from sqlalchemy import text

from backoffice import create_app
from backoffice.errors import AppError, ConflictError
from backoffice.extensions import db
from backoffice.models import (
    LotteryBin,
    LotteryGame,
    LotteryPack,
    LotteryPackBinHistory,
    Organization,
    Store,
    User,
)
from backoffice.services import lifecycle_service, pack_service, receive_service
from backoffice.services.serial_service import encode_serialized_number


SERIAL = encode_serialized_number("0042", "0000001", "000", "1234567890")


class ConcurrencyTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.tmpdir = tempfile.mkdtemp()
        cls.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///" + os.path.join(cls.tmpdir, "concurrency.sqlite3"),
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 15}},
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
        cls.ctx.pop()
        shutil.rmtree(cls.tmpdir, ignore_errors=True)

    def setUp(self):
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        self.org = Organization(name="Race Org", code="RACE")
        db.session.add(self.org)
        db.session.flush()

        self.store = Store(org_id=self.org.id, name="Race Store")
        db.session.add(self.store)
        db.session.flush()

        self.alice = User(org_id=self.org.id, store_id=self.store.id, username="alice")
        self.bob = User(org_id=self.org.id, store_id=self.store.id, username="bob")
        self.bin_1 = LotteryBin(store_id=self.store.id, name="Bin 1", display_order=0)
        self.bin_2 = LotteryBin(store_id=self.store.id, name="Bin 2", display_order=1)
        self.game = LotteryGame(game_code="0042", name="Lucky 7s", price_cents=500, tickets_per_pack=150)
        db.session.add_all([self.alice, self.bob, self.bin_1, self.bin_2, self.game])
        db.session.commit()

        self.ids = {
            "store": self.store.id,
            "alice": self.alice.id,
            "bob": self.bob.id,
            "bin_1": self.bin_1.id,
            "bin_2": self.bin_2.id,
        }

    def _race(self, *calls):
        """Run each call in its own thread and app context; return (results, errors)."""
        # The main thread's open read transaction would hold a SHARED lock
        db.session.rollback()
        barrier = threading.Barrier(len(calls))
        results = []
        errors = []
        lock = threading.Lock()

        def worker(call):
            with self.app.app_context():
                barrier.wait()
                try:
                    value = call()
                    with lock:
                        results.append(value)
                except AppError as exc:
                    with lock:
                        errors.append(exc.code)

        threads = [threading.Thread(target=worker, args=(call,)) for call in calls]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)
        return results, errors

    def test_concurrent_activation_has_single_winner(self):
        pack = pack_service.receive_pack(self.ids["store"], SERIAL, received_by=self.ids["alice"])
        pack_id = pack.id

        def activate_as(user_key, bin_key):
            return lambda: lifecycle_service.activate_pack(
                pack_id,
                store_id=self.ids["store"],
                bin_id=self.ids[bin_key],
                activated_by=self.ids[user_key],
            )

        results, errors = self._race(activate_as("alice", "bin_1"), activate_as("bob", "bin_2"))

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), 1)
        self.assertIn(errors[0], {"PACK_ALREADY_ACTIVE", "CONCURRENT_MODIFICATION"})

        db.session.expire_all()
        stored = db.session.get(LotteryPack, pack_id)
        self.assertEqual(stored.status, "ACTIVE")
        self.assertEqual(stored.current_bin_id, results[0]["updatedBin"]["id"])
        activations = db.session.query(LotteryPackBinHistory).filter_by(pack_id=pack_id, action="ACTIVATED").count()
        self.assertEqual(activations, 1)

    def test_concurrent_reception_creates_one_pack(self):
        def receive_as(user_key):
            return lambda: pack_service.receive_pack(
                self.ids["store"], SERIAL, received_by=self.ids[user_key]
            ).id

        results, errors = self._race(receive_as("alice"), receive_as("bob"))

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), 1)
        self.assertEqual(errors, ["DUPLICATE_PACK"])
        db.session.expire_all()
        self.assertEqual(db.session.query(LotteryPack).count(), 1)

    def test_concurrent_batches_report_duplicate(self):
        def batch_as(user_key):
            return lambda: receive_service.receive_packs_batch(
                self.ids["store"], [SERIAL], received_by=self.ids[user_key]
            )

        results, errors = self._race(batch_as("alice"), batch_as("bob"))

        self.assertEqual(errors, [])
        self.assertEqual(len(results), 2)
        self.assertEqual(sorted(len(r["created"]) for r in results), [0, 1])
        self.assertEqual(sorted(r["duplicates"] for r in results), [[], [SERIAL]])
        db.session.expire_all()
        self.assertEqual(db.session.query(LotteryPack).count(), 1)

    def test_two_packs_into_one_bin_leaves_one_occupant(self):
        first = pack_service.receive_pack(self.ids["store"], SERIAL, received_by=self.ids["alice"]).id
        second = pack_service.receive_pack(
            self.ids["store"],
            encode_serialized_number("0042", "0000002", "000", "1234567890"),
            received_by=self.ids["alice"],
        ).id

        def activate_into_bin_1(pack_id, user_key):
            return lambda: lifecycle_service.activate_pack(
                pack_id,
                store_id=self.ids["store"],
                bin_id=self.ids["bin_1"],
                activated_by=self.ids[user_key],
            )

        results, errors = self._race(activate_into_bin_1(first, "alice"), activate_into_bin_1(second, "bob"))

        self.assertEqual(errors, [])
        self.assertEqual(len(results), 2)
        db.session.expire_all()
        occupants = (
            db.session.query(LotteryPack)
            .filter_by(current_bin_id=self.ids["bin_1"], status="ACTIVE")
            .all()
        )
        self.assertEqual(len(occupants), 1)
        removed = db.session.query(LotteryPackBinHistory).filter_by(action="REMOVED").all()
        self.assertEqual(len(removed), 1)
        self.assertNotEqual(removed[0].pack_id, occupants[0].id)

    def test_lost_compare_and_swap_is_reported(self):
        pack = pack_service.receive_pack(self.ids["store"], SERIAL, received_by=self.ids["alice"])
        pack_id = pack.id
        real_require_user = lifecycle_service.require_user_in_store

        def concurrent_write(user_id, store):
            # Another request activates the pack after it was read as RECEIVED
            db.session.execute(
                text("UPDATE lottery_packs SET status = 'ACTIVE', current_bin_id = :bin_id WHERE id = :pack_id"),
                {"bin_id": self.ids["bin_2"], "pack_id": pack_id},
            )
            return real_require_user(user_id, store)

        with mock.patch.object(lifecycle_service, "require_user_in_store", side_effect=concurrent_write):
            with self.assertRaises(ConflictError) as ctx:
                lifecycle_service.activate_pack(
                    pack_id,
                    store_id=self.ids["store"],
                    bin_id=self.ids["bin_1"],
                    activated_by=self.ids["alice"],
                )
        self.assertEqual(ctx.exception.code, "CONCURRENT_MODIFICATION")

        # The whole activation (and the injected write) was rolled back
        db.session.expire_all()
        stored = db.session.get(LotteryPack, pack_id)
        self.assertEqual(stored.status, "RECEIVED")
        self.assertIsNone(stored.current_bin_id)
        self.assertEqual(db.session.query(LotteryPackBinHistory).count(), 0)


if __name__ == "__main__":
    unittest.main()
