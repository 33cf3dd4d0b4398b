import threading
import unittest

from sqlalchemy.exc import SQLAlchemyError

from babysync.db import EntryRecord, SqlDbClient
from babysync.synchronizer import EntrySynchronizer


def _entry(code, entry_id, updated_at, deleted=False, **payload):
    return EntryRecord(
        family_code=code,
        entry_id=entry_id,
        payload={"id": entry_id, **payload},
        deleted=deleted,
        updated_at=updated_at,
    )


class SqlDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL client logic.
    """

    def setUp(self):
        self.db = SqlDbClient("sqlite+pysqlite:///:memory:")
        self.assertTrue(self.db.create_family("AB23CD", 10))

    def tearDown(self):
        self.db.close()

    def test_create_and_get_family(self):
        family = self.db.get_family("AB23CD")
        self.assertIsNotNone(family)
        self.assertEqual(family.created_at, 10)
        self.assertEqual(family.last_sync, 10)
        self.assertIsNone(self.db.get_family("XXXXXX"))

    def test_create_family_rejects_existing_code(self):
        self.assertFalse(self.db.create_family("AB23CD", 20))

    def test_save_push_upserts_entries_and_snapshot(self):
        saved = self.db.save_push(
            "AB23CD", "d1", [{"name": "Mia"}], [_entry("AB23CD", "e1", 100, note="x")], 500
        )
        self.assertTrue(saved)
        self.db.save_push(
            "AB23CD",
            "d1",
            [{"name": "Mia"}, {"name": "Ben"}],
            [_entry("AB23CD", "e1", 200, deleted=True)],
            600,
        )

        entries = self.db.list_entries_since("AB23CD", 0)
        self.assertEqual(len(entries), 1)
        self.assertTrue(entries[0].deleted)
        self.assertEqual(entries[0].updated_at, 200)
        self.assertEqual(entries[0].as_dict(), {"id": "e1", "_deleted": True})

        snapshots = self.db.list_snapshots("AB23CD")
        self.assertEqual(len(snapshots), 1)
        self.assertEqual(snapshots[0].profile_payload, [{"name": "Mia"}, {"name": "Ben"}])
        self.assertEqual(snapshots[0].updated_at, 600)
        self.assertEqual(self.db.get_family("AB23CD").last_sync, 600)

    def test_save_push_unknown_family(self):
        saved = self.db.save_push("XXXXXX", "d1", [], [_entry("XXXXXX", "e1", 1)], 5)
        self.assertFalse(saved)
        self.assertEqual(self.db.list_entries_since("XXXXXX", 0), [])
        self.assertEqual(self.db.list_snapshots("XXXXXX"), [])

    def test_failed_batch_rolls_back(self):
        bad = _entry("AB23CD", "e2", 100)
        bad.payload["blob"] = object()
        with self.assertRaises((TypeError, SQLAlchemyError)):
            self.db.save_push(
                "AB23CD", "d1", [], [_entry("AB23CD", "e1", 100), bad], 500
            )
        self.assertEqual(self.db.list_entries_since("AB23CD", 0), [])
        self.assertEqual(self.db.list_snapshots("AB23CD"), [])
        self.assertEqual(self.db.get_family("AB23CD").last_sync, 10)

    def test_list_entries_since_is_strict(self):
        self.db.save_push(
            "AB23CD",
            "d1",
            [],
            [_entry("AB23CD", "a", 100), _entry("AB23CD", "b", 101)],
            500,
        )
        ids = [e.entry_id for e in self.db.list_entries_since("AB23CD", 100)]
        self.assertEqual(ids, ["b"])

    def test_counts(self):
        self.db.save_push(
            "AB23CD",
            "d1",
            [],
            [_entry("AB23CD", "a", 1), _entry("AB23CD", "b", 2, deleted=True)],
            500,
        )
        self.db.save_snapshot("AB23CD", "d2", [], updated_at=700, now=700)
        self.assertEqual(self.db.count_devices("AB23CD"), 2)
        self.assertEqual(self.db.count_live_entries("AB23CD"), 1)
        self.assertEqual(self.db.get_family("AB23CD").last_sync, 700)

    def test_entries_are_isolated_per_family(self):
        self.db.create_family("ZZ99ZZ", 10)
        self.db.save_push("AB23CD", "d1", [], [_entry("AB23CD", "e1", 1)], 500)
        self.db.save_push("ZZ99ZZ", "d1", [], [_entry("ZZ99ZZ", "e1", 2, note="other")], 500)
        mine = self.db.list_entries_since("AB23CD", 0)
        self.assertEqual([e.payload for e in mine], [{"id": "e1"}])

    def test_fractional_timestamp_pulled_from_zero(self):
        sync = EntrySynchronizer(self.db, clock=lambda: 1_000)
        sync.push("AB23CD", "d1", [], [{"id": "e1", "_ts": 0.5}])
        ids = [e.entry_id for e in sync.pull("AB23CD", 0).entries]
        self.assertEqual(ids, ["e1"])

    def test_concurrent_pushes_from_threads(self):
        errors = []

        def push(device):
            try:
                for i in range(20):
                    self.db.save_push(
                        "AB23CD",
                        device,
                        [],
                        [_entry("AB23CD", f"{device}-{i}", 100 + i)],
                        500,
                    )
            except Exception as exc:
                errors.append(exc)

        threads = [
            threading.Thread(target=push, args=(f"d{n}",)) for n in range(4)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(self.db.list_entries_since("AB23CD", 0)), 80)
        self.assertEqual(self.db.count_devices("AB23CD"), 4)


if __name__ == "__main__":
    unittest.main()
