import os
import shutil
import tempfile
import unittest
from unittest import mock

from groupchat.server import db as db_module
from groupchat.server.db import Database, MIGRATIONS
from groupchat.server.errors import ConstraintViolation, PersistenceError


class TestDatabase(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.temp_dir, "nested", "chat.sqlite3")
        self.db = Database(self.path)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_init_schema_is_idempotent(self):
        latest = MIGRATIONS[-1][0]
        self.assertEqual(self.db.init_schema(), latest)
        self.assertEqual(self.db.init_schema(), latest)
        self.assertTrue(os.path.exists(self.path))
        with self.db.transaction() as conn:
            versions = [r["version"] for r in conn.execute("SELECT version FROM migrations ORDER BY version")]
        self.assertEqual(versions, [v for v, _ in MIGRATIONS])

    def test_unique_violation_is_translated(self):
        self.db.init_schema()
        insert = "INSERT INTO users (id, username, token, created_ts) VALUES (?, ?, ?, ?)"
        with self.db.transaction() as conn:
            conn.execute(insert, ("u1", "alice", "t1", 1))
        with self.assertRaises(ConstraintViolation) as ctx:
            with self.db.transaction() as conn:
                conn.execute(insert, ("u2", "alice", "t2", 2))
        self.assertTrue(ctx.exception.involves("users.username"))
        self.assertFalse(ctx.exception.involves("users.token"))

    def test_failed_transaction_rolls_back_everything(self):
        self.db.init_schema()
        insert = "INSERT INTO users (id, username, token, created_ts) VALUES (?, ?, ?, ?)"
        with self.assertRaises(ConstraintViolation):
            with self.db.transaction() as conn:
                conn.execute(insert, ("u1", "alice", "t1", 1))
                conn.execute(insert, ("u1", "bob", "t2", 2))
        with self.db.transaction() as conn:
            count = conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
        self.assertEqual(count, 0)

    def test_foreign_keys_are_enforced(self):
        self.db.init_schema()
        with self.assertRaises(PersistenceError):
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO memberships (group_id, user_id, joined_ts) VALUES (?, ?, ?)",
                    ("no-group", "no-user", 1),
                )

    def test_failed_migration_leaves_no_partial_schema(self):
        broken = [(1, "CREATE TABLE first_half (x INTEGER); CREATE TABLE second_half (")]
        with mock.patch.object(db_module, "MIGRATIONS", broken):
            with self.assertRaises(PersistenceError):
                self.db.init_schema()
        with self.db.transaction() as conn:
            tables = {r["name"] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
            versions = conn.execute("SELECT COUNT(*) AS n FROM migrations").fetchone()["n"]
        self.assertNotIn("first_half", tables)
        self.assertEqual(versions, 0)

        self.assertEqual(self.db.init_schema(), MIGRATIONS[-1][0])

    def test_other_errors_become_persistence_errors(self):
        with self.assertRaises(PersistenceError):
            with self.db.transaction() as conn:
                conn.execute("SELECT * FROM no_such_table")


if __name__ == '__main__':
    unittest.main()
