"""
SQLite storage handle and schema migrations.

A ``Database`` is built once at process start and handed to every
repository.  It never holds a connection itself: each ``transaction()``
opens a fresh connection, commits on normal exit and rolls back on any
exception, so concurrent requests never share a connection.  sqlite3
errors are translated into ``ConstraintViolation`` (uniqueness) and
``PersistenceError`` (everything else) before they leave this module.

Migrations are applied in order by ``init_schema``; applied versions are
recorded in the ``migrations`` table.  Append new migrations with an
incremented version number.
"""

import os
import re
import sqlite3
from contextlib import contextmanager
from typing import Iterator

from .errors import ConstraintViolation, PersistenceError
from ..utils.logger import setup_logger

logger = setup_logger('groupchat.db')

_UNIQUE_RE = re.compile(r"UNIQUE constraint failed: (.+)")

MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            username TEXT NOT NULL UNIQUE,
            token TEXT NOT NULL UNIQUE,
            created_ts INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS chat_groups (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            created_by TEXT NOT NULL,
            created_ts INTEGER NOT NULL,
            FOREIGN KEY(created_by) REFERENCES users(id)
        );

        -- The primary key is the one-membership-per-pair rule.
        CREATE TABLE IF NOT EXISTS memberships (
            group_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            joined_ts INTEGER NOT NULL,
            PRIMARY KEY(group_id, user_id),
            FOREIGN KEY(group_id) REFERENCES chat_groups(id),
            FOREIGN KEY(user_id) REFERENCES users(id)
        );

        CREATE TABLE IF NOT EXISTS messages (
            id TEXT PRIMARY KEY,
            group_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            content TEXT NOT NULL,
            created_ts INTEGER NOT NULL,
            FOREIGN KEY(group_id) REFERENCES chat_groups(id),
            FOREIGN KEY(user_id) REFERENCES users(id)
        );
        """,
    ),
    (
        2,
        """
        CREATE INDEX IF NOT EXISTS idx_chat_groups_created_ts ON chat_groups(created_ts);
        CREATE INDEX IF NOT EXISTS idx_memberships_user_id ON memberships(user_id);
        CREATE INDEX IF NOT EXISTS idx_messages_group_created ON messages(group_id, created_ts);
        """,
    ),
]


def _translate(exc: sqlite3.Error) -> Exception:
    if isinstance(exc, sqlite3.IntegrityError):
        match = _UNIQUE_RE.search(str(exc))
        if match:
            return ConstraintViolation(match.group(1))
    return PersistenceError(str(exc))


class Database:
    """Handle on one SQLite database file."""

    def __init__(self, path: str, timeout: float = 5.0):
        """Initialize the handle.

        Args:
            path (str): Path to the SQLite file
            timeout (float): Seconds to wait on a locked database

        Side Effects:
            - Creates the parent directory if it does not exist
        """
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self.path = path
        self.timeout = timeout

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        # Foreign keys are off by default and must be enabled per connection.
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection whose work is committed or rolled back as a unit.

        Raises:
            ConstraintViolation: A UNIQUE constraint rejected a write
            PersistenceError: Any other sqlite3 failure
        """
        try:
            conn = self.connect()
        except sqlite3.Error as e:
            logger.error(f"Could not open database {self.path}: {e}")
            raise PersistenceError(str(e)) from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise _translate(e) from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_schema(self) -> int:
        """Apply pending migrations.

        Returns:
            int: Schema version after migrating
        """
        with self.transaction() as conn:
            # WAL lets readers proceed while another connection writes.
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("CREATE TABLE IF NOT EXISTS migrations (version INTEGER PRIMARY KEY)")
            row = conn.execute("SELECT MAX(version) AS version FROM migrations").fetchone()
            current = row["version"] if row and row["version"] is not None else 0

            for version, sql in MIGRATIONS:
                if version > current:
                    # sqlite3 only opens transactions implicitly for DML, so
                    # a migration's DDL needs an explicit BEGIN to roll back
                    # together with its version row.
                    conn.execute("BEGIN")
                    for statement in sql.split(";"):
                        if statement.strip():
                            conn.execute(statement)
                    conn.execute("INSERT INTO migrations (version) VALUES (?)", (version,))
                    conn.commit()
                    logger.info(f"Applied migration {version} to {self.path}")
                    current = version
        return current
