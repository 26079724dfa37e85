from typing import List, Optional, Tuple

from .db import Database
from .models import User, Group, Membership, Member, Message
from ..utils.logger import setup_logger

logger = setup_logger('groupchat.repo')


def _user(row) -> User:
    return User(id=row["id"], username=row["username"], token=row["token"], created_ts=row["created_ts"])


def _group(row) -> Group:
    return Group(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        created_by=row["created_by"],
        created_ts=row["created_ts"],
    )


def _message(row) -> Message:
    keys = row.keys()
    return Message(
        id=row["id"],
        group_id=row["group_id"],
        user_id=row["user_id"],
        content=row["content"],
        created_ts=row["created_ts"],
        username=row["username"] if "username" in keys else None,
    )


class UsersRepo:
    """Repository for registered users."""

    def __init__(self, db: Database):
        """Initialize users repository.

        Args:
            db (Database): Shared database handle
        """
        self.db = db

    def create(self, user: User) -> User:
        """Add new user to repository.

        Args:
            user (User): User object to store

        Returns:
            User: The stored user

        Raises:
            ConstraintViolation: Username or token already taken
            PersistenceError: Write failed for another reason

        Side Effects:
            - Inserts a row into ``users``
            - Logs user registration
        """
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO users (id, username, token, created_ts) VALUES (?, ?, ?, ?)",
                (user.id, user.username, user.token, user.created_ts),
            )
        logger.info(f"New user registered: {user.username} (ID: {user.id})")
        return user

    def find_by_id(self, user_id: str) -> Optional[User]:
        return self._find_one("SELECT * FROM users WHERE id = ?", user_id)

    def find_by_username(self, username: str) -> Optional[User]:
        """Find user by username (case sensitive).

        Args:
            username (str): Username to search for

        Returns:
            Optional[User]: User object if found, None otherwise
        """
        return self._find_one("SELECT * FROM users WHERE username = ?", username)

    def find_by_token(self, token: str) -> Optional[User]:
        return self._find_one("SELECT * FROM users WHERE token = ?", token)

    def exists_by_username(self, username: str) -> bool:
        with self.db.transaction() as conn:
            row = conn.execute("SELECT 1 FROM users WHERE username = ?", (username,)).fetchone()
        return row is not None

    def _find_one(self, sql: str, value: str) -> Optional[User]:
        with self.db.transaction() as conn:
            row = conn.execute(sql, (value,)).fetchone()
        return _user(row) if row else None


class GroupsRepo:
    """Repository for chat groups and their memberships."""

    def __init__(self, db: Database):
        self.db = db

    def create_group(self, group: Group, joined_ts: int) -> Group:
        """Create a new chat group with its creator as first member.

        The group row and the creator's membership are written in one
        transaction: either both exist afterwards or neither does.

        Args:
            group (Group): Group to store
            joined_ts (int): Timestamp recorded on the creator's membership

        Returns:
            Group: The stored group

        Raises:
            ConstraintViolation: A uniqueness rule rejected either insert
            PersistenceError: Write failed for another reason

        Side Effects:
            - Inserts into ``chat_groups`` and ``memberships``
            - Logs group creation
        """
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO chat_groups (id, name, description, created_by, created_ts) VALUES (?, ?, ?, ?, ?)",
                (group.id, group.name, group.description, group.created_by, group.created_ts),
            )
            self._insert_member(conn, group.id, group.created_by, joined_ts)
        logger.info(f"New group created: {group.name} ({group.id}) by user {group.created_by}")
        return group

    def add_member(self, group_id: str, user_id: str, joined_ts: int) -> Membership:
        """Add a member to an existing group.

        Args:
            group_id (str): ID of group to add member to
            user_id (str): ID of user to add
            joined_ts (int): Join timestamp

        Returns:
            Membership: The new membership

        Raises:
            ConstraintViolation: The user is already a member
            PersistenceError: Write failed for another reason (e.g. unknown group)
        """
        with self.db.transaction() as conn:
            self._insert_member(conn, group_id, user_id, joined_ts)
        logger.info(f"Added user {user_id} to group {group_id}")
        return Membership(group_id=group_id, user_id=user_id, joined_ts=joined_ts)

    def _insert_member(self, conn, group_id: str, user_id: str, joined_ts: int):
        conn.execute(
            "INSERT INTO memberships (group_id, user_id, joined_ts) VALUES (?, ?, ?)",
            (group_id, user_id, joined_ts),
        )

    def get_group(self, group_id: str) -> Optional[Group]:
        with self.db.transaction() as conn:
            row = conn.execute("SELECT * FROM chat_groups WHERE id = ?", (group_id,)).fetchone()
        return _group(row) if row else None

    def list_groups(self) -> List[Group]:
        """Get all groups, newest first.

        Groups created in the same millisecond come out in reverse
        insertion order.
        """
        with self.db.transaction() as conn:
            rows = conn.execute("SELECT * FROM chat_groups ORDER BY created_ts DESC, rowid DESC").fetchall()
        return [_group(r) for r in rows]

    def get_members(self, group_id: str) -> List[Member]:
        """Get the members of a group in join order."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT u.id AS user_id, u.username, u.created_ts, m.joined_ts
                FROM memberships m
                JOIN users u ON u.id = m.user_id
                WHERE m.group_id = ?
                ORDER BY m.joined_ts ASC, m.rowid ASC
                """,
                (group_id,),
            ).fetchall()
        return [
            Member(user_id=r["user_id"], username=r["username"], created_ts=r["created_ts"], joined_ts=r["joined_ts"])
            for r in rows
        ]

    def get_user_groups(self, user_id: str) -> List[Group]:
        """Get all groups that a user is a member of, newest first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT g.* FROM chat_groups g
                JOIN memberships m ON m.group_id = g.id
                WHERE m.user_id = ?
                ORDER BY g.created_ts DESC, g.rowid DESC
                """,
                (user_id,),
            ).fetchall()
        return [_group(r) for r in rows]

    def is_member(self, group_id: str, user_id: str) -> bool:
        """Check if a user is a member of a specific group.

        Returns:
            bool: True if user is a member, False if not or if group doesn't exist
        """
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM memberships WHERE group_id = ? AND user_id = ?",
                (group_id, user_id),
            ).fetchone()
        return row is not None


class MessagesRepo:
    """Repository for group messages."""

    def __init__(self, db: Database):
        self.db = db

    def append(self, m: Message) -> Message:
        """Append new message to repository.

        Raises:
            PersistenceError: Write failed

        Side Effects:
            - Inserts into ``messages``
            - Logs message storage
        """
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO messages (id, group_id, user_id, content, created_ts) VALUES (?, ?, ?, ?, ?)",
                (m.id, m.group_id, m.user_id, m.content, m.created_ts),
            )
        logger.info(f"New group message saved: {m.id} from {m.user_id} to group {m.group_id}")
        return m

    def get_group_messages(self, group_id: str, limit: int = 50, offset: int = 0) -> List[Message]:
        """Get one page of a group's history.

        The window is taken over newest-first order (offset 0 holds the
        newest ``limit`` messages) and then reversed, so each page reads
        oldest to newest.

        Args:
            group_id (str): Group to read
            limit (int, optional): Max messages to return. Defaults to 50
            offset (int, optional): Messages to skip from the newest end. Defaults to 0

        Returns:
            list[Message]: Messages with sender usernames, oldest first
        """
        with self.db.transaction() as conn:
            return self._page(conn, group_id, limit, offset)

    def get_group_page(self, group_id: str, limit: int = 50, offset: int = 0) -> Tuple[List[Message], int]:
        """Get one page of a group's history together with its message count.

        Both reads run inside one explicit transaction so they see the same
        snapshot.

        Returns:
            tuple[list[Message], int]: The page (oldest first) and the total
        """
        with self.db.transaction() as conn:
            conn.execute("BEGIN")
            page = self._page(conn, group_id, limit, offset)
            total = self._count(conn, group_id)
        return page, total

    def _page(self, conn, group_id: str, limit: int, offset: int) -> List[Message]:
        rows = conn.execute(
            """
            SELECT m.*, u.username
            FROM messages m
            JOIN users u ON u.id = m.user_id
            WHERE m.group_id = ?
            ORDER BY m.created_ts DESC, m.rowid DESC
            LIMIT ? OFFSET ?
            """,
            (group_id, limit, offset),
        ).fetchall()
        page = [_message(r) for r in rows]
        page.reverse()
        return page

    def _count(self, conn, group_id: str) -> int:
        row = conn.execute("SELECT COUNT(*) AS n FROM messages WHERE group_id = ?", (group_id,)).fetchone()
        return row["n"]

    def get(self, message_id: str) -> Optional[Message]:
        with self.db.transaction() as conn:
            row = conn.execute(
                """
                SELECT m.*, u.username FROM messages m
                JOIN users u ON u.id = m.user_id
                WHERE m.id = ?
                """,
                (message_id,),
            ).fetchone()
        return _message(row) if row else None

    def count_for_group(self, group_id: str) -> int:
        with self.db.transaction() as conn:
            return self._count(conn, group_id)
