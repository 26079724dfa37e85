from dataclasses import asdict, dataclass
from typing import List, Optional


@dataclass(frozen=True)
class User:
    """Represents a registered user.

    Attributes:
        id (str): Unique identifier for the user
        username (str): Unique, case-sensitive login name
        token (str): 64-char hex bearer token, issued once at registration
        created_ts (int): Unix timestamp in milliseconds when the user registered
    """
    id: str
    username: str
    token: str
    created_ts: int

    def to_dict(self) -> dict:
        return asdict(self)

    def to_public_dict(self) -> dict:
        """Same as ``to_dict`` without the token."""
        return {"id": self.id, "username": self.username, "created_ts": self.created_ts}


@dataclass(frozen=True)
class Group:
    """Represents a chat group.

    Attributes:
        id (str): Unique identifier for the group
        name (str): Display name (not unique)
        description (Optional[str]): Free text, may be None
        created_by (str): User ID of the group creator
        created_ts (int): Unix timestamp in milliseconds when the group was created
    """
    id: str
    name: str
    description: Optional[str]
    created_by: str
    created_ts: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Membership:
    """A (group, user) pair granting the user access to the group."""
    group_id: str
    user_id: str
    joined_ts: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Member:
    """Row of a group's member listing.

    Attributes:
        user_id (str): Member's user ID
        username (str): Member's username
        created_ts (int): When the user registered
        joined_ts (int): When the user joined this group
    """
    user_id: str
    username: str
    created_ts: int
    joined_ts: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Message:
    """Represents a message posted to a group.

    Attributes:
        id (str): Unique identifier for the message
        group_id (str): Group the message was posted to
        user_id (str): ID of the user who sent the message
        content (str): Trimmed message text
        created_ts (int): Unix timestamp in milliseconds when the message was sent
        username (Optional[str]): Sender's username, filled in by group listings
    """
    id: str
    group_id: str
    user_id: str
    content: str
    created_ts: int
    username: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class MessagePage:
    """One page of a group's history.

    Attributes:
        messages (List[Message]): Messages in the page, oldest first
        total (int): Number of messages in the whole group
        limit (int): Requested page size
        offset (int): Messages skipped from the newest end
    """
    messages: List[Message]
    total: int
    limit: int
    offset: int

    def to_dict(self) -> dict:
        return asdict(self)
