import functools
import secrets
import time
import uuid
from typing import Callable, List, Optional

from .errors import ConstraintViolation, ErrorKind, PersistenceError, ServiceResult
from .models import User, Group, Membership, Member, Message, MessagePage
from .repo import UsersRepo, GroupsRepo, MessagesRepo
from .validation import (
    is_well_formed_token,
    validate_content,
    validate_group,
    validate_page,
    validate_username,
)
from ..utils.logger import setup_logger

logger = setup_logger('groupchat.service')

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


def new_token() -> str:
    """256 bits of randomness, hex encoded (64 chars)."""
    return secrets.token_hex(32)


def new_id() -> str:
    return uuid.uuid4().hex


def store_failure_as_result(action: str):
    """Return PERSISTENCE_FAILURE from a result-returning operation when the
    store fails at any step, reads included.

    Args:
        action (str): Completes the failure message "Failed to <action>"
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(self, *args, **kwargs):
            try:
                return fn(self, *args, **kwargs)
            except PersistenceError as e:
                logger.error(f"{fn.__name__}: store failure: {e}")
                return ServiceResult.fail(ErrorKind.PERSISTENCE_FAILURE, f"Failed to {action}")

        return wrapper

    return decorator


class IdentityService:
    """Registers users and resolves bearer tokens to users."""

    def __init__(
        self,
        users_repo: UsersRepo,
        clock: Clock = now_ms,
        token_factory: Callable[[], str] = new_token,
        id_factory: Callable[[], str] = new_id,
    ):
        """Initialize identity service.

        Args:
            users_repo (UsersRepo): User store
            clock: Returns the current time in Unix milliseconds
            token_factory: Produces a fresh bearer token
            id_factory: Produces a fresh user ID
        """
        self.users = users_repo
        self.clock = clock
        self.token_factory = token_factory
        self.id_factory = id_factory

    @store_failure_as_result("create user")
    def register(self, username: str) -> ServiceResult[User]:
        """Register a new user.

        The existence check is only a fast path; the store's unique index
        on ``username`` decides when two registrations race.

        Returns:
            ServiceResult[User]: The new user, token included. This is the
            only response that ever carries the token.
        """
        violations = validate_username(username)
        if violations:
            return ServiceResult.invalid(violations)

        if self.users.exists_by_username(username):
            logger.warning(f"register: username '{username}' already taken")
            return ServiceResult.fail(ErrorKind.DUPLICATE_USERNAME, f"Username {username} already exists")

        user = User(id=self.id_factory(), username=username, token=self.token_factory(), created_ts=self.clock())
        try:
            self.users.create(user)
        except ConstraintViolation as e:
            if e.involves("users.username"):
                logger.warning(f"register: username '{username}' taken by a concurrent registration")
                return ServiceResult.fail(ErrorKind.DUPLICATE_USERNAME, f"Username {username} already exists")
            logger.error(f"register: store rejected user '{username}': {e}")
            return ServiceResult.fail(ErrorKind.PERSISTENCE_FAILURE, "Failed to create user")
        except PersistenceError as e:
            logger.error(f"register: store failure for '{username}': {e}")
            return ServiceResult.fail(ErrorKind.PERSISTENCE_FAILURE, "Failed to create user")
        return ServiceResult.ok(user)

    def resolve_token(self, token: str) -> Optional[User]:
        if not is_well_formed_token(token):
            return None
        return self.users.find_by_token(token)

    def get_by_id(self, user_id: str) -> Optional[User]:
        return self.users.find_by_id(user_id)

    def get_by_username(self, username: str) -> Optional[User]:
        return self.users.find_by_username(username)


class GroupService:
    """Creates groups and manages membership."""

    def __init__(
        self,
        groups_repo: GroupsRepo,
        identity: IdentityService,
        clock: Clock = now_ms,
        id_factory: Callable[[], str] = new_id,
    ):
        self.groups = groups_repo
        self.identity = identity
        self.clock = clock
        self.id_factory = id_factory

    @store_failure_as_result("create group")
    def create_group(self, name: str, description: Optional[str], caller_token: str) -> ServiceResult[Group]:
        """Create a group owned by the caller.

        The group and the creator's membership are stored together; if
        either insert fails nothing is kept and PERSISTENCE_FAILURE is
        returned.
        """
        caller = self.identity.resolve_token(caller_token)
        if caller is None:
            return ServiceResult.fail(ErrorKind.INVALID_TOKEN, "Invalid user token")

        violations = validate_group(name, description)
        if violations:
            return ServiceResult.invalid(violations)

        now = self.clock()
        group = Group(
            id=self.id_factory(),
            name=name.strip(),
            description=description,
            created_by=caller.id,
            created_ts=now,
        )
        try:
            self.groups.create_group(group, joined_ts=now)
        except (ConstraintViolation, PersistenceError) as e:
            logger.error(f"create_group: store failure for '{group.name}' by {caller.id}: {e}")
            return ServiceResult.fail(ErrorKind.PERSISTENCE_FAILURE, "Failed to create group")
        return ServiceResult.ok(group)

    @store_failure_as_result("join group")
    def join_group(self, group_id: str, caller_token: str) -> ServiceResult[Membership]:
        """Add the caller to a group.

        Joining a group twice is an error (ALREADY_MEMBER), whether the
        second attempt is caught by the membership check or by the
        store's primary key on (group_id, user_id).
        """
        caller = self.identity.resolve_token(caller_token)
        if caller is None:
            return ServiceResult.fail(ErrorKind.INVALID_TOKEN, "Invalid user token")

        if self.groups.get_group(group_id) is None:
            return ServiceResult.fail(ErrorKind.GROUP_NOT_FOUND, "Group not found")

        if self.groups.is_member(group_id, caller.id):
            logger.info(f"join_group: user {caller.id} already in group {group_id}")
            return ServiceResult.fail(ErrorKind.ALREADY_MEMBER, "User is already a member of this group")

        try:
            membership = self.groups.add_member(group_id, caller.id, self.clock())
        except ConstraintViolation:
            logger.info(f"join_group: concurrent join of user {caller.id} to group {group_id} rejected")
            return ServiceResult.fail(ErrorKind.ALREADY_MEMBER, "User is already a member of this group")
        except PersistenceError as e:
            logger.error(f"join_group: store failure adding {caller.id} to {group_id}: {e}")
            return ServiceResult.fail(ErrorKind.PERSISTENCE_FAILURE, "Failed to join group")
        return ServiceResult.ok(membership)

    def get_by_id(self, group_id: str) -> Optional[Group]:
        return self.groups.get_group(group_id)

    def list_all(self) -> List[Group]:
        return self.groups.list_groups()

    @store_failure_as_result("list groups")
    def list_user_groups(self, caller_token: str) -> ServiceResult[List[Group]]:
        """Groups the caller belongs to, newest first."""
        caller = self.identity.resolve_token(caller_token)
        if caller is None:
            return ServiceResult.fail(ErrorKind.INVALID_TOKEN, "Invalid user token")
        return ServiceResult.ok(self.groups.get_user_groups(caller.id))

    @store_failure_as_result("list members")
    def list_members(self, group_id: str) -> ServiceResult[List[Member]]:
        if self.groups.get_group(group_id) is None:
            return ServiceResult.fail(ErrorKind.GROUP_NOT_FOUND, "Group not found")
        return ServiceResult.ok(self.groups.get_members(group_id))

    def is_member(self, group_id: str, user_id: str) -> bool:
        return self.groups.is_member(group_id, user_id)


class MessageService:
    """Posts and reads group messages."""

    def __init__(
        self,
        messages_repo: MessagesRepo,
        identity: IdentityService,
        groups: GroupService,
        clock: Clock = now_ms,
        id_factory: Callable[[], str] = new_id,
    ):
        self.messages = messages_repo
        self.identity = identity
        self.groups = groups
        self.clock = clock
        self.id_factory = id_factory

    @store_failure_as_result("send message")
    def send_message(self, group_id: str, content: str, caller_token: str) -> ServiceResult[Message]:
        """Post a message to a group the caller belongs to.

        Checks run in order: token, group, membership, content.
        """
        caller = self.identity.resolve_token(caller_token)
        if caller is None:
            return ServiceResult.fail(ErrorKind.INVALID_TOKEN, "Invalid user token")

        if self.groups.get_by_id(group_id) is None:
            return ServiceResult.fail(ErrorKind.GROUP_NOT_FOUND, "Group not found")

        if not self.groups.is_member(group_id, caller.id):
            logger.warning(f"send_message: user {caller.id} is not a member of group {group_id}")
            return ServiceResult.fail(ErrorKind.NOT_A_MEMBER, "User is not a member of this group")

        violations = validate_content(content)
        if violations:
            return ServiceResult.invalid(violations)

        message = Message(
            id=self.id_factory(),
            group_id=group_id,
            user_id=caller.id,
            content=content.strip(),
            created_ts=self.clock(),
            username=caller.username,
        )
        try:
            self.messages.append(message)
        except (ConstraintViolation, PersistenceError) as e:
            logger.error(f"send_message: store failure for {caller.id} in {group_id}: {e}")
            return ServiceResult.fail(ErrorKind.PERSISTENCE_FAILURE, "Failed to send message")
        return ServiceResult.ok(message)

    @store_failure_as_result("read messages")
    def get_group_messages(self, group_id: str, limit: int = 50, offset: int = 0) -> ServiceResult[List[Message]]:
        """Return one page of a group's messages.

        Page 0 holds the newest ``limit`` messages; within a page the
        messages are oldest first.
        """
        if self.groups.get_by_id(group_id) is None:
            return ServiceResult.fail(ErrorKind.GROUP_NOT_FOUND, "Group not found")
        violations = validate_page(limit, offset)
        if violations:
            return ServiceResult.invalid(violations)
        return ServiceResult.ok(self.messages.get_group_messages(group_id, limit, offset))

    @store_failure_as_result("count messages")
    def count_group_messages(self, group_id: str) -> ServiceResult[int]:
        if self.groups.get_by_id(group_id) is None:
            return ServiceResult.fail(ErrorKind.GROUP_NOT_FOUND, "Group not found")
        return ServiceResult.ok(self.messages.count_for_group(group_id))

    @store_failure_as_result("read messages")
    def get_message_page(self, group_id: str, limit: int = 50, offset: int = 0) -> ServiceResult[MessagePage]:
        """Like ``get_group_messages`` but also returns the group's total.

        The page and the total come from one read snapshot, so the total
        always agrees with the page even while other clients are posting.
        """
        if self.groups.get_by_id(group_id) is None:
            return ServiceResult.fail(ErrorKind.GROUP_NOT_FOUND, "Group not found")
        violations = validate_page(limit, offset)
        if violations:
            return ServiceResult.invalid(violations)
        messages, total = self.messages.get_group_page(group_id, limit, offset)
        return ServiceResult.ok(MessagePage(messages=messages, total=total, limit=limit, offset=offset))

    def get_by_id(self, message_id: str) -> Optional[Message]:
        return self.messages.get(message_id)
