import functools

import grpc
from grpc import aio

from ..proto import wire
from .errors import ErrorKind, PersistenceError, ServiceResult
from .service import IdentityService, GroupService, MessageService
from ..utils.logger import setup_logger

logger = setup_logger('groupchat.server')

STATUS_BY_KIND = {
    ErrorKind.INVALID_TOKEN: grpc.StatusCode.UNAUTHENTICATED,
    ErrorKind.USER_NOT_FOUND: grpc.StatusCode.NOT_FOUND,
    ErrorKind.GROUP_NOT_FOUND: grpc.StatusCode.NOT_FOUND,
    ErrorKind.MESSAGE_NOT_FOUND: grpc.StatusCode.NOT_FOUND,
    ErrorKind.VALIDATION_ERROR: grpc.StatusCode.INVALID_ARGUMENT,
    ErrorKind.DUPLICATE_USERNAME: grpc.StatusCode.ALREADY_EXISTS,
    ErrorKind.ALREADY_MEMBER: grpc.StatusCode.ALREADY_EXISTS,
    ErrorKind.NOT_A_MEMBER: grpc.StatusCode.PERMISSION_DENIED,
    ErrorKind.PERSISTENCE_FAILURE: grpc.StatusCode.INTERNAL,
}


class BadRequest(ValueError):
    """Request body is missing a field or has one of the wrong type."""


async def abort(context: aio.ServicerContext, kind: ErrorKind, details: str):
    """End the call with the status code mapped from ``kind``.

    The kind itself travels in the ``error-kind`` trailing metadata.
    """
    await context.abort(
        STATUS_BY_KIND[kind],
        details,
        trailing_metadata=((wire.ERROR_KIND_METADATA_KEY, kind.value),),
    )


def rpc_method(fn):
    """Turn malformed requests and storage failures into gRPC errors.

    ``wire.decode`` hands over ``None`` for a body that is not a JSON
    object; that is reported here as INVALID_ARGUMENT.
    """

    @functools.wraps(fn)
    async def wrapper(self, request, context):
        try:
            if request is None:
                raise BadRequest("request body must be a JSON object")
            return await fn(self, request, context)
        except BadRequest as e:
            logger.info(f"{fn.__name__}: bad request: {e}")
            await abort(context, ErrorKind.VALIDATION_ERROR, str(e))
        except PersistenceError as e:
            logger.error(f"{fn.__name__}: storage failure: {e}")
            await abort(context, ErrorKind.PERSISTENCE_FAILURE, "Internal storage failure")

    return wrapper


def _str_field(request: dict, name: str, required: bool = True):
    value = request.get(name)
    if value is None:
        if required:
            raise BadRequest(f"'{name}' is required")
        return None
    if not isinstance(value, str):
        raise BadRequest(f"'{name}' must be a string")
    return value


def _int_field(request: dict, name: str, default: int) -> int:
    value = request.get(name, default)
    if value is None:
        return default
    # bool is an int subclass; reject it explicitly.
    if isinstance(value, bool) or not isinstance(value, int):
        raise BadRequest(f"'{name}' must be an integer")
    return value


def bearer_token(context: aio.ServicerContext) -> str:
    """Return the caller's token with any ``Bearer `` prefix removed, or ''."""
    for key, value in context.invocation_metadata() or ():
        if key == wire.AUTH_METADATA_KEY:
            if value.startswith(wire.BEARER_PREFIX):
                return value[len(wire.BEARER_PREFIX):].strip()
            return value.strip()
    return ""


class GroupChatServicer:
    """gRPC facade over the identity, group and message services.

    Every method takes and returns a JSON object (see ``groupchat.proto.wire``).
    Domain failures end the call with the status from ``STATUS_BY_KIND``.
    """

    def __init__(self, identity: IdentityService, groups: GroupService, messages: MessageService, page_size: int = 50):
        self.identity = identity
        self.groups = groups
        self.messages = messages
        self.page_size = page_size

    async def _unwrap(self, result: ServiceResult, context):
        if not result.success:
            await abort(context, result.error.kind, result.error.message)
        return result.value

    @rpc_method
    async def Health(self, request: dict, context: aio.ServicerContext) -> dict:
        return {"status": "healthy"}

    @rpc_method
    async def Register(self, request: dict, context: aio.ServicerContext) -> dict:
        """Register a new user; the response is the only one carrying the token."""
        username = _str_field(request, "username")
        user = await self._unwrap(self.identity.register(username), context)
        logger.info(f"Register: User '{user.username}' registered successfully with ID '{user.id}'")
        return user.to_dict()

    @rpc_method
    async def Authenticate(self, request: dict, context: aio.ServicerContext) -> dict:
        """Resolve the bearer token to its user (public fields only)."""
        user = self.identity.resolve_token(bearer_token(context))
        if user is None:
            await abort(context, ErrorKind.INVALID_TOKEN, "Invalid token")
        return user.to_public_dict()

    @rpc_method
    async def GetUser(self, request: dict, context: aio.ServicerContext) -> dict:
        user = self.identity.get_by_id(_str_field(request, "user_id"))
        if user is None:
            await abort(context, ErrorKind.USER_NOT_FOUND, "User not found")
        return user.to_public_dict()

    @rpc_method
    async def CreateGroup(self, request: dict, context: aio.ServicerContext) -> dict:
        name = _str_field(request, "name")
        description = _str_field(request, "description", required=False)
        group = await self._unwrap(self.groups.create_group(name, description, bearer_token(context)), context)
        logger.info(f"CreateGroup: User '{group.created_by}' created group '{group.name}' ({group.id})")
        return group.to_dict()

    @rpc_method
    async def ListGroups(self, request: dict, context: aio.ServicerContext) -> dict:
        return {"groups": [g.to_dict() for g in self.groups.list_all()]}

    @rpc_method
    async def ListUserGroups(self, request: dict, context: aio.ServicerContext) -> dict:
        groups = await self._unwrap(self.groups.list_user_groups(bearer_token(context)), context)
        return {"groups": [g.to_dict() for g in groups]}

    @rpc_method
    async def GetGroup(self, request: dict, context: aio.ServicerContext) -> dict:
        group = self.groups.get_by_id(_str_field(request, "group_id"))
        if group is None:
            await abort(context, ErrorKind.GROUP_NOT_FOUND, "Group not found")
        return group.to_dict()

    @rpc_method
    async def JoinGroup(self, request: dict, context: aio.ServicerContext) -> dict:
        group_id = _str_field(request, "group_id")
        membership = await self._unwrap(self.groups.join_group(group_id, bearer_token(context)), context)
        logger.info(f"JoinGroup: User '{membership.user_id}' joined group '{group_id}'")
        return {"message": "Successfully joined group", "membership": membership.to_dict()}

    @rpc_method
    async def ListMembers(self, request: dict, context: aio.ServicerContext) -> dict:
        members = await self._unwrap(self.groups.list_members(_str_field(request, "group_id")), context)
        return {"members": [m.to_dict() for m in members]}

    @rpc_method
    async def SendMessage(self, request: dict, context: aio.ServicerContext) -> dict:
        group_id = _str_field(request, "group_id")
        content = _str_field(request, "content")
        message = await self._unwrap(self.messages.send_message(group_id, content, bearer_token(context)), context)
        logger.debug(f"SendMessage: '{message.user_id}' posted {message.id} to group '{group_id}'")
        return message.to_dict()

    @rpc_method
    async def GetMessages(self, request: dict, context: aio.ServicerContext) -> dict:
        """One page of a group's history plus the group's total message count."""
        group_id = _str_field(request, "group_id")
        limit = _int_field(request, "limit", self.page_size)
        offset = _int_field(request, "offset", 0)
        page = await self._unwrap(self.messages.get_message_page(group_id, limit, offset), context)
        return page.to_dict()

    @rpc_method
    async def GetMessage(self, request: dict, context: aio.ServicerContext) -> dict:
        message = self.messages.get_by_id(_str_field(request, "message_id"))
        if message is None:
            await abort(context, ErrorKind.MESSAGE_NOT_FOUND, "Message not found")
        return message.to_dict()


def add_servicer_to_server(servicer: GroupChatServicer, server: aio.Server):
    """Register every method in ``wire.METHODS`` with JSON (de)serialization."""
    handlers = {
        name: grpc.unary_unary_rpc_method_handler(
            getattr(servicer, name),
            request_deserializer=wire.decode,
            response_serializer=wire.encode,
        )
        for name in wire.METHODS
    }
    server.add_generic_rpc_handlers((grpc.method_handlers_generic_handler(wire.SERVICE_NAME, handlers),))
