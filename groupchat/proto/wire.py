"""
Wire contract between the group chat server and its clients.

Messages are JSON objects encoded as UTF-8 bytes and carried by plain
unary-unary gRPC methods under ``SERVICE_NAME``.  Authenticated methods
expect an ``authorization: Bearer <token>`` metadata entry.
"""

import json
from typing import Optional

SERVICE_NAME = "groupchat.GroupChat"

METHODS = (
    "Health",
    "Register",
    "Authenticate",
    "GetUser",
    "CreateGroup",
    "ListGroups",
    "ListUserGroups",
    "GetGroup",
    "JoinGroup",
    "ListMembers",
    "SendMessage",
    "GetMessages",
    "GetMessage",
)

AUTH_METADATA_KEY = "authorization"
BEARER_PREFIX = "Bearer "
ERROR_KIND_METADATA_KEY = "error-kind"


def method_path(name: str) -> str:
    return f"/{SERVICE_NAME}/{name}"


def encode(payload: dict) -> bytes:
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


def decode(raw: bytes) -> Optional[dict]:
    """Decode a request body.

    Runs as the gRPC request deserializer, where an exception would end
    the call as INTERNAL. A body that is not a UTF-8 JSON object therefore
    decodes to ``None`` and the servicer rejects it as a bad request.
    """
    if not raw:
        return {}
    try:
        payload = json.loads(raw.decode("utf-8"))
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def bearer_metadata(token: str) -> tuple:
    return ((AUTH_METADATA_KEY, f"{BEARER_PREFIX}{token}"),)
