import asyncio
from typing import Optional

import grpc
import typer
from grpc import aio

from ..proto import wire

app = typer.Typer(help="Group chat command line client")

# Filled in by the top-level callback.
state = {"host": "127.0.0.1", "port": 50051}

TokenOption = typer.Option(None, "--token", envvar="GROUPCHAT_TOKEN", help="Bearer token from `register`")


async def _invoke(host: str, port: int, method: str, payload: dict, token: Optional[str] = None) -> dict:
    """Call one unary method on the server.

    Args:
        host (str): Server hostname
        port (int): Server port
        method (str): Method name from ``wire.METHODS``
        payload (dict): JSON request body
        token (str, optional): Bearer token sent as ``authorization`` metadata

    Returns:
        dict: Decoded response body

    Raises:
        grpc.aio.AioRpcError: The server rejected the call
    """
    async with aio.insecure_channel(f"{host}:{port}") as chan:
        call = chan.unary_unary(
            wire.method_path(method),
            request_serializer=wire.encode,
            response_deserializer=wire.decode,
        )
        metadata = wire.bearer_metadata(token) if token else None
        return await call(payload, metadata=metadata)


def call(method: str, payload: Optional[dict] = None, token: Optional[str] = None) -> dict:
    """Run ``_invoke`` to completion; print the error and exit 1 on RPC failure."""
    try:
        return asyncio.run(_invoke(state["host"], state["port"], method, payload or {}, token))
    except grpc.aio.AioRpcError as e:
        print(f"[error] {e.code().name}: {e.details()}")
        raise typer.Exit(code=1)


def _require(token: Optional[str]) -> str:
    if not token:
        print("[error] This command needs --token or GROUPCHAT_TOKEN")
        raise typer.Exit(code=2)
    return token


def _print_message(m: dict):
    print(f"[{m['created_ts']}] {m.get('username') or m['user_id']}: {m['content']}")


@app.callback()
def main(
    host: str = typer.Option("127.0.0.1", envvar="GROUPCHAT_HOST", help="Server hostname"),
    port: int = typer.Option(50051, envvar="GROUPCHAT_PORT", help="Server port"),
):
    state["host"] = host
    state["port"] = port


@app.command("health")
def health_cmd():
    """Check that the server is up."""
    print(f"[health] {call('Health')['status']}")


@app.command("register")
def register_cmd(username: str):
    """Register a new user and print the token. Keep it: it is shown only once."""
    user = call("Register", {"username": username})
    print(f"Registered as {user['username']} ({user['id']})")
    print(f"Token: {user['token']}")


@app.command("whoami")
def whoami_cmd(token: Optional[str] = TokenOption):
    """Show the user the token belongs to."""
    user = call("Authenticate", token=_require(token))
    print(f"{user['username']} ({user['id']})")


@app.command("user")
def user_cmd(user_id: str):
    """Show a user's public profile."""
    user = call("GetUser", {"user_id": user_id})
    print(f"{user['username']} ({user['id']}) registered at {user['created_ts']}")


@app.command("create-group")
def create_group_cmd(
    name: str,
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    token: Optional[str] = TokenOption,
):
    """Create a group; you become its first member."""
    group = call("CreateGroup", {"name": name, "description": description}, token=_require(token))
    print(f"[group] Created group {group['name']} ({group['id']})")


@app.command("groups")
def groups_cmd(
    mine: bool = typer.Option(False, "--mine", help="Only groups you belong to"),
    token: Optional[str] = TokenOption,
):
    """List groups, newest first."""
    if mine:
        resp = call("ListUserGroups", token=_require(token))
    else:
        resp = call("ListGroups")
    if not resp["groups"]:
        print("[groups] No groups found")
        return
    print("[groups] Groups:")
    for g in resp["groups"]:
        print(f" - {g['name']} ({g['id']})")


@app.command("group")
def group_cmd(group_id: str):
    """Show one group."""
    g = call("GetGroup", {"group_id": group_id})
    print(f"{g['name']} ({g['id']}) created by {g['created_by']}")
    if g.get("description"):
        print(g["description"])


@app.command("join")
def join_cmd(group_id: str, token: Optional[str] = TokenOption):
    """Join a group."""
    call("JoinGroup", {"group_id": group_id}, token=_require(token))
    print(f"[group] Joined group {group_id}")


@app.command("members")
def members_cmd(group_id: str):
    """List a group's members in join order."""
    resp = call("ListMembers", {"group_id": group_id})
    for m in resp["members"]:
        print(f" - {m['username']} ({m['user_id']}) joined {m['joined_ts']}")


@app.command("send")
def send_cmd(group_id: str, text: str, token: Optional[str] = TokenOption):
    """Post a message to a group you belong to."""
    m = call("SendMessage", {"group_id": group_id, "content": text}, token=_require(token))
    print(f"[sent] {m['id']}")


@app.command("messages")
def messages_cmd(
    group_id: str,
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
):
    """Show a page of a group's messages. Offset 0 is the newest page."""
    resp = call("GetMessages", {"group_id": group_id, "limit": limit, "offset": offset})
    for m in resp["messages"]:
        _print_message(m)
    print(f"[messages] {len(resp['messages'])} of {resp['total']}")


@app.command("message")
def message_cmd(message_id: str):
    """Show one message."""
    _print_message(call("GetMessage", {"message_id": message_id}))


if __name__ == "__main__":
    app()
