import asyncio
from typing import Optional

from grpc import aio

from ..config import Settings, settings as default_settings
from .db import Database
from .repo import UsersRepo, MessagesRepo, GroupsRepo
from .rpc import GroupChatServicer, add_servicer_to_server, logger
from .service import IdentityService, GroupService, MessageService


def build_servicer(db: Database, page_size: int = 50) -> GroupChatServicer:
    """Wire stores and services around one database handle.

    Args:
        db (Database): Handle shared by every repository
        page_size (int): Default page size for GetMessages

    Returns:
        GroupChatServicer: Ready to be added to a gRPC server
    """
    identity = IdentityService(UsersRepo(db))
    groups = GroupService(GroupsRepo(db), identity)
    messages = MessageService(MessagesRepo(db), identity, groups)
    return GroupChatServicer(identity, groups, messages, page_size=page_size)


async def serve(config: Optional[Settings] = None):
    """Start the group chat server.

    Sets up and runs the gRPC server:
    - Database handle and schema migrations
    - User, group and message repositories
    - Identity, group and message services

    Args:
        config (Settings, optional): Runtime settings. Defaults to the
            environment-derived ``groupchat.config.settings``.

    Side Effects:
        - Creates the database file and directory if needed
        - Starts gRPC server and blocks until it terminates
        - Logs server startup progress
    """
    config = config or default_settings
    db = Database(config.db_path, timeout=config.db_timeout)
    version = db.init_schema()
    logger.info(f"Database {config.db_path} at schema version {version}")

    server = aio.server()
    add_servicer_to_server(build_servicer(db, page_size=config.page_size), server)
    listen_addr = f"{config.host}:{config.port}"
    server.add_insecure_port(listen_addr)
    logger.info(f"Server starting, listening on {listen_addr}")
    await server.start()
    logger.info(f"Server is now running on {listen_addr}")
    try:
        await server.wait_for_termination()
    finally:
        await server.stop(grace=5)
        logger.info("Server stopped")


def run():
    asyncio.run(serve())


if __name__ == "__main__":
    run()
