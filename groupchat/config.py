"""
Runtime configuration for the group chat server and client.

Values are read from environment variables when ``Settings`` is
instantiated; every field has a default so the server starts with no
configuration at all.  Relative paths are resolved against the current
working directory by the modules that use them.
"""

import os
from dataclasses import dataclass, field


def _default_log_dir() -> str:
    return os.path.join(os.path.dirname(__file__), "logs")


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    host: str = field(default_factory=lambda: os.getenv("GROUPCHAT_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("GROUPCHAT_PORT", "50051")))

    # SQLite database file.  The parent directory is created on startup.
    db_path: str = field(
        default_factory=lambda: os.getenv("GROUPCHAT_DB_PATH", "groupchat/data/groupchat.sqlite3")
    )
    # Seconds a connection waits on a locked database before failing.
    db_timeout: float = field(default_factory=lambda: float(os.getenv("GROUPCHAT_DB_TIMEOUT", "5.0")))

    log_level: str = field(default_factory=lambda: os.getenv("GROUPCHAT_LOG_LEVEL", "INFO"))
    log_dir: str = field(default_factory=lambda: os.getenv("GROUPCHAT_LOG_DIR", _default_log_dir()))

    # Page size used when a GetMessages request omits ``limit``.
    page_size: int = field(default_factory=lambda: int(os.getenv("GROUPCHAT_PAGE_SIZE", "50")))


# Environment variables must be set before this module is imported for
# them to be picked up by the shared instance.
settings = Settings()
