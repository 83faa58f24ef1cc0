"""Task store backends and repository interfaces."""

from playbook_api.app.storage.base import TaskStorage
from playbook_api.app.storage.postgres import PostgresTaskStorage
from playbook_api.app.storage.sqlite import SQLITE_URL_PREFIX, SQLiteTaskStorage


def build_storage(database_url: str, *, default_user: str = "admin") -> TaskStorage:
    """Pick a backend from the database URL scheme."""
    if database_url.startswith(SQLITE_URL_PREFIX):
        return SQLiteTaskStorage(database_url, default_user=default_user)
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgresTaskStorage(database_url, default_user=default_user)
    raise ValueError(f"Unsupported database URL: {database_url!r}")


__all__ = [
    "PostgresTaskStorage",
    "SQLiteTaskStorage",
    "TaskStorage",
    "build_storage",
]
