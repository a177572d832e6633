"""Git integration for configuration repository sync."""

from lifecycle_engine.git.git_client import (
    GitClientError,
    SyncResult,
    get_current_branch,
    get_current_sha,
    is_repository,
    sync_repository,
)

__all__ = [
    "GitClientError",
    "SyncResult",
    "get_current_branch",
    "get_current_sha",
    "is_repository",
    "sync_repository",
]
