"""Working copy model and the repository adapters around it."""

from .files import FileRecord, FileStore, is_safe_path, normalise_path
from .repository import GitPushService, LocalRepository, PushService, RepositoryService
from .vcs import GitError, GitRepository

__all__ = [
    "FileRecord",
    "FileStore",
    "GitError",
    "GitPushService",
    "GitRepository",
    "LocalRepository",
    "PushService",
    "RepositoryService",
    "is_safe_path",
    "normalise_path",
]
