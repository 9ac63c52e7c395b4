"""Repository fetch and push adapters backing the working copy."""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Sequence, Union, runtime_checkable

from ..languages import LANGUAGE_BY_EXTENSION
from ..planning.errors import ServiceError
from .files import FileRecord, is_safe_path, normalise_path
from .vcs import GitError, GitRepository

LOGGER = logging.getLogger(__name__)

Locator = Union[str, Path]

IGNORE_DIRS = frozenset(
    {
        ".git",
        "node_modules",
        ".next",
        "dist",
        "build",
        "__pycache__",
        ".venv",
        "venv",
        ".mypy_cache",
        ".pytest_cache",
    }
)

TEXT_EXTENSIONS = frozenset(
    {f".{extension}" for extension in LANGUAGE_BY_EXTENSION}
    | {".txt", ".toml", ".ini", ".cfg", ".sh"}
)

TEXT_FILENAMES = frozenset(
    {
        "Dockerfile",
        "Makefile",
        "Procfile",
        "Gemfile",
        "LICENSE",
        ".gitignore",
        ".dockerignore",
        ".editorconfig",
        ".env.example",
        ".nvmrc",
    }
)

DEFAULT_MAX_FILE_KB = 512


@runtime_checkable
class RepositoryService(Protocol):
    """Source of the files that seed a working copy."""

    def fetch_repository(self, locator: Locator) -> List[FileRecord]: ...


@runtime_checkable
class PushService(Protocol):
    """Destination for changed files; returns an identifier for the commit."""

    def commit(
        self,
        locator: Locator,
        files: Sequence[FileRecord],
        message: str,
        *,
        deleted: Iterable[str] = (),
    ) -> str: ...


def _resolve_target(root: Path, path: str) -> Path:
    relative = normalise_path(path)
    if not is_safe_path(relative):
        raise ServiceError(f"Refusing to write outside the repository: {path}")
    return root / relative


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return None


class LocalRepository:
    """Read and write a working copy rooted in a local directory."""

    def __init__(
        self,
        *,
        max_file_kb: int = DEFAULT_MAX_FILE_KB,
        ignore_dirs: Iterable[str] = IGNORE_DIRS,
        text_extensions: Iterable[str] = TEXT_EXTENSIONS,
        text_filenames: Iterable[str] = TEXT_FILENAMES,
        exclude: Iterable[Path] = (),
    ) -> None:
        self.max_file_bytes = max(1, int(max_file_kb)) * 1024
        self.ignore_dirs = frozenset(ignore_dirs)
        self.text_extensions = frozenset(ext.lower() for ext in text_extensions)
        self.text_filenames = frozenset(text_filenames)
        self.exclude = frozenset(Path(path).resolve() for path in exclude)

    def _is_text_candidate(self, path: Path) -> bool:
        return path.name in self.text_filenames or path.suffix.lower() in self.text_extensions

    def fetch_repository(self, locator: Locator) -> List[FileRecord]:
        """Return every readable text file below ``locator`` as unmodified records."""
        root = Path(locator).resolve()
        if not root.is_dir():
            raise ServiceError(f"Repository directory not found: {root}")

        records: List[FileRecord] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(
                d
                for d in dirnames
                if d not in self.ignore_dirs and (Path(dirpath) / d).resolve() not in self.exclude
            )
            for filename in sorted(filenames):
                path = Path(dirpath) / filename
                if not self._is_text_candidate(path):
                    continue
                try:
                    if path.stat().st_size > self.max_file_bytes:
                        LOGGER.info("Skipping oversized file %s", path)
                        continue
                    text = _read_text(path)
                except OSError as error:
                    raise ServiceError(f"Failed to read {path}: {error}") from error
                if text is None:
                    continue
                records.append(FileRecord(path=path.relative_to(root).as_posix(), content=text))
        LOGGER.info("Loaded %d file(s) from %s", len(records), root)
        return records

    def commit(
        self,
        locator: Locator,
        files: Sequence[FileRecord],
        message: str,
        *,
        deleted: Iterable[str] = (),
    ) -> str:
        """Write ``files``, remove ``deleted`` and return a digest of the change set."""
        root = Path(locator).resolve()
        touched = self._write_changes(root, files, deleted)
        digest = hashlib.sha256(message.encode("utf-8"))
        for path, content in touched:
            digest.update(path.encode("utf-8"))
            digest.update(b"\0")
            digest.update((content if content is not None else "").encode("utf-8"))
        return digest.hexdigest()

    def _write_changes(
        self,
        root: Path,
        files: Sequence[FileRecord],
        deleted: Iterable[str],
    ) -> List[tuple[str, Optional[str]]]:
        touched: List[tuple[str, Optional[str]]] = []
        try:
            root.mkdir(parents=True, exist_ok=True)
            for record in files:
                target = _resolve_target(root, record.path)
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(record.content, encoding="utf-8")
                touched.append((normalise_path(record.path), record.content))
            for path in sorted(deleted):
                target = _resolve_target(root, path)
                if not target.exists():
                    continue
                target.unlink()
                touched.append((normalise_path(path), None))
        except OSError as error:
            raise ServiceError(f"Failed to write repository changes: {error}") from error
        return touched


class GitPushService(LocalRepository):
    """Write changes into a git checkout and commit just the touched paths."""

    def __init__(
        self,
        *,
        remote: Optional[str] = None,
        branch: Optional[str] = None,
        max_file_kb: int = DEFAULT_MAX_FILE_KB,
    ) -> None:
        super().__init__(max_file_kb=max_file_kb)
        self.remote = remote
        self.branch = branch

    def commit(
        self,
        locator: Locator,
        files: Sequence[FileRecord],
        message: str,
        *,
        deleted: Iterable[str] = (),
    ) -> str:
        try:
            repo = GitRepository(locator)
            touched = self._write_changes(repo.root, files, deleted)
            sha = repo.commit_paths([path for path, _ in touched], message)
            if sha is None:
                sha = repo.head() or ""
            if self.remote:
                branch = self.branch or repo.current_branch()
                if not branch:
                    raise ServiceError("Cannot push from a detached HEAD without a configured branch.")
                repo.push(self.remote, branch)
        except GitError as error:
            raise ServiceError(str(error)) from error
        LOGGER.info("Committed %d path(s) as %s", len(touched), sha[:7] or "(no change)")
        return sha


__all__ = [
    "DEFAULT_MAX_FILE_KB",
    "GitPushService",
    "IGNORE_DIRS",
    "LocalRepository",
    "Locator",
    "PushService",
    "RepositoryService",
    "TEXT_EXTENSIONS",
]
