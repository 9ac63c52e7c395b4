"""In-memory working copy of a repository checkout."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional, Tuple

__all__ = ["FileRecord", "FileStore", "is_safe_path", "normalise_path"]


def normalise_path(path: str) -> str:
    """Return ``path`` as a posix-style relative path."""
    cleaned = path.strip().replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned


def is_safe_path(path: str) -> bool:
    """Return ``True`` when ``path`` is relative and stays inside the checkout."""
    if not path:
        return False
    candidate = PurePosixPath(path)
    if candidate.is_absolute() or (len(path) > 1 and path[1] == ":"):
        return False
    return ".." not in candidate.parts


@dataclass(frozen=True, slots=True)
class FileRecord:
    """Single file in the working copy."""

    path: str
    content: str = ""
    is_modified: bool = False
    is_new: bool = False

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def with_content(self, content: str) -> "FileRecord":
        """Return a copy carrying ``content`` and flagged as modified."""
        return replace(self, content=content, is_modified=True)


class FileStore:
    """Immutable, insertion-ordered collection of :class:`FileRecord` keyed by path.

    Paths removed locally that exist upstream are kept as ``deleted_paths`` so
    a push can remove them. Every mutating helper returns a new store.
    """

    __slots__ = ("_records", "_deleted")

    def __init__(
        self,
        records: Iterable[FileRecord] = (),
        *,
        deleted_paths: Iterable[str] = (),
    ) -> None:
        ordered: dict[str, FileRecord] = {}
        for record in records:
            path = normalise_path(record.path)
            if path != record.path:
                record = replace(record, path=path)
            ordered[path] = record
        self._records: Mapping[str, FileRecord] = MappingProxyType(ordered)
        self._deleted = frozenset(
            normalise_path(path) for path in deleted_paths if normalise_path(path) not in ordered
        )

    @classmethod
    def from_records(cls, records: Iterable[FileRecord]) -> "FileStore":
        """Build a store from records fetched from a repository."""
        return cls(records)

    @classmethod
    def from_contents(cls, contents: Mapping[str, str]) -> "FileStore":
        """Build a store of unmodified records from ``path -> content``."""
        return cls(FileRecord(path=path, content=content) for path, content in contents.items())

    # ------------------------------------------------------------ mapping API
    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and normalise_path(path) in self._records

    def __iter__(self) -> Iterator[FileRecord]:
        return iter(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FileStore):
            return NotImplemented
        return (
            list(self._records.items()) == list(other._records.items())
            and self._deleted == other._deleted
        )

    def __repr__(self) -> str:
        return f"FileStore(files={len(self._records)}, deleted={len(self._deleted)})"

    def get(self, path: str) -> Optional[FileRecord]:
        return self._records.get(normalise_path(path))

    def paths(self) -> Tuple[str, ...]:
        return tuple(self._records)

    @property
    def records(self) -> Mapping[str, FileRecord]:
        """Read-only view of the ``path -> record`` mapping."""
        return self._records

    @property
    def deleted_paths(self) -> frozenset[str]:
        return self._deleted

    # ------------------------------------------------------------ derivations
    def with_content(self, path: str, content: str) -> "FileStore":
        """Apply a direct edit and return the resulting store."""
        key = normalise_path(path)
        existing = self._records.get(key)
        if existing is None:
            raise KeyError(key)
        updated = dict(self._records)
        updated[key] = existing.with_content(content)
        return FileStore(updated.values(), deleted_paths=self._deleted)

    def changed_files(self) -> Tuple[FileRecord, ...]:
        """Return records that are new or diverge from the last synced state."""
        return tuple(record for record in self._records.values() if record.is_modified or record.is_new)

    def has_changes(self) -> bool:
        return bool(self._deleted) or any(
            record.is_modified or record.is_new for record in self._records.values()
        )

    def mark_synced(self) -> "FileStore":
        """Return a store with all change flags and tombstones cleared."""
        return FileStore(
            replace(record, is_modified=False, is_new=False) for record in self._records.values()
        )
