"""Minimal git helpers used to commit working-copy changes."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Sequence


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


def _run(cwd: Path, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except FileNotFoundError as error:
        raise GitError("git executable not found") from error
    if check and result.returncode != 0:
        detail = (result.stderr or result.stdout or "").strip() or "unknown git error"
        raise GitError(f"git {' '.join(args)} failed: {detail}")
    return result


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def initialise(cls, root: Path | str) -> "GitRepository":
        """Initialise a git repository at ``root`` and commit its current contents."""

        path = Path(root).resolve()
        path.mkdir(parents=True, exist_ok=True)
        if not (path / ".git").exists():
            _run(path, ["init"])

        for key, value in (("user.email", "buildbox@example.com"), ("user.name", "buildbox")):
            if not _run(path, ["config", "--get", key], check=False).stdout.strip():
                _run(path, ["config", key, value])

        _run(path, ["add", "."])
        _run(path, ["commit", "--allow-empty", "-m", "Initial commit"])

        return cls(path)

    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return _run(self.root, list(args), check=check)

    def current_branch(self) -> str | None:
        """Return the current branch name or ``None`` when detached."""

        result = self.git("rev-parse", "--abbrev-ref", "HEAD", check=False)
        if result.returncode != 0:
            return None
        branch = result.stdout.strip()
        if not branch or branch == "HEAD":
            return None
        return branch

    def head(self) -> str | None:
        result = self.git("rev-parse", "--verify", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def commit_paths(self, paths: Sequence[str], message: str) -> str | None:
        """Stage ``paths`` (including removals) and commit only those paths.

        Returns the new commit SHA, or ``None`` when nothing changed.
        """

        if not paths:
            return None
        self.git("add", "--all", "--", *paths)

        commit = self.git("commit", "-m", message, "--", *paths, check=False)
        if commit.returncode != 0:
            output = commit.stderr.strip() or commit.stdout.strip() or ""
            if "nothing to commit" in output.lower() or "no changes added" in output.lower():
                return None
            raise GitError(f"git commit failed: {output}")
        return self.head()

    def push(self, remote: str, branch: str, *, set_upstream: bool = False) -> None:
        """Push ``branch`` to ``remote``."""

        args: List[str] = ["push"]
        if set_upstream:
            args.append("-u")
        args.extend([remote, branch])
        self.git(*args)


__all__ = ["GitError", "GitRepository"]
