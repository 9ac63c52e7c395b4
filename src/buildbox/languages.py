"""Extension-based language tags shared by prompts and editor views."""

from __future__ import annotations

from pathlib import PurePosixPath

DEFAULT_LANGUAGE = "plaintext"

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    "js": "javascript",
    "jsx": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "rb": "ruby",
    "java": "java",
    "c": "c",
    "cpp": "cpp",
    "go": "go",
    "rs": "rust",
    "php": "php",
    "sql": "sql",
    "xml": "xml",
    "yaml": "yaml",
    "yml": "yaml",
    "html": "html",
    "css": "css",
    "scss": "scss",
    "json": "json",
    "md": "markdown",
}


def language_for(filename: str | None) -> str:
    """Return the language tag for ``filename`` or ``plaintext`` when unknown."""
    if not filename:
        return DEFAULT_LANGUAGE
    suffix = PurePosixPath(filename.replace("\\", "/")).suffix
    if not suffix:
        return DEFAULT_LANGUAGE
    return LANGUAGE_BY_EXTENSION.get(suffix[1:].lower(), DEFAULT_LANGUAGE)


__all__ = ["DEFAULT_LANGUAGE", "LANGUAGE_BY_EXTENSION", "language_for"]
