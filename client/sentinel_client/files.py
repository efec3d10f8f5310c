"""Device-side file access for the file-listing relay.

Only the configured well-known directories are listed, and download/delete
requests for paths outside them are refused.
"""

from __future__ import annotations

import base64
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class FileAccessError(Exception):
    """Requested path is outside the shared directories or unreadable."""


def list_files(directories: list[str], limit: int = 100) -> list[dict]:
    """Flat listing of regular files, most recently modified first, capped at *limit*."""
    items: list[dict] = []
    for directory in directories:
        root = Path(directory)
        if not root.is_dir():
            logger.debug("Skipping missing directory %s", root)
            continue
        try:
            entries = list(os.scandir(root))
        except OSError as e:
            logger.warning("Cannot read %s: %s", root, e)
            continue
        for entry in entries:
            try:
                if not entry.is_file():
                    continue
                st = entry.stat()
            except OSError:
                continue
            items.append({
                "name": entry.name,
                "path": str(Path(entry.path).resolve()),
                "size": st.st_size,
                "mtime": st.st_mtime,
            })
    items.sort(key=lambda f: f["mtime"], reverse=True)
    return items[:limit]


def resolve_shared(path: str, directories: list[str]) -> Path:
    """Resolve *path* and check it lies inside one of *directories*."""
    resolved = Path(path).resolve()
    for directory in directories:
        root = Path(directory).resolve()
        if resolved == root or root in resolved.parents:
            return resolved
    raise FileAccessError(f"{path} is outside the shared directories")


def read_file_b64(path: str, directories: list[str]) -> str:
    """Whole file as base64 text. Large files are fully buffered."""
    resolved = resolve_shared(path, directories)
    try:
        return base64.b64encode(resolved.read_bytes()).decode("ascii")
    except OSError as e:
        raise FileAccessError(f"Cannot read {path}: {e}") from e


def delete_file(path: str, directories: list[str]) -> None:
    resolved = resolve_shared(path, directories)
    try:
        resolved.unlink()
    except OSError as e:
        raise FileAccessError(f"Cannot delete {path}: {e}") from e
