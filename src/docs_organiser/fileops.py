"""
File relocation helper.

Moves a source file to its destination folder under a new name. Name
collisions are resolved by appending a short content hash, and moves across
filesystems fall back to copy-then-delete.
"""

from __future__ import annotations

import hashlib
import os
import shutil
import threading
from pathlib import Path

import structlog

log = structlog.get_logger(__name__)

HASH_SUFFIX_LENGTH = 8

# Workers share destination folders; the exists-check and the move must not interleave.
_move_lock = threading.Lock()


def file_hash(path: str | os.PathLike) -> str:
    """Return the hex SHA-256 digest of a file's content."""
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for block in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(block)
    return digest.hexdigest()


def move_file(
    src: str | os.PathLike, dest_folder: str | os.PathLike, new_filename: str
) -> Path:
    """
    Move ``src`` to ``dest_folder/new_filename`` and return the final path.

    If the target exists, ``_<hash8>`` is inserted before the extension. If
    that name is taken as well the move is refused with FileExistsError; an
    existing file is never overwritten. On any failure the source is left in
    place.
    """
    src = Path(src)
    dest_path = Path(dest_folder) / new_filename
    dest_path.parent.mkdir(parents=True, exist_ok=True)

    with _move_lock:
        if dest_path.exists():
            digest = file_hash(src)[:HASH_SUFFIX_LENGTH]
            dest_path = dest_path.with_name(f"{dest_path.stem}_{digest}{dest_path.suffix}")
            if dest_path.exists():
                raise FileExistsError(f"Destination already exists: {dest_path}")
            log.info("Name collision; using hashed name", dest=str(dest_path))

        try:
            os.rename(src, dest_path)
            return dest_path
        except OSError as e:
            # Most likely a cross-device move; anything else fails again below.
            log.debug("Rename failed; copying instead", src=str(src), error=str(e))

        try:
            shutil.copy2(src, dest_path)
        except OSError:
            dest_path.unlink(missing_ok=True)
            raise
        try:
            src.unlink()
        except OSError:
            # Leave the source as the only copy.
            dest_path.unlink(missing_ok=True)
            raise
    return dest_path
