"""Workspace file helpers: atomic writes, write-once files and lenient reads."""

from __future__ import annotations

import os
import shutil
import tempfile
import time
from pathlib import Path

# Windows briefly locks files that a scanner or editor has open.
_REPLACE_ATTEMPTS = 5
_REPLACE_BACKOFF_SECONDS = 0.02

_LEGACY_ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")


def atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* through a sibling temp file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        for attempt in range(1, _REPLACE_ATTEMPTS + 1):
            try:
                os.replace(tmp_name, path)
                break
            except PermissionError:
                if attempt == _REPLACE_ATTEMPTS:
                    raise
                time.sleep(_REPLACE_BACKOFF_SECONDS * attempt)
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)


def write_text_if_absent(path: Path, content: str) -> bool:
    """Create *path* with *content* unless it already exists. Return True if written."""
    if path.exists():
        return False
    atomic_write_text(path, content)
    return True


def copy_if_exists(src: Path, dst: Path) -> bool:
    """Copy *src* to *dst* (creating parents) when *src* is a file."""
    if not src.is_file():
        return False
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dst)
    return True


def read_text_lenient(path: Path) -> str:
    """Return the text of *path*, or ``""`` when it is missing.

    Agent-written documents are usually UTF-8; anything else is decoded with
    the first legacy encoding that accepts it.
    """
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return ""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        pass
    for encoding in _LEGACY_ENCODINGS:
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    return raw.decode("utf-8", errors="replace")
