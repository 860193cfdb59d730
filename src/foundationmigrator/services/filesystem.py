"""Filesystem helpers for FoundationMigrator."""

import json
import logging
import os
import shutil
import stat
import sys
import tempfile
from typing import Any, Optional

from rich.console import Console


def write_json_atomic(path: str, data: Any, prefix: str = "foundation-"):
    """Writes JSON next to ``path`` and renames it into place.

    Raises ``OSError`` on failure; callers translate it into domain errors.
    """
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(prefix=prefix, suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
            json.dump(data, file_obj, indent=2, sort_keys=True)
            file_obj.write("\n")
        os.replace(temp_path, path)
    finally:
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError:
                pass


def write_bytes_atomic(path: str, content: bytes, mode: Optional[int] = None):
    """Replaces ``path`` with ``content`` atomically.

    The file gets ``mode`` when given, else the mode of the file it replaces,
    else the default mode for new files under the current umask.
    """
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)

    if mode is None:
        mode = _existing_mode(path)

    fd, temp_path = tempfile.mkstemp(prefix="restore-", dir=directory)
    try:
        with os.fdopen(fd, "wb") as file_obj:
            file_obj.write(content)
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    finally:
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError:
                pass


def _existing_mode(path: str) -> int:
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        mask = os.umask(0)
        os.umask(mask)
        return 0o666 & ~mask


class FileSystemService:
    """Encapsulates file and directory side effects."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def set_permissions(self, path: str, mode: int):
        if sys.platform == "win32":
            return

        try:
            os.chmod(path, mode)
        except OSError as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def set_tree_permissions(self, root: str, file_mode: int):
        if sys.platform == "win32" or not os.path.exists(root):
            return

        for current_root, _dirs, files in os.walk(root):
            for file_name in files:
                self.set_permissions(os.path.join(current_root, file_name), file_mode)

    def cleanup_dir(self, path: str):
        if os.path.exists(path):
            try:
                shutil.rmtree(path)
                self.logger.debug("Removed directory: %s", path)
            except OSError as exc:
                message = f"Warning: Could not remove {path}: {exc}"
                self.console.print(f"[yellow]{message}[/yellow]")
                self.logger.warning(message)
