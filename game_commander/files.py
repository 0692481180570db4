"""
Game Commander — Sandboxed File Access
═════════════════════════════════════════
list / read / write / mkdir / delete inside one instance's data directory.

Every relative path is resolved (symlinks included) against the instance
root and must stay under it; anything else is AccessDenied before the
filesystem is touched. Errors never carry the absolute host path.
"""

import os
import shutil
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Union

from . import config
from .errors import AccessDenied, FileTooLarge, InvalidSpecError, NotFoundError
from .models import FileEntry

logger = logging.getLogger(__name__)


class FileAccessor:
    def __init__(self, root_for: Callable[[str], str], max_read_bytes: Optional[int] = None):
        """
        Args:
            root_for: maps an instance id to its data directory; raises
                NotFoundError for unknown instances
        """
        self._root_for = root_for
        self.max_read_bytes = max_read_bytes or config.MAX_READ_BYTES

    def resolve(self, instance_id: str, relative_path: str) -> str:
        """Absolute, symlink-free path of ``relative_path``, or AccessDenied."""
        root = os.path.realpath(self._root_for(instance_id))
        relative_path = relative_path or ""
        if "\x00" in relative_path:
            raise AccessDenied()
        target = os.path.realpath(os.path.join(root, relative_path.lstrip("/\\")))
        if target != root and os.path.commonpath([root, target]) != root:
            logger.warning(f"[Files] Denied path escape for {instance_id}: {relative_path!r}")
            raise AccessDenied()
        return target

    def _existing(self, instance_id: str, relative_path: str) -> str:
        target = self.resolve(instance_id, relative_path)
        if not os.path.lexists(target):
            raise NotFoundError("path", relative_path or "/")
        return target

    def list(self, instance_id: str, relative_path: str = "") -> List[FileEntry]:
        """Directory entries, directories first, then by name."""
        target = self._existing(instance_id, relative_path)
        if not os.path.isdir(target):
            raise InvalidSpecError(f"'{relative_path}' is not a directory")

        entries = []
        for name in os.listdir(target):
            full = os.path.join(target, name)
            try:
                st = os.stat(full)
            except OSError:
                continue  # dangling symlink
            is_dir = os.path.isdir(full)
            entries.append(FileEntry(
                name=name,
                type="directory" if is_dir else "file",
                size=0 if is_dir else st.st_size,
                modified=datetime.fromtimestamp(st.st_mtime, timezone.utc).isoformat(),
            ))
        entries.sort(key=lambda e: (e.type != "directory", e.name))
        return entries

    def read_bytes(self, instance_id: str, relative_path: str) -> bytes:
        target = self._existing(instance_id, relative_path)
        if os.path.isdir(target):
            raise InvalidSpecError(f"'{relative_path}' is a directory")
        size = os.path.getsize(target)
        if size > self.max_read_bytes:
            raise FileTooLarge(f"'{relative_path}' is {size} bytes, limit is {self.max_read_bytes}")
        with open(target, "rb") as f:
            return f.read()

    def read(self, instance_id: str, relative_path: str) -> str:
        return self.read_bytes(instance_id, relative_path).decode("utf-8", errors="replace")

    def write(self, instance_id: str, relative_path: str, content: Union[str, bytes]) -> FileEntry:
        """Write a file, creating intermediate directories."""
        target = self.resolve(instance_id, relative_path)
        if target == self.resolve(instance_id, "") or os.path.isdir(target):
            raise InvalidSpecError(f"'{relative_path}' is a directory")
        os.makedirs(os.path.dirname(target), exist_ok=True)
        data = content.encode("utf-8") if isinstance(content, str) else content
        with open(target, "wb") as f:
            f.write(data)
        logger.info(f"[Files] {instance_id}: wrote {relative_path} ({len(data)} bytes)")
        return FileEntry(
            name=os.path.basename(target), type="file", size=len(data),
            modified=datetime.now(timezone.utc).isoformat(),
        )

    def mkdir(self, instance_id: str, relative_path: str) -> FileEntry:
        target = self.resolve(instance_id, relative_path)
        if os.path.exists(target) and not os.path.isdir(target):
            raise InvalidSpecError(f"'{relative_path}' exists and is a file")
        os.makedirs(target, exist_ok=True)
        return FileEntry(name=os.path.basename(target), type="directory",
                         modified=datetime.now(timezone.utc).isoformat())

    def delete(self, instance_id: str, relative_path: str) -> bool:
        """
        Remove a file or directory tree. A symlink is removed itself; what it
        points to is left alone, wherever that is.
        """
        rel = os.path.normpath((relative_path or "").lstrip("/\\") or ".")
        parent = self.resolve(instance_id, os.path.dirname(rel))
        link = os.path.join(parent, os.path.basename(rel))
        if os.path.islink(link):
            os.remove(link)
            logger.info(f"[Files] {instance_id}: deleted link {relative_path}")
            return True

        target = self._existing(instance_id, relative_path)
        if target == self.resolve(instance_id, ""):
            raise AccessDenied("the instance root cannot be deleted")
        if os.path.isdir(target):
            shutil.rmtree(target)
        else:
            os.remove(target)
        logger.info(f"[Files] {instance_id}: deleted {relative_path}")
        return True
