from __future__ import annotations

import base64
import binascii
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SCREENSHOT_SUFFIX = ".jpg"
_DATA_URL_MARKER = "base64,"


def decode_screenshot(payload: str) -> bytes:
    """Decode a base64 screenshot, accepting an optional ``data:`` URL prefix."""
    text = payload.strip()
    if text.startswith("data:") and _DATA_URL_MARKER in text:
        text = text.split(_DATA_URL_MARKER, 1)[1]
    try:
        data = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("invalid base64 screenshot") from exc
    if not data:
        raise ValueError("empty screenshot")
    return data


class SnapshotStore:
    """One screenshot blob per tab id, stored as ``<id>.jpg``."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)
        self._guard = threading.Lock()
        # tab id -> [lock, number of holders and waiters]
        self._locks: dict[int, list[Any]] = {}

    @contextmanager
    def lock_for(self, tab_id: int) -> Iterator[None]:
        """Serialize blob access for one tab id.

        The entry is dropped once nobody holds or waits on it, so the map stays
        bounded by the number of tabs being touched concurrently.
        """
        with self._guard:
            entry = self._locks.get(tab_id)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[tab_id] = entry
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(tab_id, None)

    def active_locks(self) -> int:
        with self._guard:
            return len(self._locks)

    def path_for(self, tab_id: int) -> Path:
        return self.directory / f"{tab_id}{SCREENSHOT_SUFFIX}"

    def save(self, tab_id: int, data: bytes) -> Path:
        """Write (or overwrite) the blob for ``tab_id``.

        Callers that also record the returned path should hold ``lock_for(tab_id)``
        across both steps.
        """
        path = self.path_for(tab_id)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{tab_id}.", suffix=".tmp", dir=self.directory)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_path, path)
        finally:
            tmp_path.unlink(missing_ok=True)
        return path

    def save_base64(self, tab_id: int, payload: str) -> Path:
        return self.save(tab_id, decode_screenshot(payload))

    def read(self, tab_id: int) -> bytes | None:
        with self.lock_for(tab_id):
            try:
                return self.path_for(tab_id).read_bytes()
            except FileNotFoundError:
                return None

    def exists(self, tab_id: int) -> bool:
        return self.path_for(tab_id).is_file()

    def delete(self, tab_id: int) -> bool:
        try:
            self.path_for(tab_id).unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("screenshot delete failed", extra={"tab_id": tab_id}, exc_info=exc)
            return False
        return True

    def ids(self) -> set[int]:
        found: set[int] = set()
        for entry in self.directory.glob(f"*{SCREENSHOT_SUFFIX}"):
            stem = entry.stem
            if stem.lstrip("-").isdigit():
                found.add(int(stem))
        return found

    def clear(self) -> int:
        removed = 0
        for entry in self.directory.iterdir():
            if not entry.is_file():
                continue
            try:
                entry.unlink()
                removed += 1
            except OSError as exc:
                logger.warning("screenshot delete failed", extra={"path": str(entry)}, exc_info=exc)
        return removed

    def remove_legacy(self) -> int:
        """Drop blobs from the old ``<id>_<timestamp>.jpg`` naming scheme."""
        removed = 0
        for entry in self.directory.glob(f"*_*{SCREENSHOT_SUFFIX}"):
            try:
                entry.unlink()
                removed += 1
                logger.info("removed legacy screenshot %s", entry.name)
            except OSError as exc:
                logger.warning("legacy screenshot delete failed", exc_info=exc)
        return removed

    def resolve(self, filename: str) -> Path | None:
        """Map a served filename to a path inside the blob directory."""
        if not filename or "/" in filename or "\\" in filename or filename.startswith("."):
            return None
        root = self.directory.resolve()
        candidate = (root / filename).resolve()
        if candidate.parent != root:
            return None
        return candidate
