from __future__ import annotations

import hashlib
import logging
import re
import shutil
from collections import OrderedDict
from pathlib import Path

logger = logging.getLogger(__name__)

AUDIO_EXTENSION = ".mp3"
DEFAULT_MAX_ENTRIES = 512
_BOOK_DIR_RE = re.compile(r"[^A-Za-z0-9._-]+")


def book_cache_dirname(book_id: str) -> str:
    cleaned = _BOOK_DIR_RE.sub("_", book_id).strip("._") or "book"
    digest = hashlib.md5(book_id.encode("utf-8")).hexdigest()[:8]
    return f"{cleaned}-{digest}"


def locator_filename(locator: str) -> str:
    digest = hashlib.md5(locator.encode("utf-8")).hexdigest()
    return f"{digest}{AUDIO_EXTENSION}"


class AudioCache:
    """Maps ``(book_id, locator)`` to synthesized audio on disk.

    Only one book is active at a time; switching books drops every
    in-memory entry of the previous one. The in-memory map is bounded and
    evicts least recently used entries, which are found again on disk.
    """

    def __init__(self, cache_dir: Path, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1.")
        self.cache_dir = Path(cache_dir)
        self.max_entries = max_entries
        self._book_id: str | None = None
        self._entries: OrderedDict[tuple[str, str], Path] = OrderedDict()

    @property
    def book_id(self) -> str | None:
        return self._book_id

    def __len__(self) -> int:
        return len(self._entries)

    def set_book(self, book_id: str) -> None:
        if book_id == self._book_id:
            return
        self._entries.clear()
        self._book_id = book_id

    def book_dir(self, book_id: str) -> Path:
        return self.cache_dir / book_cache_dirname(book_id)

    def path_for(self, book_id: str, locator: str) -> Path:
        return self.book_dir(book_id) / locator_filename(locator)

    def get(self, book_id: str, locator: str) -> Path | None:
        key = (book_id, locator)
        cached = self._entries.get(key)
        if cached is not None and _is_playable(cached):
            self._entries.move_to_end(key)
            return cached
        if cached is not None:
            del self._entries[key]

        candidate = self.path_for(book_id, locator)
        if not _is_playable(candidate):
            return None
        self._insert(key, candidate)
        return candidate

    def store(self, book_id: str, locator: str, source: Path) -> Path:
        target = self.path_for(book_id, locator)
        target.parent.mkdir(parents=True, exist_ok=True)
        source = Path(source)
        if source != target:
            shutil.move(str(source), str(target))
        if not _is_playable(target):
            raise OSError(f"Cached audio is empty: {target}")
        self._insert((book_id, locator), target)
        return target

    def remove(self, book_id: str, locator: str) -> None:
        self._entries.pop((book_id, locator), None)
        self.path_for(book_id, locator).unlink(missing_ok=True)

    def clear_book_files(self, book_id: str) -> None:
        for key in [key for key in self._entries if key[0] == book_id]:
            del self._entries[key]
        shutil.rmtree(self.book_dir(book_id), ignore_errors=True)

    def _insert(self, key: tuple[str, str], path: Path) -> None:
        if key[0] != self._book_id:
            return
        self._entries[key] = path
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted cached audio entry for %s.", evicted[1])


def _is_playable(path: Path) -> bool:
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False
