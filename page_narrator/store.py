from __future__ import annotations

import json
import logging
import os
from dataclasses import replace
from pathlib import Path

from page_narrator.models import BookRecord
from page_narrator.mutex import Mutex

logger = logging.getLogger(__name__)

BOOKS_KEY = "books"


class StoreError(ValueError):
    """Raised when the book store file cannot be understood."""


def _record_from_json(data: object) -> BookRecord:
    if not isinstance(data, dict):
        raise StoreError(f"Book entry must be an object, got {type(data).__name__}.")
    try:
        return BookRecord(
            id=str(data["id"]),
            title=str(data.get("title") or data["id"]),
            path=Path(str(data["path"])),
            kind=str(data.get("kind") or ""),
            current_location=data.get("current_location"),
        )
    except KeyError as error:
        raise StoreError(f"Book entry is missing {error.args[0]!r}.") from error


def _record_to_json(book: BookRecord) -> dict[str, object]:
    return {
        "id": book.id,
        "title": book.title,
        "path": str(book.path),
        "kind": book.kind,
        "current_location": book.current_location,
    }


_mutexes: dict[Path, Mutex] = {}


def mutex_for_path(path: Path) -> Mutex:
    """One mutex per store file, shared by every store opened on it."""
    key = Path(path).expanduser().resolve()
    mutex = _mutexes.get(key)
    if mutex is None:
        mutex = _mutexes[key] = Mutex()
    return mutex


class BookStore:
    """Books and their reading locations in one JSON file.

    Every read-modify-write runs under a :class:`Mutex`, so concurrent
    location updates from several coroutines never lose a write.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._mutex = mutex_for_path(path)

    def _read(self) -> list[BookRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as error:
            raise StoreError(f"Book store {self.path} is not valid JSON: {error}") from error
        if not isinstance(raw, dict):
            raise StoreError(f"Book store {self.path} must contain an object.")
        entries = raw.get(BOOKS_KEY) or []
        if not isinstance(entries, list):
            raise StoreError(f"Book store {self.path} has a malformed {BOOKS_KEY!r} list.")
        return [_record_from_json(entry) for entry in entries]

    def _write(self, books: list[BookRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {BOOKS_KEY: [_record_to_json(book) for book in books]}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        os.replace(tmp_path, self.path)

    async def get_books(self) -> list[BookRecord]:
        async with self._mutex:
            return self._read()

    async def get_book(self, book_id: str) -> BookRecord | None:
        async with self._mutex:
            for book in self._read():
                if book.id == book_id:
                    return book
        return None

    async def store_book(self, book: BookRecord) -> None:
        """Add ``book``, replacing any stored book with the same id."""
        async with self._mutex:
            books = self._read()
            for index, existing in enumerate(books):
                if existing.id == book.id:
                    books[index] = book
                    break
            else:
                books.append(book)
            self._write(books)

    async def delete_book(self, book_id: str) -> bool:
        async with self._mutex:
            books = self._read()
            remaining = [book for book in books if book.id != book_id]
            if len(remaining) == len(books):
                return False
            self._write(remaining)
        logger.info("Removed book %s from %s.", book_id, self.path)
        return True

    async def update_book_location(self, book_id: str, location: str) -> bool:
        async with self._mutex:
            books = self._read()
            for index, book in enumerate(books):
                if book.id == book_id:
                    books[index] = replace(book, current_location=location)
                    self._write(books)
                    return True
        logger.debug("No stored book %s to update.", book_id)
        return False

    async def get_book_location(self, book_id: str) -> str | None:
        book = await self.get_book(book_id)
        if book is None:
            return None
        return book.current_location
