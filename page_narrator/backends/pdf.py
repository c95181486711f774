"""Headless PDF backend: per-page word extraction with PyMuPDF off the loop."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable

from page_narrator.backends.base import BackendError, PagedBackend

logger = logging.getLogger(__name__)


class PdfBackend(PagedBackend):
    def __init__(self, path: Path) -> None:
        import fitz  # pymupdf

        self.path = Path(path)
        try:
            self._doc = fitz.open(str(self.path))
        except Exception as exc:
            raise BackendError(f"Cannot open PDF {self.path}: {exc}") from exc
        if self._doc.page_count < 1:
            self._doc.close()
            raise BackendError(f"PDF has no pages: {self.path}")
        pdf_meta = self._doc.metadata or {}
        self.title = (pdf_meta.get("title") or "").strip() or self.path.stem.replace("_", " ")
        self._page_number = 1
        self._words: dict[int, list[str]] = {}
        self._renders: dict[int, asyncio.Task[None]] = {}
        self._callbacks: list[Callable[[int], None]] = []
        self._extract_lock = asyncio.Lock()
        self.highlight: tuple[int, int] | None = None

    @property
    def page_count(self) -> int:
        return self._doc.page_count

    @property
    def page_number(self) -> int:
        return self._page_number

    async def go_to_page(self, page_number: int) -> None:
        if not 1 <= page_number <= self.page_count:
            raise BackendError(f"Page {page_number} is out of range.")
        self._page_number = page_number
        for neighbour in (page_number, page_number + 1, page_number - 1):
            self.request_render(neighbour)

    def request_render(self, page_number: int) -> None:
        if not 1 <= page_number <= self.page_count:
            return
        if page_number in self._words or page_number in self._renders:
            return
        task = asyncio.get_running_loop().create_task(self._render(page_number))
        self._renders[page_number] = task

    def on_rendered(self, callback: Callable[[int], None]) -> None:
        self._callbacks.append(callback)

    def page_words(self, page_number: int) -> list[str]:
        return list(self._words.get(page_number, []))

    async def set_highlight(self, page_number: int, ordinal: int, enabled: bool) -> None:
        if enabled:
            self.highlight = (page_number, ordinal)
        elif self.highlight == (page_number, ordinal):
            self.highlight = None

    def _extract_words(self, page_number: int) -> list[str]:
        page = self._doc[page_number - 1]
        return [entry[4] for entry in page.get_text("words")]

    async def _render(self, page_number: int) -> None:
        try:
            async with self._extract_lock:
                words = await asyncio.to_thread(self._extract_words, page_number)
        except Exception:
            logger.exception("Text extraction failed for page %d.", page_number)
            words = []
        finally:
            self._renders.pop(page_number, None)
        self._words[page_number] = words
        for callback in list(self._callbacks):
            callback(page_number)

    def close(self) -> None:
        for task in self._renders.values():
            task.cancel()
        self._renders.clear()
        self._doc.close()
