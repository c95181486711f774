from __future__ import annotations

import asyncio

from page_narrator.adapters.base import DocumentAdapter
from page_narrator.backends.base import PagedBackend
from page_narrator.events import EventHub
from page_narrator.models import Paragraph
from page_narrator.segmenter import (
    DEFAULT_MIN_PARAGRAPH_LENGTH,
    DEFAULT_SENTENCES_PER_PARAGRAPH,
    words_to_final_paragraphs,
)

PARAGRAPH_INDEX_PER_PAGE = 10000


def page_locator(page_number: int, ordinal: int) -> str:
    if not 0 <= ordinal < PARAGRAPH_INDEX_PER_PAGE:
        raise ValueError(f"Paragraph ordinal out of range: {ordinal}")
    return str(page_number * PARAGRAPH_INDEX_PER_PAGE + ordinal)


def parse_page_locator(locator: str) -> tuple[int, int]:
    try:
        value = int(locator)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid page locator: {locator!r}") from None
    if value < 0:
        raise ValueError(f"Invalid page locator: {locator!r}")
    return divmod(value, PARAGRAPH_INDEX_PER_PAGE)


class RenderGate:
    """Single-shot signal opened once a page's text layer is available."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return self._event.is_set()

    def open(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class FixedPageDocumentAdapter(DocumentAdapter):
    """Adapter for paginated documents whose text layer renders asynchronously.

    Every getter waits on the page's :class:`RenderGate` before reading
    words, so text is never requested before the backend produced it.
    """

    def __init__(
        self,
        hub: EventHub,
        backend: PagedBackend,
        sentences_per_paragraph: int = DEFAULT_SENTENCES_PER_PARAGRAPH,
        min_paragraph_length: int = DEFAULT_MIN_PARAGRAPH_LENGTH,
    ) -> None:
        super().__init__(hub)
        self.backend = backend
        self.sentences_per_paragraph = sentences_per_paragraph
        self.min_paragraph_length = min_paragraph_length
        self._gates: dict[int, RenderGate] = {}
        backend.on_rendered(self._on_rendered)

    def gate(self, page_number: int) -> RenderGate:
        return self._gates.setdefault(page_number, RenderGate())

    def _on_rendered(self, page_number: int) -> None:
        self.gate(page_number).open()

    def _in_range(self, page_number: int) -> bool:
        return 1 <= page_number <= self.backend.page_count

    async def _wait_rendered(self, page_number: int) -> None:
        gate = self.gate(page_number)
        if not gate.is_open:
            self.backend.request_render(page_number)
        await gate.wait()

    async def page_paragraphs(self, page_number: int) -> list[Paragraph]:
        if not self._in_range(page_number):
            return []
        await self._wait_rendered(page_number)
        texts = words_to_final_paragraphs(
            self.backend.page_words(page_number),
            sentences_per_paragraph=self.sentences_per_paragraph,
            min_paragraph_length=self.min_paragraph_length,
        )
        return [
            Paragraph(text=text, locator=page_locator(page_number, ordinal))
            for ordinal, text in enumerate(texts)
        ]

    async def get_current_view_paragraphs(self) -> list[Paragraph]:
        return await self.page_paragraphs(self.backend.page_number)

    async def get_next_view_paragraphs(self) -> list[Paragraph]:
        return await self.page_paragraphs(self.backend.page_number + 1)

    async def get_previous_view_paragraphs(self) -> list[Paragraph]:
        return await self.page_paragraphs(self.backend.page_number - 1)

    async def open(self, location: str | None = None) -> None:
        page_number = 1
        if location:
            try:
                page_number, _ = parse_page_locator(location)
            except ValueError:
                page_number = 1
        page_number = min(max(page_number, 1), self.backend.page_count)
        await self.backend.go_to_page(page_number)
        await self._wait_rendered(page_number)
        await self.publish_paragraphs()

    def location(self) -> str | None:
        return page_locator(self.backend.page_number, 0)

    async def _turn_page(self, forward: bool) -> bool:
        target = self.backend.page_number + (1 if forward else -1)
        if not self._in_range(target):
            return False
        await self.backend.go_to_page(target)
        await self._wait_rendered(target)
        return True

    async def _show_highlight(self, locator: str) -> None:
        page_number, ordinal = parse_page_locator(locator)
        await self.backend.set_highlight(page_number, ordinal, True)

    async def _hide_highlight(self, locator: str) -> None:
        page_number, ordinal = parse_page_locator(locator)
        await self.backend.set_highlight(page_number, ordinal, False)
