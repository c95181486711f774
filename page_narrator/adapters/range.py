from __future__ import annotations

from page_narrator.adapters.base import DocumentAdapter
from page_narrator.backends.base import ReflowableBackend, TextRange
from page_narrator.events import EventHub
from page_narrator.models import Paragraph


def _to_paragraphs(ranges: list[TextRange]) -> list[Paragraph]:
    return [Paragraph(text=item.text, locator=item.cfi_range) for item in ranges]


class RangeDocumentAdapter(DocumentAdapter):
    """Adapter for reflowable documents addressed by range references.

    Text is extractable as soon as the backend has displayed a view, so
    no readiness wait is needed after a page turn.
    """

    def __init__(self, hub: EventHub, backend: ReflowableBackend) -> None:
        super().__init__(hub)
        self.backend = backend

    async def get_current_view_paragraphs(self) -> list[Paragraph]:
        return _to_paragraphs(self.backend.current_ranges())

    async def get_next_view_paragraphs(self) -> list[Paragraph]:
        return _to_paragraphs(await self.backend.adjacent_ranges(1))

    async def get_previous_view_paragraphs(self) -> list[Paragraph]:
        return _to_paragraphs(await self.backend.adjacent_ranges(-1))

    async def open(self, location: str | None = None) -> None:
        await self.backend.display(location)
        await self.publish_paragraphs()

    def location(self) -> str | None:
        return self.backend.current_location()

    async def _turn_page(self, forward: bool) -> bool:
        if forward:
            return await self.backend.next()
        return await self.backend.prev()

    async def _show_highlight(self, locator: str) -> None:
        await self.backend.add_highlight(locator)

    async def _hide_highlight(self, locator: str) -> None:
        await self.backend.remove_highlight(locator)
