"""Backend-agnostic view of what is visible and how to turn the page."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from page_narrator.events import Event, EventHub
from page_narrator.models import Paragraph

logger = logging.getLogger(__name__)


class DocumentAdapter(ABC):
    def __init__(self, hub: EventHub) -> None:
        self.hub = hub
        self._highlighted: set[str] = set()

    @abstractmethod
    async def get_current_view_paragraphs(self) -> list[Paragraph]:
        raise NotImplementedError

    @abstractmethod
    async def get_next_view_paragraphs(self) -> list[Paragraph]:
        raise NotImplementedError

    @abstractmethod
    async def get_previous_view_paragraphs(self) -> list[Paragraph]:
        raise NotImplementedError

    @abstractmethod
    async def open(self, location: str | None = None) -> None:
        """Display ``location`` (or the start) and publish its paragraphs."""

    @abstractmethod
    def location(self) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def _turn_page(self, forward: bool) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def _show_highlight(self, locator: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _hide_highlight(self, locator: str) -> None:
        raise NotImplementedError

    @property
    def highlighted(self) -> frozenset[str]:
        return frozenset(self._highlighted)

    async def highlight_paragraph(self, locator: str) -> None:
        if locator in self._highlighted:
            return
        await self._show_highlight(locator)
        self._highlighted.add(locator)

    async def remove_highlight(self, locator: str) -> None:
        if locator not in self._highlighted:
            return
        await self._hide_highlight(locator)
        self._highlighted.discard(locator)

    async def move_to_next_page(self) -> bool:
        return await self._move(forward=True)

    async def move_to_previous_page(self) -> bool:
        return await self._move(forward=False)

    async def _move(self, forward: bool) -> bool:
        if not await self._turn_page(forward):
            logger.debug("No %s page to turn to.", "next" if forward else "previous")
            return False
        self.hub.publish(Event.PAGE_CHANGED)
        await self.publish_paragraphs()
        return True

    async def publish_paragraphs(self) -> None:
        current = await self.get_current_view_paragraphs()
        self.hub.publish(Event.NEW_PARAGRAPHS_AVAILABLE, current)
        following = await self.get_next_view_paragraphs()
        self.hub.publish(Event.NEXT_VIEW_PARAGRAPHS_AVAILABLE, following)
        preceding = await self.get_previous_view_paragraphs()
        self.hub.publish(Event.PREVIOUS_VIEW_PARAGRAPHS_AVAILABLE, preceding)
