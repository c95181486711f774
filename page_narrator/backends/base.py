"""Boundary a rendering backend exposes to the document adapters."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, NamedTuple


class BackendError(RuntimeError):
    """Raised when a document cannot be opened or read."""


class TextRange(NamedTuple):
    text: str
    cfi_range: str


class ReflowableBackend(ABC):
    title: str = ""

    @abstractmethod
    async def display(self, location: str | None = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def current_ranges(self) -> list[TextRange]:
        raise NotImplementedError

    @abstractmethod
    async def adjacent_ranges(self, step: int) -> list[TextRange]:
        """Ranges ``step`` views away from the current one, without moving."""

    @abstractmethod
    async def next(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def prev(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def current_location(self) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def add_highlight(self, cfi_range: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def remove_highlight(self, cfi_range: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None


class PagedBackend(ABC):
    """Fixed pages numbered from 1 whose text layer arrives asynchronously."""

    title: str = ""

    @property
    @abstractmethod
    def page_count(self) -> int:
        raise NotImplementedError

    @property
    @abstractmethod
    def page_number(self) -> int:
        raise NotImplementedError

    @abstractmethod
    async def go_to_page(self, page_number: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def request_render(self, page_number: int) -> None:
        """Schedule text extraction; must be safe to call repeatedly."""

    @abstractmethod
    def on_rendered(self, callback: Callable[[int], None]) -> None:
        raise NotImplementedError

    @abstractmethod
    def page_words(self, page_number: int) -> list[str]:
        raise NotImplementedError

    @abstractmethod
    async def set_highlight(self, page_number: int, ordinal: int, enabled: bool) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None
