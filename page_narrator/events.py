"""Typed publish/subscribe hub shared by the player, adapters and the UI."""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from page_narrator.models import Direction, Paragraph

logger = logging.getLogger(__name__)

LOG_CAPACITY = 100


class Event(str, Enum):
    NEW_PARAGRAPHS_AVAILABLE = "newParagraphsAvailable"
    NEXT_VIEW_PARAGRAPHS_AVAILABLE = "nextViewParagraphsAvailable"
    PREVIOUS_VIEW_PARAGRAPHS_AVAILABLE = "previousViewParagraphsAvailable"
    PARAGRAPH_HIGHLIGHTED = "paragraphHighlighted"
    PARAGRAPH_UNHIGHLIGHTED = "paragraphUnhighlighted"
    PAGE_CHANGED = "pageChanged"
    PARAGRAPH_INDEX_CHANGED = "paragraphIndexChanged"
    PLAYING_STATE_CHANGED = "playingStateChanged"
    ERRORS_CHANGED = "errorsChanged"
    MOVED_TO_NEXT_PARAGRAPH = "movedToNextParagraph"
    MOVED_TO_PREV_PARAGRAPH = "movedToPrevParagraph"
    AUDIO_ENDED = "audioEnded"
    PLAYING_AUDIO = "playingAudio"


@dataclass(frozen=True)
class ParagraphIndexChanged:
    index: int | None
    paragraph: Paragraph | None


@dataclass(frozen=True)
class ErrorsChanged:
    errors: list[str]


@dataclass(frozen=True)
class MoveChange:
    from_paragraph: Paragraph
    to_paragraph: Paragraph
    direction: Direction


@dataclass(frozen=True)
class EventRecord:
    timestamp: float
    event: Event
    args: tuple[Any, ...]


Handler = Callable[..., Any]


def _coerce_event(event: Event | str) -> Event:
    try:
        return Event(event)
    except ValueError:
        raise ValueError(f"Unknown event '{event}'.") from None


class EventHub:
    def __init__(self, log_capacity: int = LOG_CAPACITY) -> None:
        self._subscribers: dict[Event, list[Handler]] = {}
        self._logs: deque[EventRecord] = deque(maxlen=log_capacity)
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def logs(self) -> list[EventRecord]:
        return list(self._logs)

    def clear_logs(self) -> None:
        self._logs.clear()

    def subscribe(self, event: Event | str, handler: Handler) -> Callable[[], None]:
        key = _coerce_event(event)
        self._subscribers.setdefault(key, []).append(handler)

        def _unsubscribe() -> None:
            self.unsubscribe(key, handler)

        return _unsubscribe

    def unsubscribe(self, event: Event | str, handler: Handler) -> None:
        handlers = self._subscribers.get(_coerce_event(event), [])
        if handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, event: Event | str) -> int:
        return len(self._subscribers.get(_coerce_event(event), []))

    def publish(self, event: Event | str, *args: Any) -> bool:
        key = _coerce_event(event)
        self._logs.append(EventRecord(timestamp=time.time(), event=key, args=args))
        handlers = list(self._subscribers.get(key, []))
        for handler in handlers:
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    self._schedule(key, result)
            except Exception:
                logger.exception("Subscriber %r failed on %s.", handler, key.value)
        return bool(handlers)

    def _schedule(self, event: Event, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)

        def _done(finished: asyncio.Task[Any]) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                logger.error(
                    "Async subscriber failed on %s.",
                    event.value,
                    exc_info=(type(error), error, error.__traceback__),
                )

        task.add_done_callback(_done)

    async def join(self) -> None:
        """Wait for every scheduled async subscriber to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
