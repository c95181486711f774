"""Narration state machine.

The player keeps three things in step: the paragraph cursor, the highlight
shown by the document adapter, and the audio being played. States::

    STOPPED -> LOADING -> PLAYING -> (end of audio) -> LOADING ...
                  |           |
                  v           v
               PAUSED   WAITING_FOR_NEW_PARAGRAPHS -> LOADING

User commands bump a generation counter; every continuation re-checks it
after each suspension point and gives up when it is stale, so only the
latest command ever acts on the player's state.
"""
from __future__ import annotations

import asyncio
import functools
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

from page_narrator.adapters.base import DocumentAdapter
from page_narrator.audio import AudioOutput, AudioPlaybackError
from page_narrator.cache import AudioCache
from page_narrator.events import (
    ErrorsChanged,
    Event,
    EventHub,
    MoveChange,
    ParagraphIndexChanged,
)
from page_narrator.models import Direction, Paragraph, PlayingState
from page_narrator.synthesis import (
    MAX_SYNTHESIS_ATTEMPTS,
    RETRY_DELAY_SECONDS,
    Synthesizer,
    TTSSynthesisError,
    synthesize_with_retries,
)

logger = logging.getLogger(__name__)

_NARRATING_STATES = {
    PlayingState.PLAYING,
    PlayingState.LOADING,
    PlayingState.WAITING_FOR_NEW_PARAGRAPHS,
}


class Player:
    def __init__(
        self,
        adapter: DocumentAdapter,
        hub: EventHub,
        cache: AudioCache,
        synthesize: Synthesizer,
        audio: AudioOutput,
        *,
        max_attempts: int = MAX_SYNTHESIS_ATTEMPTS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        prefetch: bool = False,
    ) -> None:
        self._adapter = adapter
        self._hub = hub
        self._cache = cache
        self._synthesize = synthesize
        self._audio = audio
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.prefetch = prefetch

        self._book_id: str | None = None
        self._current_paragraphs: list[Paragraph] = []
        self._current_index: int | None = None
        self._next_page_paragraphs: list[Paragraph] = []
        self._previous_page_paragraphs: list[Paragraph] = []
        self._playing_state = PlayingState.STOPPED
        self._errors: list[str] = []
        self._highlighted: Paragraph | None = None
        self._current_audio_path: Path | None = None

        self._generation = 0
        self._waiter: asyncio.Future[list[Paragraph] | None] | None = None
        self._wait_direction = Direction.FORWARD
        self._turn_in_flight = False
        self._pending: dict[tuple[str, str], asyncio.Future[Path]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._unsubscribers: list[Callable[[], None]] = []

    # -- lifecycle ---------------------------------------------------------

    async def initialize(self, book_id: str) -> None:
        self._unsubscribe()
        self._bump()
        self._release_waiter()
        self._cancel_tasks()
        await self._audio.stop()
        await self._remove_highlight()

        if book_id != self._book_id:
            self._cache.set_book(book_id)
            self._pending.clear()
        self._book_id = book_id

        self._current_paragraphs = []
        if self._current_index is not None:
            self._change_index(None)
        self._next_page_paragraphs = []
        self._previous_page_paragraphs = []
        self._current_audio_path = None
        if self._errors:
            self.clear_errors()
        self._set_state(PlayingState.STOPPED)

        self._unsubscribers = [
            self._hub.subscribe(Event.NEW_PARAGRAPHS_AVAILABLE, self._on_new_paragraphs),
            self._hub.subscribe(
                Event.NEXT_VIEW_PARAGRAPHS_AVAILABLE, self._on_next_view_paragraphs
            ),
            self._hub.subscribe(
                Event.PREVIOUS_VIEW_PARAGRAPHS_AVAILABLE,
                self._on_previous_view_paragraphs,
            ),
        ]

    async def close(self) -> None:
        self._unsubscribe()
        self._bump()
        self._release_waiter()
        self._cancel_tasks()
        for pending in self._pending.values():
            pending.cancel()
        self._pending.clear()
        await self._audio.stop()
        self._set_state(PlayingState.STOPPED)

    # -- queries -----------------------------------------------------------

    @property
    def book_id(self) -> str | None:
        return self._book_id

    @property
    def current_paragraph_index(self) -> int | None:
        return self._current_index

    @property
    def current_audio_path(self) -> Path | None:
        return self._current_audio_path

    def get_playing_state(self) -> PlayingState:
        return self._playing_state

    def get_current_paragraphs(self) -> list[Paragraph]:
        return list(self._current_paragraphs)

    def get_next_page_paragraphs(self) -> list[Paragraph]:
        return list(self._next_page_paragraphs)

    def get_previous_page_paragraphs(self) -> list[Paragraph]:
        return list(self._previous_page_paragraphs)

    def get_current_paragraph(self) -> Paragraph | None:
        if self._current_index is None:
            return None
        return self._current_paragraphs[self._current_index]

    def get_errors(self) -> list[str]:
        return list(self._errors)

    def clear_errors(self) -> None:
        self._errors = []
        self._hub.publish(Event.ERRORS_CHANGED, ErrorsChanged(errors=[]))

    # -- transport ---------------------------------------------------------

    async def play(self) -> None:
        if self._playing_state in _NARRATING_STATES:
            return
        if self.get_current_paragraph() is None:
            return
        generation = self._bump()
        await self._play_current(generation)

    async def pause(self) -> None:
        if self._playing_state not in _NARRATING_STATES:
            return
        self._bump()
        self._set_state(PlayingState.PAUSED)
        await self._audio.stop()

    async def stop(self) -> None:
        self._bump()
        self._set_state(PlayingState.STOPPED)
        await self._audio.stop()
        await self._remove_highlight()

    async def move_to_next_paragraph(self) -> None:
        await self._move(Direction.FORWARD, autoplay=self._is_narrating())

    async def move_to_previous_paragraph(self) -> None:
        await self._move(Direction.BACKWARD, autoplay=self._is_narrating())

    # -- internals ---------------------------------------------------------

    def _is_narrating(self) -> bool:
        return self._playing_state in _NARRATING_STATES

    def _bump(self) -> int:
        self._generation += 1
        return self._generation

    def _set_state(self, state: PlayingState) -> None:
        if state is self._playing_state:
            return
        self._playing_state = state
        self._hub.publish(Event.PLAYING_STATE_CHANGED, state)

    def _report_error(self, message: str) -> None:
        logger.warning(message)
        self._errors.append(message)
        self._hub.publish(Event.ERRORS_CHANGED, ErrorsChanged(errors=list(self._errors)))

    def _change_index(
        self,
        index: int | None,
        direction: Direction = Direction.FORWARD,
        previous: Paragraph | None = None,
    ) -> None:
        self._current_index = index
        paragraph = self.get_current_paragraph()
        self._hub.publish(
            Event.PARAGRAPH_INDEX_CHANGED,
            ParagraphIndexChanged(index=index, paragraph=paragraph),
        )
        if previous is None or paragraph is None or previous == paragraph:
            return
        event = (
            Event.MOVED_TO_NEXT_PARAGRAPH
            if direction is Direction.FORWARD
            else Event.MOVED_TO_PREV_PARAGRAPH
        )
        self._hub.publish(
            event,
            MoveChange(from_paragraph=previous, to_paragraph=paragraph, direction=direction),
        )

    async def _apply_highlight(self) -> None:
        paragraph = self.get_current_paragraph()
        if paragraph == self._highlighted:
            return
        await self._remove_highlight()
        if paragraph is None:
            return
        self._highlighted = paragraph
        await self._adapter.highlight_paragraph(paragraph.locator)
        self._hub.publish(Event.PARAGRAPH_HIGHLIGHTED, paragraph)

    async def _remove_highlight(self) -> None:
        previous = self._highlighted
        if previous is None:
            return
        self._highlighted = None
        await self._adapter.remove_highlight(previous.locator)
        self._hub.publish(Event.PARAGRAPH_UNHIGHLIGHTED, previous)

    async def _play_current(self, generation: int) -> None:
        paragraph = self.get_current_paragraph()
        if paragraph is None:
            return
        await self._apply_highlight()
        if generation != self._generation:
            return
        self._set_state(PlayingState.LOADING)
        try:
            path = await self._resolve_audio(paragraph)
        except (TTSSynthesisError, OSError) as error:
            if generation == self._generation:
                self._report_error(
                    f"Could not prepare audio for paragraph {paragraph.locator}: {error}"
                )
                self._set_state(PlayingState.PAUSED)
            return
        if generation != self._generation:
            return

        self._current_audio_path = path
        self._set_state(PlayingState.PLAYING)
        self._hub.publish(Event.PLAYING_AUDIO, paragraph)
        self._spawn(self._run_audio(generation, paragraph, path))
        if self.prefetch:
            self._spawn(self._prefetch_following(paragraph))

    async def _run_audio(self, generation: int, paragraph: Paragraph, path: Path) -> None:
        if generation != self._generation:
            return
        try:
            finished = await self._audio.play(path)
        except AudioPlaybackError as error:
            if generation == self._generation:
                self._report_error(str(error))
                self._set_state(PlayingState.PAUSED)
            return
        if not finished or generation != self._generation:
            return
        self._hub.publish(Event.AUDIO_ENDED, paragraph)
        await self._move(Direction.FORWARD, autoplay=True)

    async def _move(self, direction: Direction, autoplay: bool) -> None:
        if self._book_id is None:
            return
        if self._turn_in_flight:
            # The page already being turned to has not published yet.
            logger.debug("Ignoring %s move during a page turn.", direction.value)
            return
        generation = self._bump()
        await self._audio.stop()
        if generation != self._generation:
            return

        index = self._current_index
        if index is not None:
            step = 1 if direction is Direction.FORWARD else -1
            target = index + step
            if 0 <= target < len(self._current_paragraphs):
                self._change_index(target, direction, self._current_paragraphs[index])
                await self._apply_highlight()
                if generation != self._generation:
                    return
                if autoplay:
                    await self._play_current(generation)
                return
        await self._turn_page(direction, autoplay, generation)

    async def _turn_page(self, direction: Direction, autoplay: bool, generation: int) -> None:
        resume_state = self._playing_state
        if resume_state in _NARRATING_STATES:
            resume_state = PlayingState.PAUSED
        self._release_waiter()
        waiter: asyncio.Future[list[Paragraph] | None] = (
            asyncio.get_running_loop().create_future()
        )
        self._waiter = waiter
        self._wait_direction = direction
        self._turn_in_flight = True
        self._set_state(PlayingState.WAITING_FOR_NEW_PARAGRAPHS)

        try:
            if direction is Direction.FORWARD:
                turned = await self._adapter.move_to_next_page()
            else:
                turned = await self._adapter.move_to_previous_page()
        except Exception as error:
            logger.exception("Page turn failed.")
            self._drop_waiter(waiter)
            if generation == self._generation:
                self._report_error(f"Page turn failed: {error}")
                self._set_state(PlayingState.PAUSED)
            return

        if not turned:
            self._drop_waiter(waiter)
            if generation != self._generation:
                return
            if autoplay and direction is Direction.FORWARD:
                await self._remove_highlight()
                self._set_state(PlayingState.STOPPED)
            else:
                self._set_state(resume_state)
            return

        paragraphs = await waiter
        self._drop_waiter(waiter)
        if paragraphs is None:
            return
        # The cursor moved to the new page even if a pause or a newer move
        # made this continuation stale.
        await self._apply_highlight()
        if generation != self._generation:
            return
        if autoplay:
            await self._play_current(generation)
        else:
            self._set_state(resume_state)

    def _release_waiter(self) -> None:
        waiter = self._waiter
        self._waiter = None
        self._turn_in_flight = False
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    def _drop_waiter(self, waiter: asyncio.Future[list[Paragraph] | None]) -> None:
        if self._waiter is waiter:
            self._waiter = None
            self._turn_in_flight = False

    # -- hub handlers ------------------------------------------------------

    def _on_new_paragraphs(self, paragraphs: list[Paragraph]) -> None:
        paragraphs = list(paragraphs)
        previous = self.get_current_paragraph()
        waiter = self._waiter

        if waiter is not None and not waiter.done():
            self._current_paragraphs = paragraphs
            self._turn_in_flight = False
            if not paragraphs:
                logger.info("New page has no paragraphs; still waiting.")
                if self._current_index is not None:
                    self._change_index(None)
                return
            backward = self._wait_direction is Direction.BACKWARD
            self._change_index(
                len(paragraphs) - 1 if backward else 0, self._wait_direction, previous
            )
            waiter.set_result(paragraphs)
            return

        self._current_paragraphs = paragraphs
        if previous is not None and previous in paragraphs:
            index = paragraphs.index(previous)
            if index != self._current_index:
                self._change_index(index)
            return
        self._change_index(0 if paragraphs else None)
        if self._is_narrating():
            self._spawn(self._restart_narration())
        else:
            self._spawn(self._apply_highlight())

    def _on_next_view_paragraphs(self, paragraphs: list[Paragraph]) -> None:
        self._next_page_paragraphs = list(paragraphs)

    def _on_previous_view_paragraphs(self, paragraphs: list[Paragraph]) -> None:
        self._previous_page_paragraphs = list(paragraphs)

    async def _restart_narration(self) -> None:
        generation = self._bump()
        await self._audio.stop()
        if generation != self._generation:
            return
        if self.get_current_paragraph() is None:
            await self._remove_highlight()
            self._set_state(PlayingState.WAITING_FOR_NEW_PARAGRAPHS)
            return
        await self._play_current(generation)

    # -- audio resolution --------------------------------------------------

    async def _resolve_audio(self, paragraph: Paragraph) -> Path:
        book_id = self._book_id
        if book_id is None:
            raise TTSSynthesisError("Player is not initialized with a book.")
        cached = self._cache.get(book_id, paragraph.locator)
        if cached is not None:
            return cached

        key = (book_id, paragraph.locator)
        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._synthesize_to_cache(book_id, paragraph))
            self._pending[key] = pending
            pending.add_done_callback(functools.partial(self._forget_pending, key))
        return await asyncio.shield(pending)

    async def _synthesize_to_cache(self, book_id: str, paragraph: Paragraph) -> Path:
        source = await synthesize_with_retries(
            lambda: self._synthesize(book_id, paragraph),
            attempts=self.max_attempts,
            delay=self.retry_delay,
        )
        return self._cache.store(book_id, paragraph.locator, source)

    def _forget_pending(self, key: tuple[str, str], future: asyncio.Future[Path]) -> None:
        if self._pending.get(key) is future:
            del self._pending[key]
        if not future.cancelled():
            future.exception()

    async def _prefetch_following(self, paragraph: Paragraph) -> None:
        candidate: Paragraph | None = None
        if paragraph in self._current_paragraphs:
            index = self._current_paragraphs.index(paragraph)
            if index + 1 < len(self._current_paragraphs):
                candidate = self._current_paragraphs[index + 1]
        if candidate is None and self._next_page_paragraphs:
            candidate = self._next_page_paragraphs[0]
        if candidate is None:
            return
        try:
            await self._resolve_audio(candidate)
        except (TTSSynthesisError, OSError) as error:
            logger.info("Prefetch of %s failed: %s", candidate.locator, error)

    # -- task bookkeeping --------------------------------------------------

    def _spawn(self, awaitable: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Background narration task failed.",
                exc_info=(type(error), error, error.__traceback__),
            )

    def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

    def _unsubscribe(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
