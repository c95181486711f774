from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from page_narrator.adapters import FixedPageDocumentAdapter, RangeDocumentAdapter
from page_narrator.adapters.base import DocumentAdapter
from page_narrator.audio import AudioOutput, FfplayAudioOutput
from page_narrator.backends import backend_kind
from page_narrator.backends.base import PagedBackend, ReflowableBackend
from page_narrator.cache import AudioCache
from page_narrator.events import Event, EventHub
from page_narrator.models import BookRecord
from page_narrator.player import Player
from page_narrator.settings import NarratorSettings
from page_narrator.store import BookStore
from page_narrator.synthesis import EdgeSynthesizer, Synthesizer

logger = logging.getLogger(__name__)


def book_id_for_path(path: Path) -> str:
    return hashlib.sha1(str(Path(path).resolve()).encode("utf-8")).hexdigest()[:16]


@dataclass
class NarratorContext:
    """Everything wired together for one open book."""

    book: BookRecord
    hub: EventHub
    store: BookStore
    cache: AudioCache
    adapter: DocumentAdapter
    backend: ReflowableBackend | PagedBackend
    player: Player
    _unsubscribers: list[Callable[[], None]] = field(default_factory=list, repr=False)

    async def save_location(self) -> None:
        location = self.adapter.location()
        if location is None:
            return
        await self.store.update_book_location(self.book.id, location)
        logger.debug("Saved location %s for %s.", location, self.book.id)

    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        await self.player.close()
        await self.hub.join()
        self.backend.close()


def _open_backend(
    path: Path, kind: str, settings: NarratorSettings
) -> tuple[ReflowableBackend | PagedBackend, DocumentAdapter, EventHub]:
    hub = EventHub()
    if kind == "epub":
        from page_narrator.backends.epub import EpubBackend

        epub = EpubBackend(path, chars_per_view=settings.chars_per_view)
        return epub, RangeDocumentAdapter(hub, epub), hub

    from page_narrator.backends.pdf import PdfBackend

    pdf = PdfBackend(path)
    adapter = FixedPageDocumentAdapter(
        hub,
        pdf,
        sentences_per_paragraph=settings.sentences_per_paragraph,
        min_paragraph_length=settings.min_paragraph_length,
    )
    return pdf, adapter, hub


async def open_book(
    path: Path,
    settings: NarratorSettings,
    *,
    synthesize: Synthesizer | None = None,
    audio: AudioOutput | None = None,
    store: BookStore | None = None,
) -> NarratorContext:
    """Open ``path``, register it in the store and restore its saved location."""
    path = Path(path)
    kind = backend_kind(path)
    backend, adapter, hub = _open_backend(path, kind, settings)

    if store is None:
        store = BookStore(settings.library_path)
    book_id = book_id_for_path(path)
    book = await store.get_book(book_id)
    if book is None:
        book = BookRecord(id=book_id, title=backend.title, path=path.resolve(), kind=kind)
        await store.store_book(book)
        logger.info("Added %s to the library.", book.title)

    cache = AudioCache(settings.cache_dir)
    player = Player(
        adapter,
        hub,
        cache,
        synthesize or EdgeSynthesizer(settings.tts_settings()),
        audio or FfplayAudioOutput(settings.player_command),
        max_attempts=settings.max_attempts,
        retry_delay=settings.retry_delay,
        prefetch=settings.prefetch,
    )
    await player.initialize(book.id)

    context = NarratorContext(
        book=book,
        hub=hub,
        store=store,
        cache=cache,
        adapter=adapter,
        backend=backend,
        player=player,
    )
    context._unsubscribers.append(hub.subscribe(Event.PAGE_CHANGED, context.save_location))
    await adapter.open(book.current_location)
    return context
