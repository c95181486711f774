from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Optional

from page_narrator.backends import SUPPORTED_EXTENSIONS
from page_narrator.backends.base import BackendError
from page_narrator.context import NarratorContext, open_book
from page_narrator.events import ErrorsChanged, Event, EventHub
from page_narrator.models import BookRecord, Paragraph, PlayingState
from page_narrator.player import Player
from page_narrator.settings import NarratorSettings, load_settings
from page_narrator.store import BookStore, StoreError

PREVIEW_CHARS = 80

ACTIONS = {
    "play": "play",
    "pause": "pause",
    "next": "move_to_next_paragraph",
    "previous": "move_to_previous_paragraph",
    "stop": "stop",
}


def _questionary():
    return importlib.import_module("questionary")


def _preview(paragraph: Paragraph) -> str:
    text = " ".join(paragraph.text.split())
    if len(text) <= PREVIEW_CHARS:
        return text
    return text[: PREVIEW_CHARS - 3].rstrip() + "..."


def _format_book(book: BookRecord) -> str:
    location = book.current_location or "start"
    return f"{book.title} [{book.kind}] {book.path} (at {location})"


def _prompt_for_book(books: list[BookRecord]) -> Optional[Path]:
    questionary = _questionary()
    choices = [
        questionary.Choice(title=_format_book(book), value=book.path) for book in books
    ]
    return questionary.select("Choose a book to narrate:", choices=choices).ask()


def _default_action(state: PlayingState) -> str:
    if state in {PlayingState.PLAYING, PlayingState.LOADING}:
        return "pause"
    return "play"


async def _prompt_for_action(player: Player) -> Optional[str]:
    questionary = _questionary()
    choices = [questionary.Choice(title=name.capitalize(), value=name) for name in ACTIONS]
    choices.append(questionary.Choice(title="Quit", value="quit"))
    return await questionary.select(
        f"Narrator ({player.get_playing_state().value}):",
        choices=choices,
        default=_default_action(player.get_playing_state()),
    ).ask_async()


def _report_events(hub: EventHub) -> list[Callable[[], None]]:
    def _on_state(state: PlayingState) -> None:
        print(f"[player] {state.value}")

    def _on_audio(paragraph: Paragraph) -> None:
        print(f"[player] Reading: {_preview(paragraph)}")

    def _on_errors(change: ErrorsChanged) -> None:
        if change.errors:
            print(f"[player] Error: {change.errors[-1]}")

    def _on_page() -> None:
        print("[player] Page turned.")

    return [
        hub.subscribe(Event.PLAYING_STATE_CHANGED, _on_state),
        hub.subscribe(Event.PLAYING_AUDIO, _on_audio),
        hub.subscribe(Event.ERRORS_CHANGED, _on_errors),
        hub.subscribe(Event.PAGE_CHANGED, _on_page),
    ]


async def run_transport(context: NarratorContext) -> None:
    """Prompt for transport commands until the user quits."""
    player = context.player
    pending: set[asyncio.Task[Any]] = set()
    while True:
        action = await _prompt_for_action(player)
        if action is None or action == "quit":
            break
        # Page turns can block until the next page renders; keep prompting meanwhile.
        task = asyncio.ensure_future(getattr(player, ACTIONS[action])())
        pending.add(task)
        task.add_done_callback(pending.discard)
    for task in list(pending):
        task.cancel()


async def narrate(
    book_path: Path, settings: NarratorSettings, store: BookStore | None = None
) -> int:
    context = await open_book(book_path, settings, store=store)
    print(f"[player] Opened {context.book.title}.")
    unsubscribers = _report_events(context.hub)
    try:
        await run_transport(context)
    finally:
        for unsubscribe in unsubscribers:
            unsubscribe()
        await context.save_location()
        await context.close()
    print(f"[store] Saved reading location for {context.book.title}.")
    return 0


async def list_books(settings: NarratorSettings, store: BookStore | None = None) -> int:
    books = await (store or BookStore(settings.library_path)).get_books()
    if not books:
        print(f"[store] No books in {settings.library_path}.")
        return 0
    for book in books:
        print(_format_book(book))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Narrate EPUB and PDF books paragraph by paragraph."
    )
    parser.add_argument(
        "book",
        nargs="?",
        type=Path,
        default=None,
        help=(
            "Path to the book to narrate "
            f"({', '.join(sorted(SUPPORTED_EXTENSIONS))}). "
            "Prompts for a stored book when omitted."
        ),
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List the books in the library and exit.",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=None,
        help="Path to a JSON settings file (default: ~/.page_narrator/settings.json).",
    )
    parser.add_argument(
        "--voice",
        default=None,
        help="Edge TTS voice name (e.g. en-US-JennyNeural).",
    )
    parser.add_argument(
        "--rate",
        default=None,
        help="Edge TTS speaking rate (e.g. +0%%, -10%%).",
    )
    parser.add_argument(
        "--pitch",
        default=None,
        help="Edge TTS pitch (e.g. +0Hz).",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Directory for cached paragraph audio.",
    )
    parser.add_argument(
        "--library",
        type=Path,
        default=None,
        help="Path to the JSON book library.",
    )
    parser.add_argument(
        "--no-prefetch",
        action="store_true",
        help="Do not synthesize the next paragraph ahead of time.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    return parser


def _settings_from_args(args: argparse.Namespace) -> NarratorSettings:
    settings = load_settings(args.settings)
    overrides: dict[str, Any] = {
        "voice": args.voice,
        "rate": args.rate,
        "pitch": args.pitch,
        "cache_dir": args.cache_dir,
        "library_path": args.library,
    }
    settings = replace(
        settings, **{key: value for key, value in overrides.items() if value is not None}
    )
    if args.no_prefetch:
        settings = replace(settings, prefetch=False)
    return settings


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    settings = _settings_from_args(args)
    store = BookStore(settings.library_path)

    try:
        if args.list:
            return asyncio.run(list_books(settings, store))
        book_path = args.book
        if book_path is None:
            books = asyncio.run(store.get_books())
            if not books:
                parser.error("No book given and the library is empty.")
            book_path = _prompt_for_book(books)
            if book_path is None:
                print("No book selected.")
                return 0
        if not Path(book_path).exists():
            parser.error(f"Book not found: {book_path}")
        return asyncio.run(narrate(Path(book_path), settings, store=store))
    except (BackendError, StoreError) as exc:
        parser.error(str(exc))
    except KeyboardInterrupt:
        print("\nStopped.")
        return 130
    return 0
