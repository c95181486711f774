from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


@dataclass(frozen=True)
class Paragraph:
    text: str
    locator: str


class PlayingState(str, Enum):
    STOPPED = "stopped"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    WAITING_FOR_NEW_PARAGRAPHS = "waitingForNewParagraphs"


class Direction(str, Enum):
    FORWARD = "forward"
    BACKWARD = "backward"


@dataclass(frozen=True)
class BookRecord:
    id: str
    title: str
    path: Path
    kind: str
    current_location: str | None = None
