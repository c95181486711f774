from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

from page_narrator.models import Paragraph

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TTSSynthesisError(RuntimeError):
    """Raised when TTS synthesis fails but should not crash the player."""


@dataclass(frozen=True)
class TTSSettings:
    voice: str = "en-US-JennyNeural"
    rate: str = "+0%"
    pitch: str = "+0Hz"


Synthesizer = Callable[[str, Paragraph], Awaitable[Path]]

SENTENCE_SPLIT_PATTERN = re.compile(r"(?<=[.!?])\s+")
MAX_TTS_CHARS = 3000
MAX_SYNTHESIS_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 0.05
AUDIO_EXTENSION = ".mp3"


def sanitize_text_for_tts(text: str) -> str:
    cleaned = unicodedata.normalize("NFKC", text)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return "".join(
        ch
        for ch in cleaned
        if unicodedata.category(ch) not in {"Cc", "Cf", "Cn", "Co", "Cs", "So"}
        and ch != "\uFFFD"
        and ord(ch) <= 0xFFFF
    )


def split_text_for_tts(text: str, max_chars: int = MAX_TTS_CHARS) -> list[str]:
    cleaned = text.strip()
    if not cleaned:
        return []
    if len(cleaned) <= max_chars:
        return [cleaned]

    chunks: list[str] = []
    buffer: list[str] = []
    buffer_len = 0
    for sentence in SENTENCE_SPLIT_PATTERN.split(cleaned):
        sentence = sentence.strip()
        if not sentence:
            continue
        sentence_len = len(sentence)
        if sentence_len > max_chars:
            if buffer:
                chunks.append(" ".join(buffer))
                buffer = []
                buffer_len = 0
            for idx in range(0, sentence_len, max_chars):
                chunks.append(sentence[idx : idx + max_chars].strip())
            continue
        if buffer_len + sentence_len + 1 > max_chars and buffer:
            chunks.append(" ".join(buffer))
            buffer = []
            buffer_len = 0
        buffer.append(sentence)
        buffer_len += sentence_len + 1

    if buffer:
        chunks.append(" ".join(buffer))
    return [chunk for chunk in chunks if chunk]


async def synthesize_with_retries(
    operation: Callable[[], Awaitable[T]],
    attempts: int = MAX_SYNTHESIS_ATTEMPTS,
    delay: float = RETRY_DELAY_SECONDS,
) -> T:
    """Run ``operation`` until it succeeds, at most ``attempts`` times.

    The operation is assumed safe to repeat. Synthesis usually is not: a
    request that failed late may already have cost backend work, and a
    retry pays for it again.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1.")
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as error:
            last_error = error
            logger.warning(
                "Synthesis attempt %d/%d failed: %s", attempt, attempts, error
            )
            if attempt < attempts:
                await asyncio.sleep(delay)
    raise TTSSynthesisError(
        f"Synthesis failed after {attempts} attempts: {last_error}"
    ) from last_error


class EdgeSynthesizer:
    """Synthesizes paragraphs to MP3 files with Edge TTS."""

    def __init__(self, settings: TTSSettings, work_dir: Path | None = None) -> None:
        self.settings = settings
        self.work_dir = Path(work_dir) if work_dir is not None else None

    def _temporary_path(self) -> Path:
        if self.work_dir is not None:
            self.work_dir.mkdir(parents=True, exist_ok=True)
        handle, name = tempfile.mkstemp(
            prefix="narration-",
            suffix=AUDIO_EXTENSION,
            dir=str(self.work_dir) if self.work_dir is not None else None,
        )
        os.close(handle)
        return Path(name)

    async def __call__(self, book_id: str, paragraph: Paragraph) -> Path:
        import edge_tts

        text = sanitize_text_for_tts(paragraph.text)
        chunks = split_text_for_tts(text)
        if not chunks:
            raise TTSSynthesisError(
                f"Paragraph {paragraph.locator} has no speakable text."
            )

        output_path = self._temporary_path()
        try:
            with output_path.open("wb") as audio_file:
                for chunk_text in chunks:
                    communicate = edge_tts.Communicate(
                        chunk_text,
                        voice=self.settings.voice,
                        rate=self.settings.rate,
                        pitch=self.settings.pitch,
                    )
                    async for chunk in communicate.stream():
                        if chunk.get("type") == "audio":
                            audio_file.write(chunk.get("data", b""))
        except edge_tts.exceptions.NoAudioReceived as error:
            output_path.unlink(missing_ok=True)
            raise TTSSynthesisError(
                "No audio was received from Edge TTS. "
                "Verify the voice, rate, pitch, and network connectivity."
            ) from error
        except BaseException:
            output_path.unlink(missing_ok=True)
            raise

        if output_path.stat().st_size == 0:
            output_path.unlink(missing_ok=True)
            raise TTSSynthesisError(
                f"Edge TTS produced an empty file for {paragraph.locator} in book {book_id}."
            )
        return output_path
