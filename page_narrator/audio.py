from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Sequence

logger = logging.getLogger(__name__)

DEFAULT_PLAYER_COMMAND = ("ffplay", "-nodisp", "-autoexit", "-loglevel", "error")


class AudioPlaybackError(RuntimeError):
    """Raised when an audio file cannot be played."""


class AudioOutput(ABC):
    @abstractmethod
    async def play(self, path: Path) -> bool:
        """Play ``path`` to the end. Returns False when stopped early."""

    @abstractmethod
    async def stop(self) -> None:
        raise NotImplementedError


class FfplayAudioOutput(AudioOutput):
    def __init__(self, command: Sequence[str] = DEFAULT_PLAYER_COMMAND) -> None:
        self.command = list(command)
        self._process: asyncio.subprocess.Process | None = None
        self._stopped = False

    @property
    def is_playing(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def play(self, path: Path) -> bool:
        await self.stop()
        self._stopped = False
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                str(path),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise AudioPlaybackError(
                f"{self.command[0]} is required to play narration audio."
            ) from exc
        self._process = process
        if self._stopped:
            process.terminate()
        try:
            _, stderr = await process.communicate()
        finally:
            if self._process is process:
                self._process = None
        if self._stopped:
            return False
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise AudioPlaybackError(
                f"{self.command[0]} failed on {Path(path).name}: {message or process.returncode}"
            )
        return True

    async def stop(self) -> None:
        self._stopped = True
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=2)
        except asyncio.TimeoutError:
            logger.warning("Audio player did not exit; killing it.")
            process.kill()
            await process.wait()
