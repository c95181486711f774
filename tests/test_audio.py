import asyncio
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, patch

from page_narrator.audio import AudioPlaybackError, FfplayAudioOutput


class FakeProcess:
    def __init__(self) -> None:
        self.returncode: int | None = None
        self.terminated = False
        self._done = asyncio.Event()

    async def communicate(self) -> tuple[bytes, bytes]:
        await self._done.wait()
        return b"", b"decoder error"

    async def wait(self) -> int | None:
        await self._done.wait()
        return self.returncode

    def exit(self, code: int) -> None:
        self.returncode = code
        self._done.set()

    def terminate(self) -> None:
        self.terminated = True
        self.exit(-15)

    def kill(self) -> None:
        self.exit(-9)


class TestFfplayAudioOutput(unittest.IsolatedAsyncioTestCase):
    async def test_play_returns_true_on_natural_end(self) -> None:
        process = FakeProcess()
        output = FfplayAudioOutput(["ffplay", "-nodisp"])
        with patch(
            "asyncio.create_subprocess_exec", AsyncMock(return_value=process)
        ) as create_mock:
            task = asyncio.create_task(output.play(Path("a.mp3")))
            await asyncio.sleep(0.01)
            self.assertTrue(output.is_playing)
            process.exit(0)
            finished = await task

        self.assertTrue(finished)
        self.assertEqual(create_mock.call_args.args, ("ffplay", "-nodisp", "a.mp3"))
        self.assertFalse(output.is_playing)

    async def test_stop_interrupts_playback(self) -> None:
        process = FakeProcess()
        output = FfplayAudioOutput()
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            task = asyncio.create_task(output.play(Path("a.mp3")))
            await asyncio.sleep(0.01)
            await output.stop()
            finished = await task

        self.assertFalse(finished)
        self.assertTrue(process.terminated)

    async def test_failed_exit_raises(self) -> None:
        process = FakeProcess()
        process.exit(1)
        output = FfplayAudioOutput()
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            with self.assertRaises(AudioPlaybackError) as context:
                await output.play(Path("a.mp3"))

        self.assertIn("decoder error", str(context.exception))

    async def test_missing_player_raises(self) -> None:
        output = FfplayAudioOutput(["missing-player"])
        with patch(
            "asyncio.create_subprocess_exec",
            AsyncMock(side_effect=FileNotFoundError("missing-player")),
        ):
            with self.assertRaises(AudioPlaybackError):
                await output.play(Path("a.mp3"))


if __name__ == "__main__":
    unittest.main()
