import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import AsyncMock, Mock, call, patch

from page_narrator.models import Paragraph
from page_narrator.synthesis import (
    MAX_SYNTHESIS_ATTEMPTS,
    RETRY_DELAY_SECONDS,
    EdgeSynthesizer,
    TTSSettings,
    TTSSynthesisError,
    sanitize_text_for_tts,
    split_text_for_tts,
    synthesize_with_retries,
)


def _fake_edge_tts(communicate: type) -> Mock:
    class FakeNoAudioReceived(Exception):
        pass

    fake_edge_tts = Mock()
    fake_edge_tts.Communicate = communicate
    fake_edge_tts.exceptions = Mock(NoAudioReceived=FakeNoAudioReceived)
    return fake_edge_tts


class TestTextPreparation(unittest.TestCase):
    def test_sanitize_text_for_tts_collapses_whitespace_and_symbols(self) -> None:
        self.assertEqual(
            sanitize_text_for_tts("Hello\n\n  world \u2605\ufffd."),
            "Hello world .",
        )

    def test_split_text_for_tts_keeps_short_text_whole(self) -> None:
        self.assertEqual(split_text_for_tts("One. Two."), ["One. Two."])

    def test_split_text_for_tts_chunks_on_sentences(self) -> None:
        text = "First sentence here. Second sentence here. Third one."

        chunks = split_text_for_tts(text, max_chars=25)

        self.assertEqual(
            chunks,
            ["First sentence here.", "Second sentence here.", "Third one."],
        )
        self.assertTrue(all(len(chunk) <= 25 for chunk in chunks))

    def test_split_text_for_tts_empty(self) -> None:
        self.assertEqual(split_text_for_tts("   "), [])


class TestSynthesizeWithRetries(unittest.IsolatedAsyncioTestCase):
    async def test_returns_first_success(self) -> None:
        operation = AsyncMock(side_effect=[RuntimeError("flaky"), Path("ok.mp3")])

        with self.assertLogs("page_narrator.synthesis", level="WARNING"):
            result = await synthesize_with_retries(operation, attempts=3, delay=0)

        self.assertEqual(result, Path("ok.mp3"))
        self.assertEqual(operation.await_count, 2)

    async def test_raises_after_all_attempts(self) -> None:
        operation = AsyncMock(side_effect=RuntimeError("down"))

        with self.assertLogs("page_narrator.synthesis", level="WARNING"):
            with self.assertRaises(TTSSynthesisError) as context:
                await synthesize_with_retries(operation, attempts=3, delay=0)

        self.assertEqual(operation.await_count, 3)
        self.assertIsInstance(context.exception.__cause__, RuntimeError)

    async def test_default_retries_sleep_between_attempts_only(self) -> None:
        operation = AsyncMock(side_effect=RuntimeError("down"))

        with patch(
            "page_narrator.synthesis.asyncio.sleep", AsyncMock()
        ) as sleep_mock, self.assertLogs("page_narrator.synthesis", level="WARNING"):
            with self.assertRaises(TTSSynthesisError):
                await synthesize_with_retries(operation)

        self.assertEqual(MAX_SYNTHESIS_ATTEMPTS, 3)
        self.assertEqual(RETRY_DELAY_SECONDS, 0.05)
        self.assertEqual(operation.await_count, 3)
        self.assertEqual(sleep_mock.await_args_list, [call(0.05), call(0.05)])

    async def test_rejects_zero_attempts(self) -> None:
        with self.assertRaises(ValueError):
            await synthesize_with_retries(AsyncMock(), attempts=0)


class TestEdgeSynthesizer(unittest.IsolatedAsyncioTestCase):
    async def test_streams_audio_chunks_to_file(self) -> None:
        class FakeCommunicate:
            calls: list[tuple[str, dict]] = []

            def __init__(self, text: str, **kwargs: object) -> None:
                FakeCommunicate.calls.append((text, kwargs))

            async def stream(self):
                yield {"type": "WordBoundary", "offset": 0}
                yield {"type": "audio", "data": b"abc"}
                yield {"type": "audio", "data": b"def"}

        settings = TTSSettings(voice="en-GB-SoniaNeural", rate="+10%", pitch="-2Hz")
        with TemporaryDirectory() as tmpdir:
            synthesizer = EdgeSynthesizer(settings, work_dir=Path(tmpdir))
            with patch.dict("sys.modules", {"edge_tts": _fake_edge_tts(FakeCommunicate)}):
                path = await synthesizer("book", Paragraph(text="Hello world.", locator="p1"))

            self.assertEqual(path.parent, Path(tmpdir))
            self.assertEqual(path.read_bytes(), b"abcdef")

        self.assertEqual(
            FakeCommunicate.calls,
            [("Hello world.", {"voice": "en-GB-SoniaNeural", "rate": "+10%", "pitch": "-2Hz"})],
        )

    async def test_no_audio_raises_and_cleans_up(self) -> None:
        fake_edge_tts: Mock

        class FakeCommunicate:
            def __init__(self, *_args: object, **_kwargs: object) -> None:
                pass

            async def stream(self):
                raise fake_edge_tts.exceptions.NoAudioReceived("no audio")
                yield {}

        fake_edge_tts = _fake_edge_tts(FakeCommunicate)
        with TemporaryDirectory() as tmpdir:
            synthesizer = EdgeSynthesizer(TTSSettings(), work_dir=Path(tmpdir))
            with patch.dict("sys.modules", {"edge_tts": fake_edge_tts}):
                with self.assertRaises(TTSSynthesisError):
                    await synthesizer("book", Paragraph(text="Hello.", locator="p1"))

            self.assertEqual(list(Path(tmpdir).iterdir()), [])

    async def test_empty_stream_raises(self) -> None:
        class FakeCommunicate:
            def __init__(self, *_args: object, **_kwargs: object) -> None:
                pass

            async def stream(self):
                yield {"type": "WordBoundary"}

        with TemporaryDirectory() as tmpdir:
            synthesizer = EdgeSynthesizer(TTSSettings(), work_dir=Path(tmpdir))
            with patch.dict("sys.modules", {"edge_tts": _fake_edge_tts(FakeCommunicate)}):
                with self.assertRaises(TTSSynthesisError):
                    await synthesizer("book", Paragraph(text="Hello.", locator="p1"))

            self.assertEqual(list(Path(tmpdir).iterdir()), [])

    async def test_unspeakable_paragraph_raises(self) -> None:
        synthesizer = EdgeSynthesizer(TTSSettings())
        with patch.dict("sys.modules", {"edge_tts": _fake_edge_tts(Mock())}):
            with self.assertRaises(TTSSynthesisError):
                await synthesizer("book", Paragraph(text="\u2605 \u2605", locator="p1"))


if __name__ == "__main__":
    unittest.main()
