import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from page_narrator.settings import NarratorSettings, load_settings, save_settings
from page_narrator.synthesis import TTSSettings


class TestSettings(unittest.TestCase):
    def test_missing_file_gives_defaults(self) -> None:
        with TemporaryDirectory() as tmpdir:
            settings = load_settings(Path(tmpdir) / "settings.json", environ={})

        self.assertEqual(settings, NarratorSettings())
        self.assertTrue(settings.prefetch)

    def test_file_values_override_defaults(self) -> None:
        with TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "settings.json"
            path.write_text(
                json.dumps(
                    {
                        "voice": "en-GB-RyanNeural",
                        "max_attempts": "5",
                        "cache_dir": "~/narration",
                        "player_command": ["mpv", "--no-video"],
                        "unknown": "ignored",
                    }
                ),
                encoding="utf-8",
            )

            settings = load_settings(path, environ={})

        self.assertEqual(settings.voice, "en-GB-RyanNeural")
        self.assertEqual(settings.max_attempts, 5)
        self.assertEqual(settings.cache_dir, Path("~/narration").expanduser())
        self.assertEqual(settings.player_command, ("mpv", "--no-video"))

    def test_environment_overrides_file(self) -> None:
        with TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "settings.json"
            path.write_text(json.dumps({"rate": "+5%"}), encoding="utf-8")

            settings = load_settings(
                path,
                environ={
                    "PAGE_NARRATOR_RATE": "-10%",
                    "PAGE_NARRATOR_PREFETCH": "0",
                    "PAGE_NARRATOR_RETRY_DELAY": "0.5",
                    "PAGE_NARRATOR_CHARS_PER_VIEW": "800",
                },
            )

        self.assertEqual(settings.chars_per_view, 800)
        self.assertEqual(settings.rate, "-10%")
        self.assertFalse(settings.prefetch)
        self.assertEqual(settings.retry_delay, 0.5)

    def test_malformed_file_and_values_are_ignored(self) -> None:
        with TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "settings.json"
            path.write_text("not json", encoding="utf-8")
            with self.assertLogs("page_narrator.settings", level="WARNING"):
                settings = load_settings(
                    path, environ={"PAGE_NARRATOR_MAX_ATTEMPTS": "many"}
                )

        self.assertEqual(settings, NarratorSettings())

    def test_save_then_load_preserves_values(self) -> None:
        with TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "nested" / "settings.json"
            saved = NarratorSettings(
                voice="en-AU-NatashaNeural",
                cache_dir=Path(tmpdir) / "audio",
                sentences_per_paragraph=4,
                prefetch=False,
            )

            save_settings(saved, path)
            loaded = load_settings(path, environ={})

        self.assertEqual(loaded, saved)

    def test_tts_settings_are_derived(self) -> None:
        settings = NarratorSettings(voice="v", rate="+1%", pitch="+2Hz")

        self.assertEqual(settings.tts_settings(), TTSSettings(voice="v", rate="+1%", pitch="+2Hz"))


if __name__ == "__main__":
    unittest.main()
