import io
import json
import tempfile
import unittest
from contextlib import redirect_stdout
from datetime import datetime
from pathlib import Path
from unittest import mock

import helpers  # noqa: F401

import screentap
from db import ScreenshotStore
from settings_store import load_engine_config


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.data_dir = self._tmp.name

    def run_cli(self, *argv: str) -> str:
        out = io.StringIO()
        with redirect_stdout(out):
            code = screentap.main(["--data-dir", self.data_dir, *argv])
        self.assertEqual(code, 0)
        return out.getvalue()

    def test_init_config_writes_loadable_config(self) -> None:
        output = self.run_cli("init-config", "--job-title", "Analyst", "--job-role", "Quarterly reporting")

        self.assertIn("config.json", output)
        config = load_engine_config(Path(self.data_dir))
        self.assertEqual(config.job_title, "Analyst")
        self.assertEqual(config.llava_backend, "ollama")

    def test_init_config_for_openai_uses_environment_key(self) -> None:
        self.run_cli(
            "init-config", "--job-title", "Analyst", "--job-role", "Quarterly reporting", "--backend", "openai"
        )

        with mock.patch.dict("os.environ", {"OPENAI_API_KEY": "sk-env"}):
            config = load_engine_config(Path(self.data_dir))
            engine = screentap.build_focusguard(Path(self.data_dir))

        self.assertEqual(config.openai_api_key, "sk-env")
        self.assertEqual(engine.backend.descriptor, "openai:gpt-4o")

    def test_search_prints_matches(self) -> None:
        store = ScreenshotStore(Path(self.data_dir), screentap.DATABASE_FILENAME)
        store.save_screenshot_meta("dataset/a.png", "invoice total due", datetime(2024, 1, 1, 9, 0))

        self.assertIn("dataset/a.png", self.run_cli("search", "invoice"))
        self.assertIn("No screenshots matched.", self.run_cli("search", "holiday"))

        records = json.loads(self.run_cli("search", "invoice", "--json"))
        self.assertEqual(records[0]["file_path"], "dataset/a.png")

    def test_build_focusguard_tolerates_bad_config(self) -> None:
        config_dir = Path(self.data_dir) / "plugins" / "focusguard"
        config_dir.mkdir(parents=True)
        (config_dir / "config.json").write_text('{"job_title": "x"}', encoding="utf-8")

        with self.assertLogs("screentap", level="ERROR"):
            self.assertIsNone(screentap.build_focusguard(Path(self.data_dir)))

    def test_build_focusguard_tolerates_wrongly_typed_config(self) -> None:
        config_dir = Path(self.data_dir) / "plugins" / "focusguard"
        config_dir.mkdir(parents=True)
        raw = {
            "job_title": 5,
            "job_role": "Quarterly reporting",
            "llava_backend": "ollama",
            "productivity_score_threshold": 5,
            "duration_between_alerts_secs": 300,
            "image_resize_scale": 0.5,
        }
        (config_dir / "config.json").write_text(json.dumps(raw), encoding="utf-8")

        with self.assertLogs("screentap", level="ERROR"):
            self.assertIsNone(screentap.build_focusguard(Path(self.data_dir)))

    def test_run_without_config_captures_only(self) -> None:
        with mock.patch("screentap.ScreentapMonitor") as monitor_cls:
            self.run_cli("run", "--interval", "1")

        kwargs = monitor_cls.call_args[1]
        self.assertIsNone(kwargs["focusguard"])
        self.assertIsNone(kwargs["alert_sink"])
        self.assertEqual(kwargs["capture_interval"], 1.0)
        monitor_cls.return_value.run_forever.assert_called_once()


if __name__ == "__main__":
    unittest.main()
