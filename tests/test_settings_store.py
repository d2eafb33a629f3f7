import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from helpers import make_config

from settings_store import (
    CONFIG_FILENAME,
    FocusGuardConfigError,
    get_focusguard_root_dir,
    load_engine_config,
    parse_engine_config,
    save_engine_config,
)


def raw_config(**overrides):
    data = {
        "job_title": "Data Scientist",
        "job_role": "Training churn models",
        "llava_backend": "ollama",
        "productivity_score_threshold": 5,
        "duration_between_alerts_secs": 300,
        "image_resize_scale": 0.5,
    }
    data.update(overrides)
    return data


class LoadEngineConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.app_data_dir = Path(self._tmp.name)
        self.config_path = get_focusguard_root_dir(self.app_data_dir) / CONFIG_FILENAME

    def write(self, text: str) -> None:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(text, encoding="utf-8")

    def test_missing_file_creates_directory_and_returns_none(self) -> None:
        self.assertIsNone(load_engine_config(self.app_data_dir))
        self.assertTrue(self.config_path.parent.is_dir())

    def test_valid_file_is_loaded(self) -> None:
        self.write(json.dumps(raw_config(dev_mode=True)))

        config = load_engine_config(self.app_data_dir)

        self.assertEqual(config.job_title, "Data Scientist")
        self.assertEqual(config.productivity_score_threshold, 5)
        self.assertEqual(config.duration_between_alerts_secs, 300.0)
        self.assertTrue(config.dev_mode)
        self.assertEqual(config.phash_distance_threshold, 4)

    def test_malformed_json_raises(self) -> None:
        self.write("{not json")
        with self.assertRaises(FocusGuardConfigError):
            load_engine_config(self.app_data_dir)

    def test_non_object_raises(self) -> None:
        self.write("[1, 2, 3]")
        with self.assertRaises(FocusGuardConfigError):
            load_engine_config(self.app_data_dir)

    def test_save_then_load(self) -> None:
        config = make_config(self_app_names=("Screentap", "Terminal"))
        path = save_engine_config(self.app_data_dir, config)

        self.assertEqual(path, self.config_path)
        with mock.patch.dict(os.environ, {"OPENAI_API_KEY": "", "GEMINI_API_KEY": ""}):
            self.assertEqual(load_engine_config(self.app_data_dir), config)


class ParseEngineConfigTests(unittest.TestCase):
    def test_missing_keys_are_reported(self) -> None:
        raw = raw_config()
        del raw["job_role"]
        with self.assertRaisesRegex(FocusGuardConfigError, "job_role"):
            parse_engine_config(raw)

    def test_unknown_backend(self) -> None:
        with self.assertRaisesRegex(FocusGuardConfigError, "llava_backend"):
            parse_engine_config(raw_config(llava_backend="claude"))

    def test_out_of_range_values(self) -> None:
        bad_values = [
            {"productivity_score_threshold": 0},
            {"productivity_score_threshold": 11},
            {"image_resize_scale": 0.05},
            {"image_resize_scale": 1.5},
            {"duration_between_alerts_secs": -1},
            {"phash_distance_threshold": -2},
            {"request_timeout_secs": 0},
            {"job_title": "   "},
        ]
        for overrides in bad_values:
            with self.subTest(overrides=overrides):
                with self.assertRaises(FocusGuardConfigError):
                    parse_engine_config(raw_config(**overrides))

    def test_non_numeric_value(self) -> None:
        with self.assertRaises(FocusGuardConfigError):
            parse_engine_config(raw_config(productivity_score_threshold="high"))

    def test_unknown_keys_are_ignored(self) -> None:
        with self.assertLogs("settings_store", level="WARNING"):
            config = parse_engine_config(raw_config(favourite_color="blue"))
        self.assertEqual(config.llava_backend, "ollama")

    def test_api_key_falls_back_to_environment(self) -> None:
        with mock.patch.dict(os.environ, {"OPENAI_API_KEY": "sk-env"}):
            config = parse_engine_config(raw_config(llava_backend="openai"))
            explicit = parse_engine_config(raw_config(llava_backend="openai", openai_api_key="sk-file"))
        self.assertEqual(config.openai_api_key, "sk-env")
        self.assertEqual(explicit.openai_api_key, "sk-file")

    def test_empty_saved_key_falls_back_to_environment(self) -> None:
        with mock.patch.dict(os.environ, {"GEMINI_API_KEY": "g-env"}):
            config = parse_engine_config(raw_config(llava_backend="gemini", gemini_api_key=""))
        self.assertEqual(config.gemini_api_key, "g-env")

    def test_dev_mode_must_be_boolean(self) -> None:
        self.assertFalse(parse_engine_config(raw_config(dev_mode=False)).dev_mode)
        for value in ("false", "true", 0, 1, None):
            with self.subTest(value=value):
                with self.assertRaisesRegex(FocusGuardConfigError, "dev_mode"):
                    parse_engine_config(raw_config(dev_mode=value))

    def test_wrongly_typed_fields_are_config_errors(self) -> None:
        bad_values = [
            {"job_title": 5},
            {"job_role": ["backend"]},
            {"llava_backend": None},
            {"ollama_model": 7},
            {"self_app_names": 3},
            {"self_app_names": ["Screentap", 4]},
            {"self_app_names": {"name": "Screentap"}},
        ]
        for overrides in bad_values:
            with self.subTest(overrides=overrides):
                with self.assertRaises(FocusGuardConfigError):
                    parse_engine_config(raw_config(**overrides))

    def test_single_self_app_name_string(self) -> None:
        config = parse_engine_config(raw_config(self_app_names="Screentap"))
        self.assertEqual(config.self_app_names, ("Screentap",))


if __name__ == "__main__":
    unittest.main()
