import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from constants import APP_NAME

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"

SUPPORTED_BACKENDS = ("openai", "gemini", "ollama", "llamafile")

REQUIRED_KEYS = (
    "job_title",
    "job_role",
    "llava_backend",
    "productivity_score_threshold",
    "duration_between_alerts_secs",
    "image_resize_scale",
)

STRING_KEYS = (
    "job_title",
    "job_role",
    "llava_backend",
    "openai_api_key",
    "openai_model",
    "openai_base_url",
    "gemini_api_key",
    "gemini_model",
    "ollama_base_url",
    "ollama_model",
    "llamafile_path",
    "llamafile_download_url",
)

CREDENTIAL_ENV_VARS = {
    "openai_api_key": "OPENAI_API_KEY",
    "gemini_api_key": "GEMINI_API_KEY",
}


class FocusGuardConfigError(ValueError):
    """Raised when the FocusGuard config exists but cannot be used."""


@dataclass(frozen=True)
class EngineConfig:
    """Settings FocusGuard reads once at startup."""

    job_title: str
    job_role: str
    llava_backend: str
    productivity_score_threshold: int
    duration_between_alerts_secs: float
    image_resize_scale: float
    dev_mode: bool = False
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    openai_base_url: str = "https://api.openai.com"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    ollama_base_url: str = "http://127.0.0.1:11434"
    ollama_model: str = "llava"
    llamafile_path: str = ""
    llamafile_download_url: str = ""
    phash_distance_threshold: int = 4
    request_timeout_secs: float = 120.0
    subprocess_timeout_secs: float = 300.0
    self_app_names: Tuple[str, ...] = (APP_NAME,)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["self_app_names"] = list(self.self_app_names)
        return data


def get_focusguard_root_dir(app_data_dir: Path) -> Path:
    return Path(app_data_dir) / "plugins" / "focusguard"


def load_engine_config(app_data_dir: Path) -> Optional[EngineConfig]:
    """
    Read plugins/focusguard/config.json under the app data dir.

    A missing file means the plugin is inactive: the directory is created so the
    user knows where to drop a config, and None is returned. A file that exists
    but is unusable raises FocusGuardConfigError.
    """
    root = get_focusguard_root_dir(app_data_dir)
    config_path = root / CONFIG_FILENAME
    if not config_path.exists():
        logger.info("FocusGuard config not found at %s; plugin inactive.", config_path)
        root.mkdir(parents=True, exist_ok=True)
        return None

    logger.info("FocusGuard config found at %s", config_path)
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise FocusGuardConfigError(f"Failed to read FocusGuard config {config_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise FocusGuardConfigError("FocusGuard config must be a JSON object.")
    return parse_engine_config(raw)


def parse_engine_config(raw: Dict[str, Any]) -> EngineConfig:
    missing = [key for key in REQUIRED_KEYS if key not in raw]
    if missing:
        raise FocusGuardConfigError(f"FocusGuard config missing keys: {', '.join(missing)}")

    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        logger.warning("Ignoring unknown FocusGuard config keys: %s", ", ".join(unknown))

    values = {k: v for k, v in raw.items() if k in known}
    for key in STRING_KEYS:
        if key in values and not isinstance(values[key], str):
            raise FocusGuardConfigError(f"{key} must be a string, got {type(values[key]).__name__}.")
    if not isinstance(values.get("dev_mode", False), bool):
        raise FocusGuardConfigError("dev_mode must be true or false.")
    try:
        values["productivity_score_threshold"] = int(values["productivity_score_threshold"])
        values["duration_between_alerts_secs"] = float(values["duration_between_alerts_secs"])
        values["image_resize_scale"] = float(values["image_resize_scale"])
        for key in ("phash_distance_threshold",):
            if key in values:
                values[key] = int(values[key])
        for key in ("request_timeout_secs", "subprocess_timeout_secs"):
            if key in values:
                values[key] = float(values[key])
    except (TypeError, ValueError) as exc:
        raise FocusGuardConfigError(f"Invalid FocusGuard config value: {exc}") from exc

    if "self_app_names" in values:
        names = values["self_app_names"]
        if isinstance(names, str):
            names = [names]
        if not isinstance(names, (list, tuple)) or not all(isinstance(name, str) for name in names):
            raise FocusGuardConfigError("self_app_names must be a string or a list of strings.")
        values["self_app_names"] = tuple(names)

    # Empty credentials fall back to the environment.
    for key, env_var in CREDENTIAL_ENV_VARS.items():
        if not values.get(key):
            values[key] = os.environ.get(env_var, "")

    config = EngineConfig(**values)
    validate_engine_config(config)
    return config


def validate_engine_config(config: EngineConfig) -> None:
    if config.llava_backend not in SUPPORTED_BACKENDS:
        raise FocusGuardConfigError(
            f"Unknown llava_backend '{config.llava_backend}'. Expected one of: {', '.join(SUPPORTED_BACKENDS)}"
        )
    if not 1 <= config.productivity_score_threshold <= 10:
        raise FocusGuardConfigError("productivity_score_threshold must be between 1 and 10.")
    if not 0.1 <= config.image_resize_scale <= 1.0:
        raise FocusGuardConfigError("image_resize_scale must be between 0.1 and 1.0.")
    if config.duration_between_alerts_secs < 0:
        raise FocusGuardConfigError("duration_between_alerts_secs must not be negative.")
    if config.phash_distance_threshold < 0:
        raise FocusGuardConfigError("phash_distance_threshold must not be negative.")
    if config.request_timeout_secs <= 0 or config.subprocess_timeout_secs <= 0:
        raise FocusGuardConfigError("Timeouts must be positive.")
    if not config.job_title.strip() or not config.job_role.strip():
        raise FocusGuardConfigError("job_title and job_role must not be empty.")


def save_engine_config(app_data_dir: Path, config: EngineConfig) -> Path:
    """Persist a config to disk (used by `screentap init-config`)."""
    root = get_focusguard_root_dir(app_data_dir)
    root.mkdir(parents=True, exist_ok=True)
    config_path = root / CONFIG_FILENAME
    config_path.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
    return config_path
