import base64
import io
import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import google.generativeai as genai
import requests
from google.api_core import exceptions as google_exceptions
from google.generativeai.types import BlockedPromptException, StopCandidateException
from PIL import Image

from settings_store import EngineConfig, FocusGuardConfigError
from utils import download_file

logger = logging.getLogger(__name__)

HTTP_OK = 200
MODEL_PULL_TIMEOUT_SECS = 3600.0

DEFAULT_LLAMAFILE_NAME = "llava-v1.5-7b-q4.llamafile"
DEFAULT_LLAMAFILE_URL = (
    "https://huggingface.co/Mozilla/llava-v1.5-7b-llamafile/resolve/main/"
    "llava-v1.5-7b-q4.llamafile?download=true"
)


class VisionBackend(ABC):
    """A vision-capable text generator: prompt + image in, free text out."""

    name = "base"

    def __init__(self, model_name: str):
        self.model_name = model_name

    @property
    def descriptor(self) -> str:
        return f"{self.name}:{self.model_name}"

    @abstractmethod
    def invoke(self, prompt: str, png_data: bytes, image_path: str) -> str:
        """
        Return the model's raw response, or an empty string on any failure.

        Implementations never raise for transport or model errors; an empty
        response is what the caller treats as "unparseable".
        """


def create_backend(config: EngineConfig, model_dir: Optional[Path] = None) -> VisionBackend:
    """Build the backend named by ``config.llava_backend``."""
    backend = config.llava_backend
    if backend == "openai":
        return OpenAIBackend(
            api_key=config.openai_api_key,
            model_name=config.openai_model,
            base_url=config.openai_base_url,
            timeout=config.request_timeout_secs,
        )
    if backend == "gemini":
        return GeminiBackend(
            api_key=config.gemini_api_key,
            model_name=config.gemini_model,
            timeout=config.request_timeout_secs,
        )
    if backend == "ollama":
        return OllamaBackend(
            base_url=config.ollama_base_url,
            model_name=config.ollama_model,
            timeout=config.request_timeout_secs,
        )
    if backend == "llamafile":
        executable = Path(config.llamafile_path) if config.llamafile_path else None
        if executable is None:
            executable = (model_dir or Path.cwd()) / "llamafile" / DEFAULT_LLAMAFILE_NAME
        return LlamafileBackend(
            executable=executable,
            download_url=config.llamafile_download_url or DEFAULT_LLAMAFILE_URL,
            timeout=config.subprocess_timeout_secs,
        )
    raise FocusGuardConfigError(f"Unsupported llava_backend '{backend}'.")


def _b64(png_data: bytes) -> str:
    return base64.b64encode(png_data).decode("ascii")


class OpenAIBackend(VisionBackend):
    """Remote chat-completions API with the frame inlined as a data URL."""

    name = "openai"

    def __init__(self, api_key: str, model_name: str = "gpt-4o", base_url: str = "https://api.openai.com", timeout: float = 120.0):
        if not api_key:
            raise FocusGuardConfigError("Set openai_api_key (or OPENAI_API_KEY) to use the openai backend.")
        super().__init__(model_name)
        self.api_key = api_key
        self.timeout = timeout
        self.chat_url = f"{base_url.rstrip('/')}/v1/chat/completions"

    def build_payload(self, prompt: str, png_data: bytes) -> Dict[str, Any]:
        return {
            "model": self.model_name,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/png;base64,{_b64(png_data)}"},
                        },
                    ],
                }
            ],
            "max_tokens": 300,
        }

    def invoke(self, prompt: str, png_data: bytes, image_path: str) -> str:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        try:
            response = requests.post(
                self.chat_url,
                json=self.build_payload(prompt, png_data),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("OpenAI request failed: %s", exc)
            return ""

        if response.status_code != HTTP_OK:
            logger.warning("OpenAI returned HTTP %s: %s", response.status_code, response.text[:200])
            return ""

        try:
            return response.json()["choices"][0]["message"]["content"].strip()
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
            logger.warning("Unexpected OpenAI response shape: %s", exc)
            return ""


class GeminiBackend(VisionBackend):
    """Remote Gemini model through the google-generativeai SDK."""

    name = "gemini"

    def __init__(self, api_key: str, model_name: str = "gemini-2.0-flash", timeout: float = 120.0):
        if not api_key:
            raise FocusGuardConfigError("Set gemini_api_key (or GEMINI_API_KEY) to use the gemini backend.")
        super().__init__(model_name)
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(self.model_name)
        self.timeout = timeout

    def invoke(self, prompt: str, png_data: bytes, image_path: str) -> str:
        try:
            with Image.open(io.BytesIO(png_data)) as img:
                parts = [prompt, img.convert("RGB")]
            response = self.model.generate_content(parts, request_options={"timeout": self.timeout})
            return (response.text or "").strip()
        except (
            google_exceptions.GoogleAPIError,
            BlockedPromptException,
            StopCandidateException,
            ValueError,
            OSError,
        ) as exc:
            logger.warning("Gemini request failed: %s", exc)
            return ""


class OllamaBackend(VisionBackend):
    """Self-hosted model behind a local Ollama daemon."""

    name = "ollama"

    def __init__(self, base_url: str = "http://127.0.0.1:11434", model_name: str = "llava", timeout: float = 120.0):
        super().__init__(model_name)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._model_ready = False

    def _installed_models(self) -> List[str]:
        response = requests.get(f"{self.base_url}/api/tags", timeout=self.timeout)
        response.raise_for_status()
        return [item.get("name", "") for item in response.json().get("models", [])]

    def _has_model(self, installed: List[str]) -> bool:
        wanted = self.model_name if ":" in self.model_name else f"{self.model_name}:latest"
        return any(name in (self.model_name, wanted) for name in installed)

    def ensure_model(self) -> bool:
        """Pull the model on first use. Returns False when it is still unavailable."""
        if self._model_ready:
            return True
        try:
            if not self._has_model(self._installed_models()):
                logger.info("Ollama model %s not present; pulling (this can take a while).", self.model_name)
                response = requests.post(
                    f"{self.base_url}/api/pull",
                    json={"name": self.model_name, "stream": False},
                    timeout=MODEL_PULL_TIMEOUT_SECS,
                )
                response.raise_for_status()
                logger.info("Ollama pull finished: %s", response.json().get("status"))
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Could not make Ollama model %s available: %s", self.model_name, exc)
            return False
        self._model_ready = True
        return True

    def invoke(self, prompt: str, png_data: bytes, image_path: str) -> str:
        if not self.ensure_model():
            return ""
        payload = {
            "model": self.model_name,
            "messages": [{"role": "user", "content": prompt, "images": [_b64(png_data)]}],
            "stream": False,
        }
        try:
            response = requests.post(f"{self.base_url}/api/chat", json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Ollama request failed: %s", exc)
            return ""
        if response.status_code != HTTP_OK:
            logger.warning("Ollama returned HTTP %s", response.status_code)
            return ""
        try:
            return response.json()["message"]["content"].strip()
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Unexpected Ollama response shape: %s", exc)
            return ""


class LlamafileBackend(VisionBackend):
    """Runs a llava llamafile as a child process for every request."""

    name = "llamafile"

    def __init__(self, executable: Path, download_url: str = DEFAULT_LLAMAFILE_URL, timeout: float = 300.0):
        super().__init__(Path(executable).name)
        self.executable = Path(executable)
        self.download_url = download_url
        self.timeout = timeout

    def ensure_executable(self) -> bool:
        if self.executable.exists():
            return True
        if not self.download_url:
            logger.warning("llamafile missing at %s and no download URL configured.", self.executable)
            return False
        try:
            download_file(self.download_url, self.executable, timeout=self.timeout, executable=True)
        except (requests.RequestException, OSError) as exc:
            logger.warning("llamafile download failed: %s", exc)
            return False
        return True

    def build_command(self, prompt: str, image_path: str) -> List[str]:
        return [
            str(self.executable),
            "--cli",
            "--image",
            image_path,
            "--temp",
            "0",
            "--silent-prompt",
            "-p",
            prompt,
        ]

    def invoke(self, prompt: str, png_data: bytes, image_path: str) -> str:
        if not self.ensure_executable():
            return ""
        try:
            result = subprocess.run(
                self.build_command(prompt, image_path),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.warning("llamafile timed out after %ss", self.timeout)
            return ""
        except OSError as exc:
            logger.warning("llamafile could not be started: %s", exc)
            return ""
        if result.returncode != 0:
            logger.warning("llamafile exited with %s: %s", result.returncode, (result.stderr or "")[-300:])
            return ""
        return (result.stdout or "").strip()
