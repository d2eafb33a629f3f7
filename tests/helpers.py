import io
import sys
from pathlib import Path

from PIL import Image

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from focus_schema import CaptureEvent
from settings_store import EngineConfig


def make_png(split: str = "vertical", size=(64, 64)) -> bytes:
    """Black/white two-tone frame; 'vertical' and 'horizontal' hash far apart."""
    img = Image.new("RGB", size, "white")
    width, height = size
    box = (0, 0, width // 2, height) if split == "vertical" else (0, 0, width, height // 2)
    img.paste((0, 0, 0), box)
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def make_config(**overrides) -> EngineConfig:
    values = dict(
        job_title="Software Engineer",
        job_role="Building the billing service in Python",
        llava_backend="ollama",
        productivity_score_threshold=6,
        duration_between_alerts_secs=0,
        image_resize_scale=1.0,
    )
    values.update(overrides)
    return EngineConfig(**values)


def make_event(
    screenshot_id: int = 1,
    *,
    png_data: bytes = None,
    app: str = "Google Chrome",
    tab: str = "https://news.ycombinator.com",
    changed: bool = False,
) -> CaptureEvent:
    return CaptureEvent(
        png_data=png_data if png_data is not None else make_png(),
        png_image_path=f"/tmp/dataset/{screenshot_id}.png",
        screenshot_id=screenshot_id,
        ocr_text="Hacker News",
        frontmost_app=app,
        frontmost_browser_tab=tab,
        frontmost_app_or_tab_changed=changed,
    )
