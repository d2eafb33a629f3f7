import io
import logging
import os
import platform
import re
import stat
from datetime import datetime
from pathlib import Path
from typing import Optional

import mss
import pytesseract
import requests
from PIL import Image

logger = logging.getLogger(__name__)

IS_MACOS = platform.system() == "Darwin"

_FIRST_NUMBER = re.compile(r"\d+")

CHUNK_SIZE = 1024 * 1024


def find_first_number(text: Optional[str]) -> Optional[int]:
    """
    Return the first run of decimal digits in ``text`` as an int.

    Anything before the first digit is ignored. Returns None when no digit is
    present.
    """
    if not text:
        return None
    match = _FIRST_NUMBER.search(text)
    if not match:
        return None
    return int(match.group(0))


def generate_filename(now: datetime, extension: str) -> str:
    return f"{now.strftime('%Y_%m_%d_%H_%M_%S')}.{extension}"


def take_screenshot(save_filepath: Path) -> bytes:
    """Grab the primary monitor, save it as PNG and return the PNG bytes."""
    with mss.mss() as sct:
        monitor = sct.monitors[1] if len(sct.monitors) > 1 else sct.monitors[0]
        raw = sct.grab(monitor)
        img = Image.frombytes("RGB", raw.size, raw.bgra, "raw", "BGRX")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    png_data = buffer.getvalue()
    save_filepath.parent.mkdir(parents=True, exist_ok=True)
    save_filepath.write_bytes(png_data)
    logger.debug("Captured frame %s", save_filepath)
    return png_data


def extract_text(png_data: bytes) -> str:
    """OCR a PNG frame. Returns an empty string when tesseract is unavailable."""
    try:
        with Image.open(io.BytesIO(png_data)) as img:
            return pytesseract.image_to_string(img).strip()
    except pytesseract.TesseractNotFoundError:
        logger.warning("tesseract binary not found; storing screenshot without OCR text.")
        return ""
    except (OSError, pytesseract.TesseractError) as exc:
        logger.warning("OCR failed: %s", exc)
        return ""


def resize_png(png_data: bytes, scale: float) -> bytes:
    """
    Downscale PNG bytes by ``scale`` and re-encode as PNG.

    Raises OSError/ValueError (from Pillow) when the bytes cannot be decoded or
    the target size is degenerate.
    """
    with Image.open(io.BytesIO(png_data)) as img:
        width, height = img.size
        new_size = (max(1, int(width * scale)), max(1, int(height * scale)))
        resized = img.convert("RGB").resize(new_size, Image.LANCZOS)
    buffer = io.BytesIO()
    resized.save(buffer, format="PNG")
    return buffer.getvalue()


def download_file(url: str, target: Path, timeout: float, executable: bool = False) -> Path:
    """Stream ``url`` to ``target``; writes to a .part file and renames on success."""
    target.parent.mkdir(parents=True, exist_ok=True)
    partial = target.with_name(target.name + ".part")
    logger.info("Downloading %s -> %s", url, target)
    with requests.get(url, stream=True, timeout=timeout) as response:
        response.raise_for_status()
        with open(partial, "wb") as f:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if chunk:
                    f.write(chunk)
    os.replace(partial, target)
    if executable:
        mode = target.stat().st_mode
        target.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return target
