import logging
import platform
import subprocess
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Tuple

from constants import CAPTURE_INTERVAL_SECS, DATASET_DIRNAME
from db import ScreenshotStore
from focus_schema import CaptureEvent, DecisionOutcome
from focusguard import AlertSink, FocusGuard
from utils import extract_text, generate_filename, take_screenshot

try:
    from AppKit import NSWorkspace  # type: ignore
    from Quartz import (  # type: ignore
        CGWindowListCopyWindowInfo,
        kCGWindowListOptionOnScreenOnly,
        kCGNullWindowID,
    )
except ImportError:  # pragma: no cover - optional on non-mac systems
    NSWorkspace = None
    CGWindowListCopyWindowInfo = None
    kCGWindowListOptionOnScreenOnly = None
    kCGNullWindowID = None

logger = logging.getLogger(__name__)

OSASCRIPT_TIMEOUT_SECS = 2.0

# AppleScript that returns the URL of the frontmost tab, keyed by app name.
BROWSER_TAB_SCRIPTS = {
    "Google Chrome": 'tell application "Google Chrome" to get URL of active tab of front window',
    "Brave Browser": 'tell application "Brave Browser" to get URL of active tab of front window',
    "Microsoft Edge": 'tell application "Microsoft Edge" to get URL of active tab of front window',
    "Arc": 'tell application "Arc" to get URL of active tab of front window',
    "Safari": 'tell application "Safari" to get URL of front document',
}


@dataclass
class ActiveWindowSnapshot:
    """The frontmost app, its window title and (for browsers) the active tab URL."""

    app: Optional[str] = None
    title: str = ""
    browser_tab: str = ""

    @property
    def context_key(self) -> Tuple[Optional[str], str]:
        return self.app, self.browser_tab


class ActiveWindowInspector:
    """Caches frontmost window metadata to avoid redundant OS calls."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cache = ActiveWindowSnapshot()
        self._fetched_at: Optional[float] = None

    def snapshot(self, *, cache_max_age: float = 0.25) -> ActiveWindowSnapshot:
        """Frontmost window info; ``cache_max_age <= 0`` always asks the OS."""
        with self._lock:
            now = time.monotonic()
            stale = (
                cache_max_age <= 0
                or self._fetched_at is None
                or now - self._fetched_at > cache_max_age
            )
            if stale:
                self._cache = self._fetch_snapshot()
                self._fetched_at = now
            return self._cache

    def _fetch_snapshot(self) -> ActiveWindowSnapshot:
        if platform.system() != "Darwin" or not NSWorkspace or not CGWindowListCopyWindowInfo:
            return ActiveWindowSnapshot()

        try:
            workspace = NSWorkspace.sharedWorkspace()
            active_app = workspace.frontmostApplication()
            if not active_app:
                return ActiveWindowSnapshot()
            app_name = active_app.localizedName()
            pid = active_app.processIdentifier()
            windows = CGWindowListCopyWindowInfo(kCGWindowListOptionOnScreenOnly, kCGNullWindowID)
            title = self._extract_window_title(pid, windows)
            return ActiveWindowSnapshot(app=app_name, title=title, browser_tab=get_browser_tab(app_name))
        except Exception as exc:
            logger.debug("Active window lookup failed: %s", exc)
            return ActiveWindowSnapshot()

    @staticmethod
    def _extract_window_title(pid: int, windows) -> str:
        for window in windows or []:
            if window.get("kCGWindowOwnerPID") != pid:
                continue
            if window.get("kCGWindowLayer", 0) != 0:
                continue
            return window.get("kCGWindowName") or ""
        return ""


def get_browser_tab(app_name: Optional[str]) -> str:
    """URL of the active tab when ``app_name`` is a known browser, else ''."""
    script = BROWSER_TAB_SCRIPTS.get(app_name or "")
    if not script:
        return ""
    try:
        result = subprocess.run(
            ["osascript", "-e", script],
            capture_output=True,
            text=True,
            timeout=OSASCRIPT_TIMEOUT_SECS,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("osascript failed for %s: %s", app_name, exc)
        return ""
    if result.returncode != 0:
        return ""
    url = result.stdout.strip()
    return "" if url == "missing value" else url


class ScreentapMonitor:
    """
    Background capture loop: screenshot -> OCR -> store -> FocusGuard.

    FocusGuard runs inline on this thread, so a slow backend delays the next
    capture rather than piling up inferences.
    """

    def __init__(
        self,
        store: ScreenshotStore,
        *,
        focusguard: Optional[FocusGuard] = None,
        alert_sink: Optional[AlertSink] = None,
        capture_interval: float = CAPTURE_INTERVAL_SECS,
        inspector: Optional[ActiveWindowInspector] = None,
        on_outcome: Optional[Callable[[DecisionOutcome], None]] = None,
    ) -> None:
        self.store = store
        self.dataset_dir = store.root / DATASET_DIRNAME
        self.dataset_dir.mkdir(parents=True, exist_ok=True)
        self.focusguard = focusguard
        self.alert_sink = alert_sink
        self.capture_interval = capture_interval
        self.inspector = inspector or ActiveWindowInspector()
        self.on_outcome = on_outcome

        self._previous_context: Optional[Tuple[Optional[str], str]] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    # Thread control -------------------------------------------------------

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            logger.warning("ScreentapMonitor already running.")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="ScreentapMonitor", daemon=True)
        self._thread.start()
        logger.info("ScreentapMonitor started (every %ss).", self.capture_interval)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self.capture_interval + 2)
        logger.info("ScreentapMonitor stopped.")

    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def run_forever(self) -> None:
        """Run the loop on the calling thread until stop() or KeyboardInterrupt."""
        self._stop_event.clear()
        self._run_loop()

    # Capture -------------------------------------------------------------

    def capture_once(self, now: Optional[datetime] = None) -> Optional[DecisionOutcome]:
        now = now or datetime.now()
        filename = generate_filename(now, "png")
        image_path = self.dataset_dir / filename
        png_data = take_screenshot(image_path)
        ocr_text = extract_text(png_data)

        relative_path = f"{DATASET_DIRNAME}/{filename}"
        screenshot_id = self.store.save_screenshot_meta(relative_path, ocr_text, now)
        logger.info("Screenshot %s saved at %s", screenshot_id, now.strftime("%Y-%m-%d %H:%M:%S"))

        snapshot = self.inspector.snapshot(cache_max_age=0.0)
        changed = self._context_changed(snapshot)

        if not self.focusguard:
            return None

        event = CaptureEvent(
            png_data=png_data,
            png_image_path=str(image_path),
            screenshot_id=screenshot_id,
            ocr_text=ocr_text,
            frontmost_app=snapshot.app,
            frontmost_browser_tab=snapshot.browser_tab,
            frontmost_app_or_tab_changed=changed,
        )
        outcome = self.focusguard.handle_event(event, self.alert_sink)
        if self.on_outcome:
            self.on_outcome(outcome)
        return outcome

    def _context_changed(self, snapshot: ActiveWindowSnapshot) -> bool:
        previous = self._previous_context
        self._previous_context = snapshot.context_key
        return previous is None or previous != snapshot.context_key

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.capture_once()
            except Exception as exc:
                logger.exception("Capture loop error: %s", exc)
            finally:
                self._stop_event.wait(self.capture_interval)
