from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Optional, Protocol

import imagehash

from db import ScreenshotStore
from focus_schema import (
    DEV_MODE_SCORE,
    NO_SCORE,
    AlertRating,
    CaptureEvent,
    DecisionOutcome,
    DistractionAlert,
    SkipReason,
)
from focus_state import AlertThrottle, LingeringStateMachine, LingeringVerdict
from perceptual_hash import compute_phash, is_duplicate
from prompts import build_focus_prompt
from settings_store import EngineConfig, get_focusguard_root_dir, load_engine_config
from utils import find_first_number, resize_png
from vision_backends import VisionBackend, create_backend

logger = logging.getLogger(__name__)

ALERT_IMAGES_DIRNAME = "alert_images"


class AlertSink(Protocol):
    def show_or_update(self, alert: DistractionAlert) -> None:
        ...


class FocusGuard:
    """
    Decides, one capture event at a time, whether to score the user's focus with
    a vision model and whether to raise a distraction alert.

    Runs entirely on the caller's thread. Every call to handle_event returns a
    DecisionOutcome; nothing that goes wrong while processing an event escapes.
    """

    def __init__(
        self,
        config: EngineConfig,
        backend: Optional[VisionBackend] = None,
        *,
        focusguard_root: Optional[Path] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.focusguard_root = focusguard_root
        self.backend = backend or create_backend(config, model_dir=focusguard_root)
        self.lingering = LingeringStateMachine(config.self_app_names)
        self.throttle = AlertThrottle(config.duration_between_alerts_secs, clock=clock)
        self.last_phash: Optional[imagehash.ImageHash] = None
        self.prompt = build_focus_prompt(config.job_title, config.job_role)

    @classmethod
    def from_app_data_dir(cls, app_data_dir: Path) -> Optional["FocusGuard"]:
        """Return None when no config exists; config errors propagate."""
        config = load_engine_config(app_data_dir)
        if config is None:
            return None
        root = get_focusguard_root_dir(app_data_dir)
        engine = cls(config, focusguard_root=root)
        logger.info(
            "FocusGuard active: backend=%s threshold=%s cooldown=%ss dev_mode=%s",
            engine.backend.descriptor,
            config.productivity_score_threshold,
            config.duration_between_alerts_secs,
            config.dev_mode,
        )
        return engine

    # Public API -----------------------------------------------------------

    def handle_event(self, event: CaptureEvent, alert_sink: Optional[AlertSink] = None) -> DecisionOutcome:
        logger.debug("FocusGuard handling event %s", event)
        outcome = DecisionOutcome()
        try:
            self._decide(event, alert_sink, outcome)
        except Exception as exc:
            logger.exception("FocusGuard failed on screenshot %s: %s", event.screenshot_id, exc)
            if not outcome.invoked_vision_model:
                outcome.skip_reason = SkipReason.ERROR
            outcome.vision_model_success = False
        self._log_outcome(event, outcome)
        return outcome

    # Internal helpers ----------------------------------------------------

    def _decide(self, event: CaptureEvent, alert_sink: Optional[AlertSink], outcome: DecisionOutcome) -> None:
        verdict = self.lingering.observe(event.frontmost_app, event.frontmost_app_or_tab_changed)
        if verdict == LingeringVerdict.INVALID_FOREGROUND:
            outcome.skip_reason = SkipReason.INVALID_FOREGROUND_CONTEXT
            return
        if verdict == LingeringVerdict.NOT_PRIMED:
            outcome.skip_reason = SkipReason.NOT_PRIMED
            return

        if not self.throttle.cooldown_elapsed():
            outcome.skip_reason = SkipReason.COOLDOWN_ACTIVE
            return

        if self.config.dev_mode:
            outcome.skip_reason = SkipReason.DEV_MODE_SHORT_CIRCUIT
            outcome.productivity_score = DEV_MODE_SCORE
            return

        try:
            resized = resize_png(event.png_data, self.config.image_resize_scale)
        except (OSError, ValueError) as exc:
            logger.warning("Could not resize screenshot %s: %s", event.screenshot_id, exc)
            outcome.skip_reason = SkipReason.RESIZE_ERROR
            return

        if self._is_duplicate_frame(resized):
            outcome.skip_reason = SkipReason.DUPLICATE_FRAME
            return

        outcome.invoked_vision_model = True
        outcome.vision_model_descriptor = self.backend.descriptor
        raw_response = self._invoke_backend(resized)
        outcome.raw_response = raw_response

        score = find_first_number(raw_response)
        if score is None:
            logger.warning("No productivity score in response %r", raw_response[:200])
            outcome.productivity_score = NO_SCORE
            return

        outcome.vision_model_success = True
        outcome.productivity_score = score

        if score < self.config.productivity_score_threshold:
            alert = DistractionAlert(
                screenshot_id=event.screenshot_id,
                productivity_score=score,
                raw_response=raw_response,
                png_image_path=event.png_image_path,
                job_title=self.config.job_title,
                job_role=self.config.job_role,
            )
            outcome.alert_shown = self._show_alert(alert, alert_sink)
            if outcome.alert_shown:
                self.throttle.mark_alert_shown()

    def _is_duplicate_frame(self, resized_png: bytes) -> bool:
        current = compute_phash(resized_png)
        # Refreshed on every evaluated frame, duplicate or not.
        previous, self.last_phash = self.last_phash, current
        return is_duplicate(previous, current, self.config.phash_distance_threshold)

    def _invoke_backend(self, resized_png: bytes) -> str:
        fd, tmp_path = tempfile.mkstemp(prefix="focusguard_", suffix=".png")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(resized_png)
            started = time.monotonic()
            response = self.backend.invoke(self.prompt, resized_png, tmp_path) or ""
            logger.info(
                "%s responded in %.1fs", self.backend.descriptor, time.monotonic() - started
            )
            return response
        finally:
            try:
                os.remove(tmp_path)
            except OSError as exc:
                logger.debug("Failed to delete %s: %s", tmp_path, exc)

    @staticmethod
    def _show_alert(alert: DistractionAlert, alert_sink: Optional[AlertSink]) -> bool:
        if alert_sink is None:
            return True
        try:
            alert_sink.show_or_update(alert)
        except Exception as exc:
            logger.exception("Alert surface failed for screenshot %s: %s", alert.screenshot_id, exc)
            return False
        return True

    @staticmethod
    def _log_outcome(event: CaptureEvent, outcome: DecisionOutcome) -> None:
        if outcome.invoked_vision_model:
            logger.info(
                "Screenshot %s scored %s by %s (alert=%s)",
                event.screenshot_id,
                outcome.productivity_score,
                outcome.vision_model_descriptor,
                outcome.alert_shown,
            )
        else:
            logger.debug(
                "Screenshot %s skipped: %s",
                event.screenshot_id,
                outcome.skip_reason.value if outcome.skip_reason else None,
            )


class GuardedFocusGuard:
    """Exclusive-access wrapper for hosts that share one engine across threads."""

    def __init__(self, engine: FocusGuard) -> None:
        self._engine = engine
        self._lock = threading.Lock()

    def __enter__(self) -> FocusGuard:
        self._lock.acquire()
        return self._engine

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._lock.release()
        return False

    def handle_event(self, event: CaptureEvent, alert_sink: Optional[AlertSink] = None) -> DecisionOutcome:
        with self as engine:
            return engine.handle_event(event, alert_sink)


def record_alert_feedback(
    store: ScreenshotStore,
    focusguard_root: Path,
    *,
    liked: bool,
    screenshot_id: int,
    png_image_path: str,
    job_title: str,
    job_role: str,
) -> int:
    """
    Store the user's thumbs up/down on an alert.

    The screenshot is copied next to the FocusGuard config so the rating keeps
    its evidence after the dataset is compacted or pruned.
    """
    logger.info(
        "Distraction alert rating received: liked=%s screenshot_id=%s job_title=%s",
        liked,
        screenshot_id,
        job_title,
    )
    source = Path(png_image_path)
    target_dir = Path(focusguard_root) / ALERT_IMAGES_DIRNAME
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / f"{screenshot_id}_{source.name}"
    shutil.copy2(source, target)

    rating = AlertRating(
        screenshot_id=screenshot_id,
        liked=liked,
        png_image_path=str(target),
        job_title=job_title,
        job_role=job_role,
    )
    return store.save_alert_rating(rating)
