from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

NO_SCORE = -1
DEV_MODE_SCORE = 1


class SkipReason(str, Enum):
    NOT_PRIMED = "NotPrimed"
    INVALID_FOREGROUND_CONTEXT = "InvalidForegroundContext"
    COOLDOWN_ACTIVE = "CooldownActive"
    DEV_MODE_SHORT_CIRCUIT = "DevModeShortCircuit"
    RESIZE_ERROR = "ResizeError"
    DUPLICATE_FRAME = "DuplicateFrame"
    ERROR = "Error"


@dataclass
class CaptureEvent:
    """One capture tick handed from the capture loop to FocusGuard."""

    png_data: bytes
    png_image_path: str
    screenshot_id: int
    ocr_text: str
    frontmost_app: Optional[str]
    frontmost_browser_tab: str
    frontmost_app_or_tab_changed: bool

    def __str__(self) -> str:
        return (
            f"screenshot_id: {self.screenshot_id} len(ocr_text): {len(self.ocr_text)} "
            f"len(png_data): {len(self.png_data)} frontmost app: {self.frontmost_app} "
            f"frontmost browser tab: {self.frontmost_browser_tab}"
        )


@dataclass
class DecisionOutcome:
    """
    Audit record for a single processed event.

    Exactly one of these comes back from every FocusGuard.handle_event call. When
    the vision model was not invoked, skip_reason says why.
    """

    invoked_vision_model: bool = False
    vision_model_success: bool = False
    vision_model_descriptor: str = ""
    skip_reason: Optional[SkipReason] = None
    productivity_score: int = NO_SCORE
    raw_response: Optional[str] = None
    alert_shown: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "invoked_vision_model": self.invoked_vision_model,
            "vision_model_success": self.vision_model_success,
            "vision_model_descriptor": self.vision_model_descriptor,
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
            "productivity_score": self.productivity_score,
            "raw_response": self.raw_response,
            "alert_shown": self.alert_shown,
        }


@dataclass(frozen=True)
class DistractionAlert:
    """Payload for the alert surface."""

    screenshot_id: int
    productivity_score: int
    raw_response: str
    png_image_path: str
    job_title: str
    job_role: str


@dataclass
class AlertRating:
    """User feedback on a shown alert, stored in the append-only ratings table."""

    screenshot_id: int
    liked: bool
    png_image_path: str
    job_title: str
    job_role: str
    created_at: datetime = field(default_factory=datetime.now)
