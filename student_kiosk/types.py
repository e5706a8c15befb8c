from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import numpy as np


@dataclass(frozen=True)
class CameraConstraints:
    camera_index: int = 0
    facing_mode: str = "user"
    width: int = 640
    height: int = 480
    fps: int = 30


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    def as_xyxy(self) -> tuple[int, int, int, int]:
        return (
            int(round(self.x)),
            int(round(self.y)),
            int(round(self.x + self.width)),
            int(round(self.y + self.height)),
        )


@dataclass(frozen=True)
class FaceDetection:
    box: BoundingBox
    confidence: float


@dataclass
class CapturedFrame:
    image: np.ndarray | None
    face_detected_at_capture: bool
    source: str = "camera"
    jpeg: bytes | None = None
    filename: str = "capture.jpg"
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def size(self) -> tuple[int, int]:
        if self.image is None:
            return (0, 0)
        height, width = self.image.shape[:2]
        return (width, height)


class CaptureState(str, Enum):
    IDLE = "idle"
    LIVE = "live"
    PREVIEWING = "previewing"
    SUBMITTING = "submitting"
    NO_CAMERA = "no_camera"


class FaceGatePolicy(str, Enum):
    OFF = "off"
    WARN = "warn"
    REQUIRE_ON_CAPTURE = "require_on_capture"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    NO_MATCH = "no_match"
    FAILED = "failed"


@dataclass
class SubmissionOutcome:
    status: OutcomeStatus
    result: Any = None
    error: str | None = None
    warning: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED
