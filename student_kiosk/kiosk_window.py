from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np

from .capture_flow import NO_FACE_WARNING, CaptureWidget
from .exceptions import ValidationError
from .logger import setup_logger
from .overlay import composite, new_canvas, render_overlay
from .schemas import RecognitionResult, SubjectProfile
from .types import CaptureState, FaceGatePolicy, OutcomeStatus, SubmissionOutcome

HELP_LINE = "SPACE capture | ENTER confirm | R retake | U upload | Q quit"

_BANNER_BG = (35, 35, 35)
_OK_COLOR = (30, 180, 30)
_WARN_COLOR = (11, 158, 245)
_ERROR_COLOR = (20, 20, 220)


def format_outcome(outcome: SubmissionOutcome | None) -> str:
    if outcome is None:
        return ""
    if outcome.status is OutcomeStatus.FAILED:
        return f"Request failed: {outcome.error or 'unknown error'}. Please try again."
    if outcome.status is OutcomeStatus.NO_MATCH:
        return "Student not found"

    result = outcome.result
    if isinstance(result, RecognitionResult):
        name = result.student.full_name if result.student else (result.student_id or "Unknown student")
        if result.confidence is None:
            return f"Student identified: {name}"
        return f"Student identified: {name} ({result.confidence * 100:.0f}%)"
    if isinstance(result, SubjectProfile):
        return f"Registration successful: {result.full_name}"
    return "Photo uploaded"


class KioskWindow:
    """OpenCV window bound to a capture widget."""

    def __init__(
        self,
        widget: CaptureWidget,
        title: str = "Student Kiosk",
        upload_path: Path | None = None,
        exit_after_outcome: bool = False,
    ):
        self.widget = widget
        self.title = title
        self.upload_path = upload_path
        self.exit_after_outcome = exit_after_outcome
        self.status_message = ""
        self.logger = setup_logger(self.__class__.__name__)
        widget.on_outcome(self._on_outcome)

    def run(self) -> SubmissionOutcome | None:
        with self.widget as widget:
            widget.start_camera()
            try:
                while True:
                    cv2.imshow(self.title, self.render())
                    key = cv2.waitKey(30) & 0xFF
                    if key in (ord("q"), 27):
                        break
                    self.handle_key(key)
                    outcome = widget.last_outcome
                    if self.exit_after_outcome and outcome is not None and outcome.ok and not widget.submitting:
                        cv2.imshow(self.title, self.render())
                        cv2.waitKey(1500)
                        break
            finally:
                cv2.destroyWindow(self.title)
            return widget.last_outcome

    def handle_key(self, key: int) -> None:
        widget = self.widget
        if key == ord(" "):
            if widget.capture() is not None:
                self.status_message = ""
            elif widget.state is CaptureState.LIVE:
                self.status_message = "Hold on, the camera is not ready or no face is visible."
        elif key in (13, 10, ord("c")):
            if widget.confirm() is not None:
                self.status_message = "Processing..."
        elif key == ord("r"):
            widget.retake()
        elif key == ord("t") and widget.state is CaptureState.NO_CAMERA:
            widget.start_camera()
        elif key == ord("u"):
            self._upload()

    def _upload(self) -> None:
        if self.upload_path is None:
            self.status_message = "No upload file given (--image)."
            return
        try:
            if self.widget.submit_file(self.upload_path) is not None:
                self.status_message = "Processing..."
        except ValidationError as exc:
            self.status_message = str(exc)

    def render(self) -> np.ndarray:
        widget = self.widget
        width, height = widget.constraints.width, widget.constraints.height
        state = widget.state

        if state is CaptureState.NO_CAMERA:
            image = np.full((height, width, 3), 40, dtype=np.uint8)
            self._text(image, "Camera access denied or unavailable", (20, height // 2 - 20), _ERROR_COLOR)
            self._text(image, "Press U to upload a photo or T to try again", (20, height // 2 + 15), (230, 230, 230))
        elif widget.preview is not None and state in (CaptureState.PREVIEWING, CaptureState.SUBMITTING):
            image = widget.preview.image.copy()
            if not widget.preview.face_detected_at_capture and widget.policy is not FaceGatePolicy.OFF:
                self._banner(image, NO_FACE_WARNING, _WARN_COLOR, top=True)
        else:
            frame = widget.live_frame()
            if frame is None:
                image = np.zeros((height, width, 3), dtype=np.uint8)
                self._text(image, "Starting camera...", (20, height // 2), (230, 230, 230))
            else:
                canvas = new_canvas(frame.shape[1], frame.shape[0])
                if widget.models_loaded:
                    render_overlay(canvas, widget.detections)
                image = composite(frame, canvas)
                self._banner(image, self._detection_badge(), _OK_COLOR if widget.face_detected else _WARN_COLOR, top=True)

        self._banner(image, *self.footer())
        return image

    def footer(self) -> tuple[str, tuple[int, int, int]]:
        """Bottom banner text: pending work, then the latest message, then the last result."""
        widget = self.widget
        outcome = widget.last_outcome
        if widget.submitting:
            return "Processing...", (230, 230, 230)
        if self.status_message:
            return self.status_message, (230, 230, 230)
        if outcome is not None:
            color = _OK_COLOR if outcome.status is OutcomeStatus.SUCCESS else _ERROR_COLOR
            return format_outcome(outcome), color
        return HELP_LINE, (230, 230, 230)

    def _on_outcome(self, outcome: SubmissionOutcome) -> None:
        self.status_message = ""

    def _detection_badge(self) -> str:
        widget = self.widget
        if widget.detector.load_error:
            return f"Face detection unavailable: {widget.detector.load_error}"
        if not widget.models_loaded:
            return "Loading face detection..."
        count = len(widget.detections)
        if count == 0:
            return "No Face Detected"
        return f"{count} Face{'s' if count > 1 else ''} Detected"

    @staticmethod
    def _text(image: np.ndarray, text: str, origin: tuple[int, int], color) -> None:
        cv2.putText(image, text, origin, cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2, cv2.LINE_AA)

    def _banner(self, image: np.ndarray, text: str, color, top: bool = False) -> None:
        height, width = image.shape[:2]
        y1, y2 = (0, 36) if top else (height - 36, height)
        cv2.rectangle(image, (0, y1), (width, y2), _BANNER_BG, -1)
        self._text(image, text, (12, y2 - 12), color)
