from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List

import numpy as np

from .camera import CameraAcquirer
from .detection_loop import DetectionLoop
from .detector import FacePresenceDetector
from .dispatcher import Submitter
from .exceptions import CameraError, CaptureNotReady
from .imaging import encode_jpeg, frame_from_bytes, frame_from_file
from .logger import setup_logger
from .types import (
    CameraConstraints,
    CapturedFrame,
    CaptureState,
    FaceDetection,
    FaceGatePolicy,
    OutcomeStatus,
    SubmissionOutcome,
)

StateListener = Callable[[CaptureState], None]
OutcomeListener = Callable[[SubmissionOutcome], None]

NO_FACE_WARNING = "No face detected in captured image"


class CaptureWidget:
    """Live -> preview -> confirm/retake cycle around one camera and one detector.

    Only one camera session and one submission exist at a time. Leaving the
    widget (``close`` or the context manager) always releases the camera.
    """

    def __init__(
        self,
        submitter: Submitter,
        detector: FacePresenceDetector,
        acquirer: CameraAcquirer | None = None,
        constraints: CameraConstraints | None = None,
        policy: FaceGatePolicy = FaceGatePolicy.WARN,
        jpeg_quality: int = 80,
        detection_interval: float = 0.1,
    ):
        self.submitter = submitter
        self.detector = detector
        self.acquirer = acquirer or CameraAcquirer()
        self.constraints = constraints or CameraConstraints()
        self.policy = FaceGatePolicy(policy)
        self.jpeg_quality = jpeg_quality

        self.state = CaptureState.IDLE
        self.preview: CapturedFrame | None = None
        self.last_outcome: SubmissionOutcome | None = None
        self.camera_error: str | None = None

        self._lock = threading.RLock()
        self._pending: Future | None = None
        self._submission_id = 0
        self._closed = False
        self._state_listeners: List[StateListener] = []
        self._outcome_listeners: List[OutcomeListener] = []
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="upload")
        self.detection = DetectionLoop(detector, self.live_frame, interval_seconds=detection_interval)
        self.logger = setup_logger(self.__class__.__name__)

    def __enter__(self) -> "CaptureWidget":
        self.mount()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def on_state_change(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def on_outcome(self, listener: OutcomeListener) -> None:
        self._outcome_listeners.append(listener)

    # Read-only views
    @property
    def face_detected(self) -> bool:
        return self.detection.face_detected

    @property
    def detections(self) -> List[FaceDetection]:
        return self.detection.detections

    @property
    def models_loaded(self) -> bool:
        return self.detector.models_loaded

    @property
    def submitting(self) -> bool:
        with self._lock:
            return self._pending is not None

    @property
    def capture_enabled(self) -> bool:
        with self._lock:
            if self.state is not CaptureState.LIVE:
                return False
        if self.policy is FaceGatePolicy.REQUIRE_ON_CAPTURE:
            return self.face_detected
        return True

    @property
    def confirm_enabled(self) -> bool:
        with self._lock:
            return self.state is CaptureState.PREVIEWING and self._pending is None

    @property
    def upload_enabled(self) -> bool:
        with self._lock:
            return not self._closed and self._pending is None and self.state in (
                CaptureState.IDLE,
                CaptureState.LIVE,
                CaptureState.NO_CAMERA,
            )

    def live_frame(self) -> np.ndarray | None:
        session = self.acquirer.session
        if session is None:
            return None
        return session.latest_frame()

    # Lifecycle
    def mount(self) -> None:
        self.detector.load_async()

    def start_camera(self) -> bool:
        with self._lock:
            if self._closed:
                return False
            if self.state in (CaptureState.PREVIEWING, CaptureState.SUBMITTING):
                self.logger.info("Ignoring camera start while %s", self.state.value)
                return False

            self.detection.stop()
            self.acquirer.stop()
            try:
                self.acquirer.start(self.constraints)
            except CameraError as exc:
                self.camera_error = str(exc)
                self.logger.warning("Camera unavailable, falling back to file upload: %s", exc)
                self._set_state(CaptureState.NO_CAMERA)
                return False

            self.camera_error = None
            self.detection.start()
            self._set_state(CaptureState.LIVE)
            return True

    def stop_camera(self) -> None:
        with self._lock:
            self.detection.stop()
            self.acquirer.stop()
            if self.state is CaptureState.SUBMITTING:
                return
            self.preview = None
            if self.state is not CaptureState.NO_CAMERA:
                self._set_state(CaptureState.IDLE)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._pending is not None:
                self.logger.info("Abandoning in-flight submission on close")
            self._pending = None
            self.preview = None
            self.detection.stop()
            self.acquirer.stop()
            self._set_state(CaptureState.IDLE)
        self._executor.shutdown(wait=False, cancel_futures=True)

    # Transitions
    def _snapshot(self) -> np.ndarray:
        session = self.acquirer.session
        if session is None or not session.active:
            raise CaptureNotReady("No active camera session.")
        width, height = session.video_size()
        if width == 0 or height == 0:
            raise CaptureNotReady("Video has no frame yet.")
        frame = session.latest_frame()
        if frame is None:
            raise CaptureNotReady("Video has no frame yet.")
        return frame

    def capture(self) -> CapturedFrame | None:
        with self._lock:
            if self.state is not CaptureState.LIVE:
                self.logger.debug("Capture ignored in state %s", self.state.value)
                return None
            try:
                image = self._snapshot()
            except CaptureNotReady as exc:
                self.logger.info("Capture not ready: %s", exc)
                return None

            face_detected = self.face_detected
            if self.policy is FaceGatePolicy.REQUIRE_ON_CAPTURE and not face_detected:
                self.logger.info("Capture refused: face required but none detected")
                return None

            self.preview = CapturedFrame(image=image, face_detected_at_capture=face_detected)
            self.last_outcome = None
            self._set_state(CaptureState.PREVIEWING)
            return self.preview

    def retake(self) -> bool:
        with self._lock:
            if self.state is not CaptureState.PREVIEWING:
                return False
            self.preview = None
            self._set_state(self._live_or_idle())
            return True

    def confirm(self) -> Future | None:
        with self._lock:
            if self.state is not CaptureState.PREVIEWING or self._pending is not None or self.preview is None:
                self.logger.info("Confirm refused in state %s", self.state.value)
                return None

            frame = self.preview
            if frame.jpeg is None:
                frame.jpeg = encode_jpeg(frame.image, self.jpeg_quality)

            warning = None
            if not frame.face_detected_at_capture and self.policy is not FaceGatePolicy.OFF:
                warning = NO_FACE_WARNING
                self.logger.warning("Submitting capture without a detected face")
            return self._dispatch(frame, warning, resume_state=None)

    def submit_file(self, source: Path | str | bytes, filename: str = "upload.jpg") -> Future | None:
        """Send a user-chosen image straight to submission, skipping live and preview."""
        with self._lock:
            if not self.upload_enabled:
                self.logger.info("Upload refused in state %s", self.state.value)
                return None
            if isinstance(source, (bytes, bytearray)):
                frame = frame_from_bytes(bytes(source), filename=filename, quality=self.jpeg_quality)
            else:
                frame = frame_from_file(source, quality=self.jpeg_quality)
            return self._dispatch(frame, None, resume_state=self.state)

    def _dispatch(
        self,
        frame: CapturedFrame,
        warning: str | None,
        resume_state: CaptureState | None,
    ) -> Future | None:
        # Caller holds the lock, so the worker cannot settle before SUBMITTING is set.
        submission_id = self._submission_id + 1
        try:
            future = self._executor.submit(self._submit, frame, warning, resume_state, submission_id)
        except RuntimeError as exc:
            self.logger.warning("Submission refused: %s", exc)
            return None
        self._submission_id = submission_id
        self.last_outcome = None
        self._pending = future
        self._set_state(CaptureState.SUBMITTING)
        return future

    def _submit(
        self,
        frame: CapturedFrame,
        warning: str | None,
        resume_state: CaptureState | None,
        submission_id: int,
    ) -> SubmissionOutcome:
        try:
            outcome = self.submitter(frame)
        except Exception as exc:
            self.logger.exception("Submission raised unexpectedly")
            outcome = SubmissionOutcome(status=OutcomeStatus.FAILED, error=str(exc) or exc.__class__.__name__)
        if warning and outcome.warning is None:
            outcome.warning = warning

        with self._lock:
            if self._closed or submission_id != self._submission_id:
                return outcome
            self._pending = None
            self.last_outcome = outcome

            if resume_state is not None:
                # File uploads return to wherever the widget was.
                if resume_state is CaptureState.LIVE:
                    resume_state = self._live_or_idle()
                self._set_state(resume_state)
            elif outcome.ok:
                self.preview = None
                self._set_state(self._live_or_idle())
            else:
                # Keep the buffer so the user can confirm again without re-posing.
                self.preview = frame
                self._set_state(CaptureState.PREVIEWING)

        for listener in list(self._outcome_listeners):
            try:
                listener(outcome)
            except Exception:
                self.logger.exception("Outcome listener failed")
        return outcome

    def _live_or_idle(self) -> CaptureState:
        return CaptureState.LIVE if self.acquirer.active else CaptureState.IDLE

    def _set_state(self, state: CaptureState) -> None:
        if state is self.state:
            return
        self.logger.debug("Capture state %s -> %s", self.state.value, state.value)
        self.state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                self.logger.exception("State listener failed")
