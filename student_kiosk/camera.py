from __future__ import annotations

import threading
import time
from typing import Any

import cv2
import numpy as np

from .camera_capture import CaptureFactory, open_camera_capture
from .exceptions import CameraError, CaptureStateError
from .logger import setup_logger
from .types import CameraConstraints


class CameraSession:
    """One open webcam plus the reader thread that keeps its latest frame."""

    def __init__(self, cap: Any, constraints: CameraConstraints, backend_name: str):
        self.cap = cap
        self.constraints = constraints
        self.backend_name = backend_name
        self.read_failures = 0
        self._frame: np.ndarray | None = None
        self._frame_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._reader: threading.Thread | None = None

    def __enter__(self) -> "CameraSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    @property
    def active(self) -> bool:
        return self.cap is not None

    def start_reader(self) -> None:
        if self._reader is not None:
            return
        self._reader = threading.Thread(target=self._read_loop, name="camera-reader", daemon=True)
        self._reader.start()

    def _read_loop(self) -> None:
        idle_sleep = 1.0 / max(1, self.constraints.fps)
        while not self._stop_event.is_set():
            cap = self.cap
            if cap is None:
                break
            success, frame = cap.read()
            if not success or frame is None:
                self.read_failures += 1
                time.sleep(idle_sleep)
                continue
            with self._frame_lock:
                self._frame = frame

    def latest_frame(self) -> np.ndarray | None:
        with self._frame_lock:
            if self._frame is None:
                return None
            return self._frame.copy()

    def video_size(self) -> tuple[int, int]:
        with self._frame_lock:
            if self._frame is None or self._frame.size == 0:
                return (0, 0)
            height, width = self._frame.shape[:2]
            return (int(width), int(height))

    def stop(self) -> None:
        self._stop_event.set()
        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(timeout=2)
        self._reader = None
        if self.cap is not None:
            self.cap.release()
            self.cap = None
        with self._frame_lock:
            self._frame = None


class CameraAcquirer:
    """Owns the single camera session of a capture widget."""

    def __init__(self, capture_factory: CaptureFactory | None = None, start_reader: bool = True):
        self.capture_factory = capture_factory
        self.start_reader = start_reader
        self.session: CameraSession | None = None
        self._lock = threading.Lock()
        self.logger = setup_logger(self.__class__.__name__)

    def start(self, constraints: CameraConstraints) -> CameraSession:
        with self._lock:
            if self.session is not None and self.session.active:
                raise CaptureStateError("A camera session is already active; stop it before starting another.")

            try:
                cap, backend_name = open_camera_capture(
                    constraints.camera_index,
                    capture_factory=self.capture_factory,
                )
            except CameraError:
                self.logger.warning("Camera %d could not be acquired", constraints.camera_index)
                raise

            cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
            cap.set(cv2.CAP_PROP_FPS, constraints.fps)

            session = CameraSession(cap, constraints, backend_name)
            if self.start_reader:
                session.start_reader()
            self.session = session

        self.logger.info(
            "Camera %d started via %s (%dx%d@%d)",
            constraints.camera_index,
            backend_name,
            constraints.width,
            constraints.height,
            constraints.fps,
        )
        return session

    def stop(self) -> None:
        with self._lock:
            session = self.session
            self.session = None
        if session is None:
            return
        session.stop()
        self.logger.info("Camera %d stopped", session.constraints.camera_index)

    @property
    def active(self) -> bool:
        session = self.session
        return session is not None and session.active
