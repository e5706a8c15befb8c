from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

import numpy as np

from .detector import FacePresenceDetector
from .exceptions import ModelsNotLoadedError
from .logger import setup_logger
from .types import FaceDetection

FrameProvider = Callable[[], Optional[np.ndarray]]
DetectionListener = Callable[[List[FaceDetection]], None]


class DetectionLoop:
    """Polls the detector on a fixed interval with at most one call in flight.

    A tick that finds the previous detection still running is skipped, not
    queued. Every completed call replaces the detection set wholesale.
    """

    def __init__(
        self,
        detector: FacePresenceDetector,
        frame_provider: FrameProvider,
        interval_seconds: float = 0.1,
    ):
        self.detector = detector
        self.frame_provider = frame_provider
        self.interval_seconds = interval_seconds
        self.ticks = 0
        self.skipped_ticks = 0
        self.completed = 0
        self._generation = 0
        self._listeners: List[DetectionListener] = []
        self._detections: List[FaceDetection] = []
        self._state_lock = threading.Lock()
        self._in_flight = threading.Lock()
        self._stop_event = threading.Event()
        self._scheduler: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None
        self.logger = setup_logger(self.__class__.__name__)

    def add_listener(self, listener: DetectionListener) -> None:
        self._listeners.append(listener)

    @property
    def running(self) -> bool:
        scheduler = self._scheduler
        return scheduler is not None and scheduler.is_alive()

    @property
    def detections(self) -> List[FaceDetection]:
        with self._state_lock:
            return list(self._detections)

    @property
    def face_detected(self) -> bool:
        with self._state_lock:
            return bool(self._detections)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="face-detect")
        self._scheduler = threading.Thread(target=self._schedule, name="detection-loop", daemon=True)
        self._scheduler.start()

    def stop(self) -> None:
        self._stop_event.set()
        scheduler = self._scheduler
        if scheduler is not None and scheduler is not threading.current_thread():
            scheduler.join(timeout=2)
        self._scheduler = None
        with self._state_lock:
            self._generation += 1
        if self._executor is not None:
            # A call still running finishes on its own and releases the in-flight guard.
            self._executor.shutdown(wait=False)
            self._executor = None
        self._replace([])

    def _schedule(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            self.tick()

    def tick(self) -> bool:
        """Start one detection call; returns False when the tick was skipped."""
        self.ticks += 1
        if not self._in_flight.acquire(blocking=False):
            self.skipped_ticks += 1
            return False

        executor = self._executor
        frame = self.frame_provider() if executor is not None else None
        if frame is None:
            self._in_flight.release()
            return False

        with self._state_lock:
            generation = self._generation
        try:
            executor.submit(self._run_detection, frame, generation)
        except RuntimeError:
            # Executor already shut down by stop().
            self._in_flight.release()
            return False
        return True

    def _run_detection(self, frame: np.ndarray, generation: int) -> None:
        try:
            detections = self.detector.detect(frame)
        except ModelsNotLoadedError:
            return
        except Exception as exc:
            self.logger.warning("Face detection tick failed: %s", exc)
            return
        finally:
            self._in_flight.release()

        self._replace(detections, generation)

    def _replace(self, detections: List[FaceDetection], generation: int | None = None) -> None:
        with self._state_lock:
            if generation is not None:
                if generation != self._generation:
                    return
                self.completed += 1
            self._detections = list(detections)
        for listener in list(self._listeners):
            try:
                listener(list(detections))
            except Exception:
                self.logger.exception("Detection listener failed")
