from __future__ import annotations

import math
import threading
from typing import List, Protocol

import cv2
import numpy as np

from .exceptions import DetectorError, ModelsNotLoadedError
from .logger import setup_logger
from .types import BoundingBox, FaceDetection

try:
    import mediapipe as mp
except Exception:  # pragma: no cover - optional runtime dependency
    mp = None


class FaceDetector(Protocol):
    name: str

    def load(self) -> None:
        ...

    def detect(self, frame: np.ndarray) -> List[FaceDetection]:
        ...


class MediaPipeFaceDetector:
    name = "mediapipe"

    def __init__(self, min_detection_confidence: float = 0.5, model_selection: int = 0):
        self.min_detection_confidence = min_detection_confidence
        self.model_selection = model_selection
        self.detector = None

    def load(self) -> None:
        if mp is None:
            raise DetectorError("mediapipe is not installed. Install the 'mediapipe' extra.")
        try:
            self.detector = mp.solutions.face_detection.FaceDetection(
                model_selection=self.model_selection,
                min_detection_confidence=self.min_detection_confidence,
            )
        except Exception as exc:
            raise DetectorError(f"Failed to initialize MediaPipe face detection: {exc}") from exc

    def detect(self, frame: np.ndarray) -> List[FaceDetection]:
        if self.detector is None:
            raise ModelsNotLoadedError("Face detection model not loaded.")
        try:
            rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
            result = self.detector.process(rgb)
        except Exception as exc:
            raise DetectorError(f"Face detection failed: {exc}") from exc

        if not result.detections:
            return []

        h, w = frame.shape[:2]
        output: List[FaceDetection] = []
        for det in result.detections:
            score = float(det.score[0]) if det.score else 0.0
            rel = det.location_data.relative_bounding_box
            x = max(0.0, rel.xmin * w)
            y = max(0.0, rel.ymin * h)
            bw = min(w - x, rel.width * w)
            bh = min(h - y, rel.height * h)
            if bw <= 0 or bh <= 0:
                continue
            output.append(FaceDetection(box=BoundingBox(x, y, bw, bh), confidence=_clamp(score)))
        return output


class HaarFaceDetector:
    """OpenCV's bundled frontal-face cascade.

    The cascade has no calibrated score, so the level weight of each hit is
    squashed into [0, 1] with a logistic curve.
    """

    name = "haar"

    def __init__(self, min_face_size: int = 60, scale_factor: float = 1.1, min_neighbors: int = 6):
        self.min_face_size = min_face_size
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.cascade = None

    def load(self) -> None:
        classifier = getattr(cv2, "CascadeClassifier", None)
        data = getattr(cv2, "data", None)
        if classifier is None or data is None:
            raise DetectorError("This OpenCV build has no Haar cascade support.")
        cascade = classifier(data.haarcascades + "haarcascade_frontalface_default.xml")
        if cascade.empty():
            raise DetectorError("Failed to initialize OpenCV Haar face detector.")
        self.cascade = cascade

    def detect(self, frame: np.ndarray) -> List[FaceDetection]:
        if self.cascade is None:
            raise ModelsNotLoadedError("Face detection model not loaded.")
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        try:
            rects, _, weights = self.cascade.detectMultiScale3(
                gray,
                scaleFactor=self.scale_factor,
                minNeighbors=self.min_neighbors,
                minSize=(self.min_face_size, self.min_face_size),
                outputRejectLevels=True,
            )
        except cv2.error as exc:
            raise DetectorError(f"Face detection failed: {exc}") from exc

        output: List[FaceDetection] = []
        for (x, y, bw, bh), weight in zip(rects, np.ravel(weights) if len(rects) else []):
            confidence = 1.0 / (1.0 + math.exp(-float(weight)))
            output.append(
                FaceDetection(
                    box=BoundingBox(float(x), float(y), float(bw), float(bh)),
                    confidence=_clamp(confidence),
                )
            )
        return output


class FallbackFaceDetector:
    """Tries each backend in order and keeps the first one that loads."""

    def __init__(self, candidates: List[FaceDetector]):
        if not candidates:
            raise ValueError("At least one face detector backend is required.")
        self.candidates = list(candidates)
        self.active: FaceDetector | None = None

    @property
    def name(self) -> str:
        if self.active is not None:
            return self.active.name
        return "|".join(candidate.name for candidate in self.candidates)

    def load(self) -> None:
        errors: List[str] = []
        for candidate in self.candidates:
            try:
                candidate.load()
            except Exception as exc:
                errors.append(f"{candidate.name}: {exc}")
                continue
            self.active = candidate
            return
        raise DetectorError("No face detector backend could be loaded (" + "; ".join(errors) + ").")

    def detect(self, frame: np.ndarray) -> List[FaceDetection]:
        if self.active is None:
            raise ModelsNotLoadedError("Face detection model not loaded.")
        return self.active.detect(frame)


def build_face_detector(backend: str = "auto", min_detection_confidence: float = 0.5) -> FaceDetector:
    if backend == "mediapipe":
        return MediaPipeFaceDetector(min_detection_confidence=min_detection_confidence)
    if backend == "haar":
        return HaarFaceDetector()
    return FallbackFaceDetector(
        [MediaPipeFaceDetector(min_detection_confidence=min_detection_confidence), HaarFaceDetector()]
    )


class FacePresenceDetector:
    """Loads a face detector once, in the background, and guards calls made before it is ready."""

    def __init__(self, backend: FaceDetector):
        self.backend = backend
        self.load_error: str | None = None
        self._loaded = threading.Event()
        self._loader: threading.Thread | None = None
        self._lock = threading.Lock()
        self.logger = setup_logger(self.__class__.__name__)

    @property
    def models_loaded(self) -> bool:
        return self._loaded.is_set()

    @property
    def loading(self) -> bool:
        loader = self._loader
        return loader is not None and loader.is_alive()

    def load_async(self) -> threading.Thread:
        with self._lock:
            if self._loader is not None:
                return self._loader
            self._loader = threading.Thread(target=self._load, name="face-model-loader", daemon=True)
            self._loader.start()
            return self._loader

    def wait_until_loaded(self, timeout: float | None = None) -> bool:
        return self._loaded.wait(timeout)

    def _load(self) -> None:
        try:
            self.backend.load()
        except Exception as exc:
            self.load_error = str(exc)
            self.logger.error("Failed to load face detection model (%s): %s", self.backend.name, exc)
            return
        self._loaded.set()
        self.logger.info("Face detection model ready (%s)", self.backend.name)

    def detect(self, frame: np.ndarray) -> List[FaceDetection]:
        if not self._loaded.is_set():
            raise ModelsNotLoadedError("Face detection models not loaded.")
        return self.backend.detect(frame)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))
