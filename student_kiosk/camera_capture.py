from __future__ import annotations

import os
import time
from typing import Any, Callable, List, Tuple

import cv2

from .exceptions import CameraPermissionDenied, CameraUnavailable

CaptureFactory = Callable[..., Any]

_BACKEND_ALIASES = {
    "auto": "Auto",
    "any": "Auto",
    "dshow": "DirectShow",
    "directshow": "DirectShow",
    "msmf": "Media Foundation",
    "mediafoundation": "Media Foundation",
    "media foundation": "Media Foundation",
    "v4l2": "V4L2",
    "avfoundation": "AVFoundation",
}


def _preferred_backend_order() -> list[str]:
    raw = os.getenv("KIOSK_CAMERA_BACKEND_ORDER", "").strip()
    if not raw:
        # Windows laptop webcams are generally more stable on DirectShow.
        if os.name == "nt":
            return ["DirectShow", "Media Foundation", "Auto"]
        return ["Auto", "V4L2", "AVFoundation"]
    result: list[str] = []
    for item in raw.split(","):
        name = _BACKEND_ALIASES.get(item.strip().lower())
        if name and name not in result:
            result.append(name)
    return result or ["Auto"]


def capture_backends() -> List[Tuple[str, int | None]]:
    backend_map: dict[str, int | None] = {
        "Auto": getattr(cv2, "CAP_ANY", None),
        "DirectShow": getattr(cv2, "CAP_DSHOW", None),
        "Media Foundation": getattr(cv2, "CAP_MSMF", None),
        "V4L2": getattr(cv2, "CAP_V4L2", None),
        "AVFoundation": getattr(cv2, "CAP_AVFOUNDATION", None),
    }
    candidates: List[Tuple[str, int | None]] = []
    seen: set[int | None] = set()
    for name in _preferred_backend_order() + ["Auto"]:
        backend = backend_map.get(name)
        if backend in seen:
            continue
        seen.add(backend)
        candidates.append((name, backend))
    return candidates


def open_camera_capture(
    camera_index: int,
    capture_factory: CaptureFactory | None = None,
    probe_reads: int = 6,
) -> tuple[Any, str]:
    """Open the first backend that actually delivers frames.

    A device that no backend can open is reported as unavailable. A device
    that opens but never hands out a frame is treated as access being blocked
    by the OS, which is how a refused camera permission surfaces in OpenCV.
    """
    factory = capture_factory or cv2.VideoCapture
    attempted: List[str] = []
    opened_without_frames = False

    for backend_name, backend in capture_backends():
        attempted.append(backend_name)
        if backend is None:
            cap = factory(camera_index)
        else:
            cap = factory(camera_index, backend)

        if cap.isOpened():
            # Some backends can report opened=True but fail to deliver frames.
            for _ in range(max(1, probe_reads)):
                ok, frame = cap.read()
                if ok and frame is not None:
                    return cap, backend_name
                time.sleep(0.03)
            opened_without_frames = True
        cap.release()

    tried = ", ".join(attempted) if attempted else "default backend"
    if opened_without_frames:
        raise CameraPermissionDenied(
            f"Webcam index {camera_index} opened but delivered no frames; camera access may be blocked. "
            f"Tried backends: {tried}."
        )
    raise CameraUnavailable(f"Unable to open webcam index {camera_index}. Tried backends: {tried}.")
