from __future__ import annotations

from .api_client import StudentRegistryClient
from .camera import CameraAcquirer
from .capture_flow import CaptureWidget
from .config import Settings, get_settings
from .detector import FacePresenceDetector, build_face_detector
from .dispatcher import Submitter, UploadDispatcher
from .types import CameraConstraints, FaceGatePolicy


def build_client(settings: Settings | None = None) -> StudentRegistryClient:
    return StudentRegistryClient(settings=settings or get_settings())


def build_capture_widget(
    submitter: Submitter,
    settings: Settings | None = None,
    camera_index: int | None = None,
    policy: FaceGatePolicy | None = None,
) -> CaptureWidget:
    settings = settings or get_settings()
    constraints = CameraConstraints(
        camera_index=settings.camera_index if camera_index is None else camera_index,
        facing_mode=settings.facing_mode,
        width=settings.frame_width,
        height=settings.frame_height,
        fps=settings.frame_fps,
    )
    detector = FacePresenceDetector(
        build_face_detector(settings.detector_backend, settings.min_detection_confidence)
    )
    return CaptureWidget(
        submitter=submitter,
        detector=detector,
        acquirer=CameraAcquirer(),
        constraints=constraints,
        policy=policy or FaceGatePolicy(settings.face_gate_policy),
        jpeg_quality=settings.jpeg_quality,
        detection_interval=settings.detection_interval_seconds,
    )


def build_dispatcher(settings: Settings | None = None) -> UploadDispatcher:
    return UploadDispatcher(build_client(settings))
