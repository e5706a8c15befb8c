import os
import tempfile
import threading
import time
from typing import Any, Callable

import numpy as np
import pytest

_TMP_ROOT = tempfile.mkdtemp(prefix="student-kiosk-tests-")
os.environ.setdefault("KIOSK_LOG_DIR", os.path.join(_TMP_ROOT, "logs"))
os.environ.setdefault("KIOSK_STATE_DIR", os.path.join(_TMP_ROOT, "state"))
os.environ["KIOSK_CAMERA_BACKEND_ORDER"] = "auto"

from student_kiosk.api_client import StudentRegistryClient  # noqa: E402
from student_kiosk.camera import CameraAcquirer  # noqa: E402
from student_kiosk.capture_flow import CaptureWidget  # noqa: E402
from student_kiosk.config import Settings  # noqa: E402
from student_kiosk.detector import FacePresenceDetector  # noqa: E402
from student_kiosk.schemas import TokenPair  # noqa: E402
from student_kiosk.token_store import TokenStore  # noqa: E402
from student_kiosk.types import (  # noqa: E402
    BoundingBox,
    CameraConstraints,
    FaceDetection,
    FaceGatePolicy,
    OutcomeStatus,
    SubmissionOutcome,
)


def wait_for(condition: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(interval)
    return condition()


class FakeCapture:
    def __init__(self, opened: bool = True, deliver: bool = True, width: int = 640, height: int = 480):
        self.opened = opened
        self.deliver = deliver
        self.width = width
        self.height = height
        self.release_count = 0
        self.props: dict[int, float] = {}

    def isOpened(self) -> bool:
        return self.opened and self.release_count == 0

    def read(self):
        time.sleep(0.002)
        if self.release_count or not self.deliver:
            return False, None
        return True, np.full((self.height, self.width, 3), 127, dtype=np.uint8)

    def set(self, prop: int, value: float) -> bool:
        self.props[prop] = value
        return True

    def release(self) -> None:
        self.release_count += 1


class FakeCaptureFactory:
    def __init__(self, opened: bool = True, deliver: bool = True):
        self.opened = opened
        self.deliver = deliver
        self.created: list[FakeCapture] = []

    def __call__(self, index: int, backend: int | None = None) -> FakeCapture:
        cap = FakeCapture(opened=self.opened, deliver=self.deliver)
        self.created.append(cap)
        return cap


class FakeDetector:
    name = "fake"

    def __init__(self, detections=None, delay: float = 0.0, fail_load: bool = False):
        self.detections = list(detections or [])
        self.delay = delay
        self.fail_load = fail_load
        self.gate: threading.Event | None = None
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def load(self) -> None:
        if self.fail_load:
            raise RuntimeError("model files missing")

    def detect(self, frame):
        with self._lock:
            self.calls += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            if self.delay:
                time.sleep(self.delay)
            return list(self.detections)
        finally:
            with self._lock:
                self.in_flight -= 1


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, reason: str = "OK"):
        self.status_code = status_code
        self._body = body
        self.reason = reason
        self.content = b"" if body is None else b"{}"

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body


class FakeSession:
    """Stands in for requests.Session; answers are queued per call."""

    def __init__(self, responses=None, refresh_responses=None):
        self.responses = list(responses or [])
        self.refresh_responses = list(refresh_responses or [])
        self.calls: list[dict[str, Any]] = []
        self.refresh_calls: list[dict[str, Any]] = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url, **kwargs):
        self.refresh_calls.append({"url": url, **kwargs})
        item = self.refresh_responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def face(confidence: float = 0.9, x: float = 100, y: float = 100, size: float = 100) -> FaceDetection:
    return FaceDetection(box=BoundingBox(x, y, size, size), confidence=confidence)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        api_base_url="http://registry.test/",
        log_dir=tmp_path / "logs",
        state_dir=tmp_path / "state",
        request_timeout_seconds=3.0,
    )


@pytest.fixture
def make_client(settings):
    def _make(session: FakeSession, access_token: str | None = None, refresh_token: str | None = None):
        tokens = TokenStore(None)
        if access_token:
            tokens.save(TokenPair(access_token=access_token, refresh_token=refresh_token))
        return StudentRegistryClient(settings=settings, session=session, tokens=tokens)

    return _make


@pytest.fixture
def capture_factory() -> FakeCaptureFactory:
    return FakeCaptureFactory()


@pytest.fixture
def fake_detector() -> FakeDetector:
    return FakeDetector()


class RecordingSubmitter:
    def __init__(self, outcome: SubmissionOutcome | None = None):
        self.outcome = outcome or SubmissionOutcome(status=OutcomeStatus.SUCCESS, result={"message": "ok"})
        self.frames = []
        self.gate: threading.Event | None = None

    def __call__(self, frame):
        self.frames.append(frame)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        return self.outcome


@pytest.fixture
def submitter() -> RecordingSubmitter:
    return RecordingSubmitter()


@pytest.fixture
def make_widget(capture_factory, fake_detector, submitter):
    widgets: list[CaptureWidget] = []

    def _make(
        submit=None,
        detector: FakeDetector | None = None,
        factory: FakeCaptureFactory | None = None,
        policy: FaceGatePolicy = FaceGatePolicy.WARN,
        start_reader: bool = True,
    ) -> CaptureWidget:
        presence = FacePresenceDetector(detector or fake_detector)
        widget = CaptureWidget(
            submitter=submit or submitter,
            detector=presence,
            acquirer=CameraAcquirer(capture_factory=factory or capture_factory, start_reader=start_reader),
            constraints=CameraConstraints(camera_index=0),
            policy=policy,
            detection_interval=0.01,
        )
        widgets.append(widget)
        return widget

    yield _make
    for widget in widgets:
        widget.close()
