from .capture_flow import CaptureWidget
from .dispatcher import UploadDispatcher
from .kiosk import build_capture_widget, build_client, build_dispatcher

__all__ = [
    "CaptureWidget",
    "UploadDispatcher",
    "build_capture_widget",
    "build_client",
    "build_dispatcher",
]
