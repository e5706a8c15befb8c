class KioskError(Exception):
    """Base exception for the student kiosk."""


class CameraError(KioskError):
    """Raised when webcam access fails."""


class CameraPermissionDenied(CameraError):
    """Raised when the webcam opens but access to its frames is blocked."""


class CameraUnavailable(CameraError):
    """Raised when no capture backend can open the requested webcam."""


class DetectorError(KioskError):
    """Raised when face detection initialization or inference fails."""


class ModelsNotLoadedError(DetectorError):
    """Raised when detection is requested before the model finished loading."""


class CaptureStateError(KioskError):
    """Raised when a capture transition is requested from the wrong state."""


class CaptureNotReady(CaptureStateError):
    """Raised when a frame is requested before the camera delivered one."""


class ValidationError(KioskError):
    """Raised when registration data or an uploaded file is rejected locally."""


class ApiError(KioskError):
    """Raised when the registry backend answers with an error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationRequired(ApiError):
    """Raised when the session expired and the token refresh failed."""


class UploadFailed(KioskError):
    """Raised when an enroll or identify upload cannot be completed."""
