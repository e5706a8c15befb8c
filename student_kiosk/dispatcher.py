from __future__ import annotations

from typing import Callable

from pydantic import ValidationError as SchemaError

from .api_client import StudentRegistryClient
from .exceptions import KioskError, UploadFailed
from .logger import setup_logger
from .schemas import StudentRegistration
from .types import CapturedFrame, OutcomeStatus, SubmissionOutcome

Submitter = Callable[[CapturedFrame], SubmissionOutcome]


class UploadDispatcher:
    """Sends a confirmed frame to the registry and turns every answer into an outcome.

    Calls are single shot; nothing is retried here beyond the transport's
    one-time token refresh.
    """

    def __init__(self, client: StudentRegistryClient):
        self.client = client
        self.logger = setup_logger(self.__class__.__name__)

    @staticmethod
    def _payload(frame: CapturedFrame) -> bytes:
        if not frame.jpeg:
            raise UploadFailed("Captured frame has not been encoded.")
        return frame.jpeg

    def identify(self, frame: CapturedFrame) -> SubmissionOutcome:
        try:
            result = self.client.recognize(self._payload(frame), filename=frame.filename)
        except (KioskError, SchemaError) as exc:
            self.logger.warning("Identify upload failed: %s", exc)
            return SubmissionOutcome(status=OutcomeStatus.FAILED, error=_message(exc))

        if not result.matched:
            self.logger.info("Identify: no match (face_at_capture=%s)", frame.face_detected_at_capture)
            return SubmissionOutcome(status=OutcomeStatus.NO_MATCH, result=result)

        self.logger.info(
            "Identify: matched %s confidence=%s",
            result.student_id or (result.student.id if result.student else "?"),
            result.confidence,
        )
        return SubmissionOutcome(status=OutcomeStatus.SUCCESS, result=result)

    def enroll(self, frame: CapturedFrame, subject: StudentRegistration | str) -> SubmissionOutcome:
        """Attach ``frame`` to a new student (registration data) or an existing one (id)."""
        try:
            photo = self._payload(frame)
            if isinstance(subject, StudentRegistration):
                profile = self.client.register_student(subject, photo=photo, filename=frame.filename)
                self.logger.info("Enrolled new student %s (%s)", profile.id, profile.full_name)
                return SubmissionOutcome(status=OutcomeStatus.SUCCESS, result=profile)

            body = self.client.upload_student_photo(subject, photo, filename=frame.filename)
        except (KioskError, SchemaError) as exc:
            self.logger.warning("Enroll upload failed: %s", exc)
            return SubmissionOutcome(status=OutcomeStatus.FAILED, error=_message(exc))

        self.logger.info("Attached photo to student %s", subject)
        return SubmissionOutcome(status=OutcomeStatus.SUCCESS, result=body)

    def enroll_submitter(self, subject: StudentRegistration | str) -> Submitter:
        def submit(frame: CapturedFrame) -> SubmissionOutcome:
            return self.enroll(frame, subject)

        return submit


def _message(exc: Exception) -> str:
    if isinstance(exc, SchemaError):
        return "Unexpected response from the registry server."
    return str(exc) or exc.__class__.__name__
