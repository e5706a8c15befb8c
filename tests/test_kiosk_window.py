import numpy as np

from conftest import FakeCaptureFactory, FakeDetector, face, wait_for
from student_kiosk.kiosk_window import HELP_LINE, KioskWindow, format_outcome
from student_kiosk.schemas import RecognitionResult, SubjectProfile
from student_kiosk.types import CaptureState, OutcomeStatus, SubmissionOutcome


def test_format_outcome_messages():
    profile = SubjectProfile(id="1", first_name="Akua", last_name="Darko")
    assert format_outcome(None) == ""
    assert (
        format_outcome(SubmissionOutcome(status=OutcomeStatus.FAILED, error="Network error: down"))
        == "Request failed: Network error: down. Please try again."
    )
    assert format_outcome(SubmissionOutcome(status=OutcomeStatus.NO_MATCH)) == "Student not found"
    assert (
        format_outcome(
            SubmissionOutcome(
                status=OutcomeStatus.SUCCESS,
                result=RecognitionResult(matched=True, confidence=0.5, student=profile),
            )
        )
        == "Student identified: Akua Darko (50%)"
    )
    assert (
        format_outcome(SubmissionOutcome(status=OutcomeStatus.SUCCESS, result=profile))
        == "Registration successful: Akua Darko"
    )
    assert format_outcome(SubmissionOutcome(status=OutcomeStatus.SUCCESS, result={})) == "Photo uploaded"


def test_render_no_camera_screen(make_widget):
    widget = make_widget(factory=FakeCaptureFactory(opened=False))
    widget.start_camera()
    window = KioskWindow(widget)
    image = window.render()
    assert widget.state is CaptureState.NO_CAMERA
    assert image.shape == (480, 640, 3)


def test_render_live_frame_with_overlay(make_widget):
    widget = make_widget(detector=FakeDetector([face(0.9, x=200, y=150, size=120)]))
    widget.mount()
    assert widget.detector.wait_until_loaded(timeout=2)
    widget.start_camera()
    assert wait_for(lambda: widget.face_detected)

    window = KioskWindow(widget)
    assert window._detection_badge() == "1 Face Detected"
    image = window.render()
    assert image.shape == (480, 640, 3)
    assert not np.array_equal(image[200:280, 195:205], np.full((80, 10, 3), 127, dtype=np.uint8))


def test_keys_drive_the_widget(make_widget, submitter):
    widget = make_widget()
    widget.mount()
    widget.start_camera()
    assert wait_for(lambda: widget.live_frame() is not None)
    window = KioskWindow(widget)

    window.handle_key(ord(" "))
    assert widget.state is CaptureState.PREVIEWING
    window.handle_key(ord("r"))
    assert widget.state is CaptureState.LIVE

    window.handle_key(ord(" "))
    window.handle_key(13)
    assert window.status_message == "Processing..."
    assert wait_for(lambda: widget.last_outcome is not None)
    assert len(submitter.frames) == 1


def test_upload_key_without_file(make_widget):
    widget = make_widget()
    window = KioskWindow(widget)
    window.handle_key(ord("u"))
    assert window.status_message == "No upload file given (--image)."
    assert HELP_LINE.startswith("SPACE")


def test_badge_shows_model_load_failure(make_widget):
    widget = make_widget(detector=FakeDetector(fail_load=True))
    widget.mount()
    assert wait_for(lambda: widget.detector.load_error is not None)
    window = KioskWindow(widget)
    assert window._detection_badge() == "Face detection unavailable: model files missing"


def test_footer_prefers_new_messages_over_old_result(make_widget):
    widget = make_widget(start_reader=False)
    widget.start_camera()
    window = KioskWindow(widget)
    widget.last_outcome = SubmissionOutcome(status=OutcomeStatus.NO_MATCH)
    assert window.footer()[0] == "Student not found"

    window.handle_key(ord(" "))
    assert window.footer()[0] == "Hold on, the camera is not ready or no face is visible."


def test_outcome_replaces_processing_message(make_widget, submitter):
    widget = make_widget()
    widget.mount()
    widget.start_camera()
    assert wait_for(lambda: widget.live_frame() is not None)
    window = KioskWindow(widget)

    window.handle_key(ord(" "))
    window.handle_key(13)
    assert wait_for(lambda: window.status_message == "")
    assert not widget.submitting
    assert window.footer()[0] == "Photo uploaded"
