import argparse
import getpass
import sys
from pathlib import Path

from pydantic import ValidationError as SchemaError

from student_kiosk.config import FACE_GATE_POLICIES, get_settings
from student_kiosk.dispatcher import UploadDispatcher
from student_kiosk.exceptions import KioskError
from student_kiosk.imaging import frame_from_file
from student_kiosk.kiosk import build_capture_widget, build_client
from student_kiosk.kiosk_window import KioskWindow, format_outcome
from student_kiosk.logger import setup_logger
from student_kiosk.schemas import StudentRegistration
from student_kiosk.types import FaceGatePolicy


def _add_capture_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--camera", type=int, default=None, help="Webcam index override")
    parser.add_argument("--image", type=Path, default=None, help="Image file for the upload path (key U)")
    parser.add_argument(
        "--no-window",
        action="store_true",
        help="Submit --image directly without opening the camera window",
    )
    parser.add_argument(
        "--face-policy",
        choices=sorted(FACE_GATE_POLICIES),
        default=None,
        help="How a missing face affects capture: off, warn, require_on_capture",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Student registry kiosk: face capture, enrollment and identification")
    subparsers = parser.add_subparsers(dest="command", required=True)

    recognize = subparsers.add_parser("recognize", help="Identify a student from a captured face")
    _add_capture_arguments(recognize)

    register = subparsers.add_parser("register", help="Register a new student with a photo")
    register.add_argument("--first-name", required=True)
    register.add_argument("--last-name", required=True)
    register.add_argument("--email", required=True)
    register.add_argument("--college-id", required=True)
    register.add_argument("--department-id", required=True)
    register.add_argument("--student-id", default=None, help="University index number")
    register.add_argument("--phone", default=None)
    register.add_argument("--date-of-birth", default=None)
    register.add_argument("--address", default=None)
    _add_capture_arguments(register)

    attach = subparsers.add_parser("attach-photo", help="Attach a new photo to an existing student record")
    attach.add_argument("--id", required=True, dest="record_id", help="Student record ID")
    _add_capture_arguments(attach)

    login = subparsers.add_parser("login", help="Log in as an administrator")
    login.add_argument("--email", required=True)
    login.add_argument("--password", default=None, help="Prompted when omitted")

    subparsers.add_parser("logout", help="Drop stored credentials")
    subparsers.add_parser("health", help="Check the registry backend")

    events = subparsers.add_parser("events", help="List recent recognition events (admin)")
    events.add_argument("--page", type=int, default=1)
    events.add_argument("--limit", type=int, default=20)
    events.add_argument("--student-id", default=None)
    events.add_argument("--date-from", default=None)
    events.add_argument("--date-to", default=None)

    return parser


def _run_capture(args: argparse.Namespace, submitter, title: str, exit_after_outcome: bool) -> int:
    if args.no_window:
        if args.image is None:
            print("Error: --no-window requires --image.")
            return 1
        settings = get_settings()
        outcome = submitter(frame_from_file(args.image, quality=settings.jpeg_quality))
    else:
        policy = FaceGatePolicy(args.face_policy) if args.face_policy else None
        widget = build_capture_widget(submitter, camera_index=args.camera, policy=policy)
        window = KioskWindow(widget, title=title, upload_path=args.image, exit_after_outcome=exit_after_outcome)
        outcome = window.run()

    if outcome is None:
        print("Nothing submitted.")
        return 1
    print(format_outcome(outcome))
    if outcome.warning:
        print(f"Warning: {outcome.warning}")
    return 0 if outcome.ok else 1


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    logger = setup_logger("main")

    try:
        if args.command == "recognize":
            dispatcher = UploadDispatcher(build_client())
            return _run_capture(args, dispatcher.identify, "Facial Recognition - Q to quit", exit_after_outcome=False)

        if args.command == "register":
            registration = StudentRegistration(
                first_name=args.first_name,
                last_name=args.last_name,
                email=args.email,
                college_id=args.college_id,
                department_id=args.department_id,
                student_id=args.student_id,
                phone=args.phone,
                date_of_birth=args.date_of_birth,
                address=args.address,
            )
            dispatcher = UploadDispatcher(build_client())
            return _run_capture(
                args,
                dispatcher.enroll_submitter(registration),
                "Student Registration - Q to cancel",
                exit_after_outcome=True,
            )

        if args.command == "attach-photo":
            dispatcher = UploadDispatcher(build_client())
            return _run_capture(
                args,
                dispatcher.enroll_submitter(args.record_id),
                "Student Photo - Q to cancel",
                exit_after_outcome=True,
            )

        if args.command == "login":
            password = args.password or getpass.getpass("Password: ")
            build_client().login(args.email, password)
            print(f"Logged in as {args.email}.")
            return 0

        if args.command == "logout":
            build_client().logout()
            print("Logged out.")
            return 0

        if args.command == "health":
            health = build_client().health()
            print(f"Backend status: {health.status}")
            return 0

        if args.command == "events":
            page = build_client().recognition_events(
                page=args.page,
                limit=args.limit,
                student_id=args.student_id,
                date_from=args.date_from,
                date_to=args.date_to,
            )
            if not page.items:
                print("No recognition events.")
                return 0
            print(f"{'Timestamp':<26} {'Student':<28} {'Confidence'}")
            print("-" * 66)
            for event in page.items:
                name = event.student.full_name if event.student else (event.student_id or "-")
                print(f"{event.timestamp.isoformat():<26} {name:<28} {event.confidence * 100:.0f}%")
            print(f"Page {page.page}/{page.total_pages} ({page.total} events)")
            return 0

    except SchemaError as exc:
        print(f"Invalid input: {exc}")
        return 1
    except KioskError as exc:
        logger.error("Application error: %s", exc)
        print(f"Error: {exc}")
        return 1
    except KeyboardInterrupt:
        print("\nStopped by user.")
        return 1
    except Exception as exc:
        logger.exception("Unexpected failure")
        print(f"Unexpected error: {exc}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
