import pytest
import requests

from conftest import FakeResponse, FakeSession
from student_kiosk.exceptions import ApiError, AuthenticationRequired
from student_kiosk.schemas import StudentRegistration

STUDENT = {"id": "stu-9", "first_name": "Ama", "last_name": "Mensah", "email": "ama@uni.edu"}


def _registration() -> StudentRegistration:
    return StudentRegistration(
        first_name="Ama",
        last_name="Mensah",
        email="ama@uni.edu",
        college_id="col-1",
        department_id="dep-2",
        phone=None,
    )


def test_bearer_token_is_attached(make_client):
    session = FakeSession([FakeResponse(200, {"status": "ok"})])
    client = make_client(session, access_token="abc")
    assert client.health().status == "ok"
    call = session.calls[0]
    assert call["headers"] == {"Authorization": "Bearer abc"}
    assert call["url"] == "http://registry.test/"
    assert call["timeout"] == 3.0


def test_anonymous_call_has_no_auth_header(make_client):
    session = FakeSession([FakeResponse(200, {"status": "ok"})])
    make_client(session).health()
    assert session.calls[0]["headers"] == {}


def test_401_refreshes_once_and_retries(make_client):
    session = FakeSession(
        responses=[FakeResponse(401, {"error": "expired"}), FakeResponse(200, STUDENT)],
        refresh_responses=[FakeResponse(200, {"access_token": "fresh"})],
    )
    client = make_client(session, access_token="stale", refresh_token="r-1")

    profile = client.get_student("stu-9")
    assert profile.full_name == "Ama Mensah"
    assert session.refresh_calls[0]["json"] == {"refresh_token": "r-1"}
    assert session.calls[1]["headers"] == {"Authorization": "Bearer fresh"}
    assert client.tokens.access_token == "fresh"
    assert client.tokens.refresh_token == "r-1"


def test_failed_refresh_clears_tokens(make_client):
    session = FakeSession(
        responses=[FakeResponse(401, {"error": "expired"})],
        refresh_responses=[FakeResponse(401, {"error": "invalid refresh token"})],
    )
    client = make_client(session, access_token="stale", refresh_token="r-1")

    with pytest.raises(AuthenticationRequired) as exc_info:
        client.get_student("stu-9")
    assert exc_info.value.status_code == 401
    assert not client.tokens.authenticated
    assert len(session.calls) == 1


def test_second_401_after_refresh_is_an_error(make_client):
    session = FakeSession(
        responses=[FakeResponse(401, {"error": "expired"}), FakeResponse(401, {"error": "still expired"})],
        refresh_responses=[FakeResponse(200, {"access_token": "fresh"})],
    )
    client = make_client(session, access_token="stale", refresh_token="r-1")
    with pytest.raises(ApiError, match="still expired"):
        client.get_student("stu-9")
    assert len(session.refresh_calls) == 1


def test_401_without_token_is_plain_error(make_client):
    session = FakeSession([FakeResponse(401, {"error": "Invalid credentials"})])
    with pytest.raises(ApiError, match="Invalid credentials") as exc_info:
        make_client(session).login("admin@uni.edu", "wrong")
    assert not isinstance(exc_info.value, AuthenticationRequired)
    assert session.refresh_calls == []


def test_error_without_body_uses_status(make_client):
    session = FakeSession([FakeResponse(503, None, reason="Service Unavailable")])
    with pytest.raises(ApiError, match="HTTP 503: Service Unavailable") as exc_info:
        make_client(session).health()
    assert exc_info.value.status_code == 503


def test_network_failure_is_api_error(make_client):
    session = FakeSession([requests.Timeout("read timed out")])
    with pytest.raises(ApiError, match="Network error"):
        make_client(session).recognize(b"\xff\xd8jpeg")


def test_no_content_returns_empty_dict(make_client):
    session = FakeSession([FakeResponse(204, None)])
    client = make_client(session, access_token="abc")
    assert client.upload_student_photo("stu-9", b"\xff\xd8") == {}


def test_recognize_posts_multipart_file(make_client):
    session = FakeSession([FakeResponse(200, {"matched": False})])
    result = make_client(session).recognize(b"\xff\xd8jpeg", filename="capture.jpg")
    assert result.matched is False
    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "http://registry.test/students/recognize"
    assert call["files"] == {"file": ("capture.jpg", b"\xff\xd8jpeg", "image/jpeg")}


def test_register_with_photo_sends_form_fields(make_client):
    session = FakeSession([FakeResponse(201, STUDENT)])
    profile = make_client(session, access_token="abc").register_student(_registration(), photo=b"\xff\xd8")
    assert profile.id == "stu-9"
    call = session.calls[0]
    assert call["url"] == "http://registry.test/students/"
    assert call["json"] is None
    assert call["data"]["college_id"] == "col-1"
    assert "phone" not in call["data"]
    assert call["files"]["photo"][1] == b"\xff\xd8"


def test_register_without_photo_sends_json(make_client):
    session = FakeSession([FakeResponse(201, STUDENT)])
    make_client(session, access_token="abc").register_student(_registration())
    call = session.calls[0]
    assert call["files"] is None
    assert call["json"]["department_id"] == "dep-2"


def test_login_stores_tokens_and_logout_clears(make_client):
    session = FakeSession(
        [
            FakeResponse(200, {"access_token": "a-1", "refresh_token": "r-1", "user": {"id": "u"}}),
            FakeResponse(200, {"message": "bye"}),
        ]
    )
    client = make_client(session)
    client.login("admin@uni.edu", "secret")
    assert client.tokens.access_token == "a-1"

    client.logout()
    assert not client.tokens.authenticated
    assert session.calls[1]["url"] == "http://registry.test/auth/logout"


def test_logout_clears_tokens_even_when_server_fails(make_client):
    session = FakeSession([requests.ConnectionError("offline")])
    client = make_client(session, access_token="a-1", refresh_token="r-1")
    with pytest.raises(ApiError):
        client.logout()
    assert not client.tokens.authenticated


def test_recognition_events_passes_only_given_filters(make_client):
    body = {
        "items": [
            {
                "id": "ev-1",
                "student_id": "stu-9",
                "confidence": 0.81,
                "timestamp": "2024-03-01T09:30:00",
                "student": STUDENT,
            }
        ],
        "total": 1,
        "page": 2,
        "limit": 10,
        "total_pages": 1,
    }
    session = FakeSession([FakeResponse(200, body)])
    page = make_client(session, access_token="abc").recognition_events(page=2, limit=10)
    assert session.calls[0]["params"] == {"page": 2, "limit": 10}
    assert page.items[0].student.full_name == "Ama Mensah"
    assert page.total == 1


def test_otp_login_flow(make_client):
    session = FakeSession(
        [
            FakeResponse(200, {"message": "OTP sent"}),
            FakeResponse(200, {"access_token": "otp-a", "refresh_token": "otp-r"}),
        ]
    )
    client = make_client(session)
    assert client.request_login_otp("admin@uni.edu") == {"message": "OTP sent"}
    client.verify_login_otp("admin@uni.edu", "123456")
    assert session.calls[1]["json"] == {"email": "admin@uni.edu", "otp": "123456"}
    assert client.tokens.refresh_token == "otp-r"
