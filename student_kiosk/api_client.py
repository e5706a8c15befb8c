from __future__ import annotations

import threading
from typing import Any

import requests

from .config import Settings, get_settings
from .exceptions import ApiError, AuthenticationRequired
from .logger import setup_logger
from .schemas import (
    HealthCheck,
    RecognitionEventPage,
    RecognitionResult,
    StudentRegistration,
    SubjectProfile,
    TokenPair,
)
from .token_store import TokenStore

JPEG_MIME = "image/jpeg"


class StudentRegistryClient:
    """HTTP transport to the student registry backend.

    Attaches the bearer token when one is stored. A 401 on an authenticated
    call triggers a single refresh and one retry; when the refresh fails the
    stored tokens are dropped and ``AuthenticationRequired`` is raised.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        session: requests.Session | None = None,
        tokens: TokenStore | None = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = self.settings.api_base_url
        self.timeout = self.settings.request_timeout_seconds
        self.session = session or requests.Session()
        self.tokens = tokens if tokens is not None else TokenStore(self.settings.token_path)
        self._refresh_lock = threading.Lock()
        self.logger = setup_logger(self.__class__.__name__)

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        data: dict[str, str] | None = None,
        files: dict[str, tuple[str, bytes, str]] | None = None,
        params: dict[str, Any] | None = None,
        retry_auth: bool = True,
    ) -> Any:
        token = self.tokens.access_token
        headers = {"Authorization": f"Bearer {token}"} if token else {}

        try:
            resp = self.session.request(
                method,
                self._url(path),
                json=json,
                data=data,
                files=files,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            self.logger.warning("%s %s failed: %s", method, path, exc)
            raise ApiError(f"Network error: {exc}") from exc

        if resp.status_code == 401 and token and retry_auth:
            if self._refresh_access_token():
                return self.request(
                    method,
                    path,
                    json=json,
                    data=data,
                    files=files,
                    params=params,
                    retry_auth=False,
                )
            self.tokens.clear()
            raise AuthenticationRequired("Authentication failed; please log in again.", status_code=401)

        return self._handle_response(resp)

    @staticmethod
    def _handle_response(resp: requests.Response) -> Any:
        if not resp.ok:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            message = body.get("error") if isinstance(body, dict) else None
            raise ApiError(message or f"HTTP {resp.status_code}: {resp.reason}", status_code=resp.status_code)

        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise ApiError(f"Invalid JSON from server: {exc}", status_code=resp.status_code) from exc

    def _refresh_access_token(self) -> bool:
        with self._refresh_lock:
            refresh_token = self.tokens.refresh_token
            if not refresh_token:
                return False
            try:
                resp = self.session.post(
                    self._url("/auth/refresh"),
                    json={"refresh_token": refresh_token},
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                self.logger.warning("Token refresh failed: %s", exc)
                return False
            if not resp.ok:
                self.logger.info("Token refresh rejected (HTTP %d)", resp.status_code)
                return False
            try:
                access_token = str(resp.json()["access_token"])
            except (ValueError, KeyError, TypeError):
                return False
            self.tokens.update_access_token(access_token)
            return True

    # Auth
    def login(self, email: str, password: str) -> TokenPair:
        body = self.request("POST", "/auth/login", json={"email": email, "password": password})
        tokens = TokenPair.model_validate(body)
        self.tokens.save(tokens)
        self.logger.info("Logged in as %s", email)
        return tokens

    def request_login_otp(self, email: str) -> dict[str, Any]:
        return self.request("POST", "/auth/login-otp", json={"email": email})

    def verify_login_otp(self, email: str, otp: str) -> TokenPair:
        body = self.request("POST", "/auth/verify-login-otp", json={"email": email, "otp": otp})
        tokens = TokenPair.model_validate(body)
        self.tokens.save(tokens)
        return tokens

    def logout(self) -> None:
        try:
            if self.tokens.authenticated:
                self.request("POST", "/auth/logout", json={}, retry_auth=False)
        finally:
            self.tokens.clear()

    def health(self) -> HealthCheck:
        return HealthCheck.model_validate(self.request("GET", "/"))

    # Students
    def register_student(
        self,
        registration: StudentRegistration,
        photo: bytes | None = None,
        filename: str = "photo.jpg",
    ) -> SubjectProfile:
        if photo is None:
            body = self.request("POST", "/students/", json=registration.model_dump(exclude_none=True))
        else:
            body = self.request(
                "POST",
                "/students/",
                data=registration.form_fields(),
                files={"photo": (filename, photo, JPEG_MIME)},
            )
        return SubjectProfile.model_validate(body)

    def upload_student_photo(self, student_id: str, photo: bytes, filename: str = "photo.jpg") -> dict[str, Any]:
        return self.request(
            "POST",
            f"/students/{student_id}/photo",
            files={"file": (filename, photo, JPEG_MIME)},
        )

    def get_student(self, student_id: str) -> SubjectProfile:
        return SubjectProfile.model_validate(self.request("GET", f"/students/{student_id}"))

    def recognize(self, image: bytes, filename: str = "capture.jpg") -> RecognitionResult:
        body = self.request(
            "POST",
            "/students/recognize",
            files={"file": (filename, image, JPEG_MIME)},
        )
        return RecognitionResult.model_validate(body)

    def recognition_events(
        self,
        page: int | None = None,
        limit: int | None = None,
        student_id: str | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> RecognitionEventPage:
        params = {
            "page": page,
            "limit": limit,
            "student_id": student_id,
            "date_from": date_from,
            "date_to": date_to,
        }
        params = {key: value for key, value in params.items() if value is not None}
        body = self.request("GET", "/students/recognition-events", params=params or None)
        return RecognitionEventPage.model_validate(body)
