from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent

DETECTOR_BACKENDS = {"auto", "mediapipe", "haar"}
FACE_GATE_POLICIES = {"off", "warn", "require_on_capture"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="KIOSK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "Student Kiosk"
    log_level: str = "INFO"
    log_dir: Path = BASE_DIR / "logs"
    state_dir: Path = BASE_DIR / "state"

    # Registry backend
    api_base_url: str = "http://localhost:8000"
    request_timeout_seconds: float = 15.0

    # Webcam settings
    camera_index: int = 0
    frame_width: int = 640
    frame_height: int = 480
    frame_fps: int = 30
    facing_mode: str = "user"

    # Local face presence detection
    detector_backend: str = "auto"
    detection_interval_ms: int = Field(default=100, ge=10)
    min_detection_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    face_gate_policy: str = "warn"

    jpeg_quality: int = Field(default=80, ge=1, le=100)

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("detector_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in DETECTOR_BACKENDS:
            raise ValueError(f"detector_backend must be one of {sorted(DETECTOR_BACKENDS)}")
        return value

    @field_validator("face_gate_policy")
    @classmethod
    def _check_policy(cls, value: str) -> str:
        value = value.strip().lower().replace("-", "_")
        if value not in FACE_GATE_POLICIES:
            raise ValueError(f"face_gate_policy must be one of {sorted(FACE_GATE_POLICIES)}")
        return value

    @property
    def token_path(self) -> Path:
        return self.state_dir / "tokens.json"

    @property
    def detection_interval_seconds(self) -> float:
        return self.detection_interval_ms / 1000.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
