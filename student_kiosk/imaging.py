from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np

from .exceptions import ValidationError
from .types import CapturedFrame

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".bmp", ".webp"}


def encode_jpeg(image: np.ndarray, quality: int = 80) -> bytes:
    ok, buffer = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise ValidationError("Failed to encode frame as JPEG.")
    return buffer.tobytes()


def decode_image(raw: bytes) -> np.ndarray:
    image = cv2.imdecode(np.frombuffer(raw, np.uint8), cv2.IMREAD_COLOR)
    if image is None:
        raise ValidationError("File is not a readable image.")
    return image


def frame_from_file(path: Path | str, quality: int = 80) -> CapturedFrame:
    """Turn a user-chosen image file into an already-confirmed frame.

    Local detection never runs on files, so the face flag is always False.
    The image is re-encoded to JPEG because the backend only accepts JPEG.
    """
    path = Path(path)
    if path.suffix.lower() not in IMAGE_SUFFIXES:
        raise ValidationError(f"{path.name} is not an image file.")
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise ValidationError(f"Cannot read {path}: {exc}") from exc
    return frame_from_bytes(raw, filename=path.with_suffix(".jpg").name, quality=quality)


def frame_from_bytes(raw: bytes, filename: str = "upload.jpg", quality: int = 80) -> CapturedFrame:
    image = decode_image(raw)
    return CapturedFrame(
        image=image,
        face_detected_at_capture=False,
        source="file",
        jpeg=encode_jpeg(image, quality),
        filename=filename,
    )
