from __future__ import annotations

from typing import Sequence, Tuple

import cv2
import numpy as np

from .types import FaceDetection

Color = Tuple[int, int, int]

# BGR
HIGH_CONFIDENCE_COLOR: Color = (129, 185, 16)
MEDIUM_CONFIDENCE_COLOR: Color = (11, 158, 245)
LOW_CONFIDENCE_COLOR: Color = (68, 68, 239)
LABEL_TEXT_COLOR: Color = (255, 255, 255)

HIGH_CONFIDENCE = 0.7
MEDIUM_CONFIDENCE = 0.4

GUIDANCE_MESSAGE = "Position your face here"

_FONT = cv2.FONT_HERSHEY_SIMPLEX


def confidence_color(confidence: float) -> Color:
    if confidence >= HIGH_CONFIDENCE:
        return HIGH_CONFIDENCE_COLOR
    if confidence >= MEDIUM_CONFIDENCE:
        return MEDIUM_CONFIDENCE_COLOR
    return LOW_CONFIDENCE_COLOR


def new_canvas(width: int, height: int) -> np.ndarray:
    return np.zeros((max(0, height), max(0, width), 3), dtype=np.uint8)


def clear_canvas(canvas: np.ndarray) -> None:
    canvas[:] = 0


def render_overlay(
    canvas: np.ndarray,
    detections: Sequence[FaceDetection],
    label: str = "Face",
    guidance_message: str = GUIDANCE_MESSAGE,
) -> np.ndarray:
    """Redraw the detection overlay from scratch onto ``canvas``."""
    clear_canvas(canvas)
    if canvas.size == 0:
        return canvas

    if not detections:
        draw_face_guidance(canvas, guidance_message)
        return canvas

    for index, detection in enumerate(detections, start=1):
        draw_bounding_box(canvas, detection, f"{label} {index}")
    return canvas


def draw_bounding_box(canvas: np.ndarray, detection: FaceDetection, label: str, line_width: int = 3) -> None:
    color = confidence_color(detection.confidence)
    x1, y1, x2, y2 = detection.box.as_xyxy()
    cv2.rectangle(canvas, (x1, y1), (x2, y2), color, line_width)

    text = f"{label} {detection.confidence * 100:.0f}%"
    (text_w, text_h), baseline = cv2.getTextSize(text, _FONT, 0.5, 1)
    label_h = text_h + baseline + 6
    top = y1 - label_h - 2
    if top < 0:
        top = y1 + line_width
    cv2.rectangle(canvas, (x1, top), (x1 + text_w + 10, top + label_h), color, -1)
    cv2.putText(
        canvas,
        text,
        (x1 + 5, top + label_h - baseline - 3),
        _FONT,
        0.5,
        LABEL_TEXT_COLOR,
        1,
        cv2.LINE_AA,
    )


def guidance_box(width: int, height: int) -> tuple[int, int, int, int]:
    box_w = width * 0.4
    box_h = height * 0.5
    cx = width / 2
    cy = height / 2
    return (
        int(round(cx - box_w / 2)),
        int(round(cy - box_h / 2)),
        int(round(cx + box_w / 2)),
        int(round(cy + box_h / 2)),
    )


def draw_face_guidance(canvas: np.ndarray, message: str = GUIDANCE_MESSAGE) -> None:
    height, width = canvas.shape[:2]
    x1, y1, x2, y2 = guidance_box(width, height)
    _dashed_rectangle(canvas, (x1, y1), (x2, y2), LOW_CONFIDENCE_COLOR, 2)

    (text_w, _), _ = cv2.getTextSize(message, _FONT, 0.6, 1)
    origin = (int(width / 2 - text_w / 2), min(height - 5, y2 + 25))
    cv2.putText(canvas, message, origin, _FONT, 0.6, LOW_CONFIDENCE_COLOR, 1, cv2.LINE_AA)


def _dashed_rectangle(
    canvas: np.ndarray,
    top_left: tuple[int, int],
    bottom_right: tuple[int, int],
    color: Color,
    thickness: int,
    dash: int = 5,
    gap: int = 5,
) -> None:
    x1, y1 = top_left
    x2, y2 = bottom_right
    for start, end in (
        ((x1, y1), (x2, y1)),
        ((x2, y1), (x2, y2)),
        ((x2, y2), (x1, y2)),
        ((x1, y2), (x1, y1)),
    ):
        _dashed_line(canvas, start, end, color, thickness, dash, gap)


def _dashed_line(
    canvas: np.ndarray,
    start: tuple[int, int],
    end: tuple[int, int],
    color: Color,
    thickness: int,
    dash: int,
    gap: int,
) -> None:
    length = float(np.hypot(end[0] - start[0], end[1] - start[1]))
    if length == 0.0:
        return
    dx = (end[0] - start[0]) / length
    dy = (end[1] - start[1]) / length
    position = 0.0
    while position < length:
        stop = min(position + dash, length)
        p1 = (int(round(start[0] + dx * position)), int(round(start[1] + dy * position)))
        p2 = (int(round(start[0] + dx * stop)), int(round(start[1] + dy * stop)))
        cv2.line(canvas, p1, p2, color, thickness)
        position += dash + gap


def composite(frame: np.ndarray, canvas: np.ndarray) -> np.ndarray:
    """Lay the overlay's drawn pixels over a copy of ``frame``."""
    if canvas.shape[:2] != frame.shape[:2]:
        canvas = cv2.resize(canvas, (frame.shape[1], frame.shape[0]), interpolation=cv2.INTER_NEAREST)
    output = frame.copy()
    mask = canvas.any(axis=2)
    output[mask] = canvas[mask]
    return output
