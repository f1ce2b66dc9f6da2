"""Face descriptor checks and comparison.

A descriptor is a 128-dimensional embedding of one detected face. Only
descriptors are ever persisted, never frames or images. Detection itself
is delegated to a FaceDetector implementation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, Sequence

import numpy as np

DESCRIPTOR_LENGTH = 128
# Reject descriptors with a tiny L2 norm (degenerate embeddings).
DESCRIPTOR_MIN_NORM = 0.01
# Minimum detection score for live "ready" feedback.
LIVE_SCORE_MIN = 0.55
# Minimum detection score for the final capture, stricter than live.
CAPTURE_SCORE_MIN = 0.65
# Same person if distance < this.
MATCH_THRESHOLD = 0.6


@dataclass
class FaceDetection:
    """One face found in a frame."""

    score: float
    descriptor: Sequence[float] | None = None


class FaceDetector(Protocol):
    """Runs face detection on a single video frame."""

    async def detect(self, frame: Any, with_descriptors: bool = False) -> list[FaceDetection]:
        ...


class FaceCaptureErrorKind(str, Enum):
    """Why a capture was refused."""

    NO_FACE = "no_face"
    MULTIPLE_FACES = "multiple_faces"
    LOW_CONFIDENCE = "low_confidence"
    MALFORMED_DESCRIPTOR = "malformed_descriptor"


_CAPTURE_MESSAGES = {
    FaceCaptureErrorKind.NO_FACE: "No face detected. Look at the camera in good light.",
    FaceCaptureErrorKind.MULTIPLE_FACES: "Only one person may be in frame for security.",
    FaceCaptureErrorKind.LOW_CONFIDENCE: "Capture not clear enough. Face the camera directly in good light.",
    FaceCaptureErrorKind.MALFORMED_DESCRIPTOR: "Invalid capture; try again.",
}


class FaceCaptureError(Exception):
    """A capture attempt failed; the flow returns to the camera state."""

    def __init__(self, kind: FaceCaptureErrorKind, message: str | None = None) -> None:
        self.kind = kind
        self.message = message or _CAPTURE_MESSAGES[kind]
        super().__init__(self.message)


@dataclass
class FaceCheckResult:
    """Result of a quick live check (no descriptor computed)."""

    ready: bool
    count: int
    message: str = field(default="")


def check_face_for_capture(detections: Sequence[FaceDetection]) -> FaceCheckResult:
    """Classify one polled frame for live feedback.

    Exactly one face at or above LIVE_SCORE_MIN is "ready"; no face,
    several faces or a weak detection are not.
    """
    if not detections:
        return FaceCheckResult(ready=False, count=0, message="Position your face in the frame")
    if len(detections) > 1:
        return FaceCheckResult(
            ready=False,
            count=len(detections),
            message="Only one person in frame (security)",
        )
    if detections[0].score < LIVE_SCORE_MIN:
        return FaceCheckResult(
            ready=False,
            count=1,
            message="Face not clear enough, look at camera and improve lighting",
        )
    return FaceCheckResult(ready=True, count=1, message="Face detected clearly, hold still, then capture")


def descriptor_norm(descriptor: Sequence[float]) -> float:
    return float(np.linalg.norm(np.asarray(descriptor, dtype=np.float64)))


def validate_descriptor(descriptor: Sequence[float] | None) -> list[float]:
    """Check dimensionality, finiteness and magnitude of a descriptor.

    Returns:
        list[float]: The descriptor as plain floats, ready to persist.

    Raises:
        FaceCaptureError: With kind MALFORMED_DESCRIPTOR.
    """
    if descriptor is None:
        raise FaceCaptureError(FaceCaptureErrorKind.MALFORMED_DESCRIPTOR)
    vector = np.asarray(descriptor, dtype=np.float64)
    if vector.ndim != 1 or vector.shape[0] != DESCRIPTOR_LENGTH:
        raise FaceCaptureError(FaceCaptureErrorKind.MALFORMED_DESCRIPTOR)
    if not np.all(np.isfinite(vector)):
        raise FaceCaptureError(FaceCaptureErrorKind.MALFORMED_DESCRIPTOR)
    if float(np.linalg.norm(vector)) < DESCRIPTOR_MIN_NORM:
        raise FaceCaptureError(FaceCaptureErrorKind.MALFORMED_DESCRIPTOR)
    return vector.tolist()


def descriptor_from_detections_strict(detections: Sequence[FaceDetection]) -> list[float]:
    """Strict capture: exactly one face, high confidence, valid descriptor.

    Raises:
        FaceCaptureError: Describing the first violated requirement.
    """
    if not detections:
        raise FaceCaptureError(FaceCaptureErrorKind.NO_FACE)
    if len(detections) > 1:
        raise FaceCaptureError(FaceCaptureErrorKind.MULTIPLE_FACES)
    face = detections[0]
    if face.score < CAPTURE_SCORE_MIN:
        raise FaceCaptureError(FaceCaptureErrorKind.LOW_CONFIDENCE)
    return validate_descriptor(face.descriptor)


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Euclidean distance; infinite when the lengths differ."""
    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    if left.shape != right.shape:
        return float("inf")
    return float(np.linalg.norm(left - right))


def is_match(stored: Sequence[float], current: Sequence[float], threshold: float = MATCH_THRESHOLD) -> bool:
    """True if both descriptors likely belong to the same person.

    A distance exactly equal to the threshold is not a match.
    """
    return euclidean_distance(stored, current) < threshold
