"""Face liveness, enrollment and verification flows.

Both flows are explicit state machines. Transitions are a pure function
of (state, event) so they can be exercised without a camera; the
session classes wrap a CameraSource and a FaceDetector and drive the
machine.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol, Sequence

from src.services.face_recognition import (
    MATCH_THRESHOLD,
    FaceCaptureError,
    FaceCheckResult,
    FaceDetector,
    check_face_for_capture,
    descriptor_from_detections_strict,
    euclidean_distance,
)

logger = logging.getLogger(__name__)

# Consecutive "ready" frames required before capture is enabled.
READY_FRAMES_REQUIRED = 4
LIVE_CHECK_INTERVAL_SECONDS = 0.28


class CaptureState(str, Enum):
    """States of a capture flow."""

    IDLE = "idle"
    STARTING = "starting"
    CAMERA = "camera"
    VERIFYING = "verifying"
    CAPTURING = "capturing"
    SAVING = "saving"
    DONE = "done"
    ERROR = "error"


class CaptureEvent(str, Enum):
    """Inputs that move a capture flow between states."""

    START = "start"
    CAMERA_READY = "camera_ready"
    CAPTURE = "capture"
    DESCRIPTOR_ACCEPTED = "descriptor_accepted"
    SAVE = "save"
    SAVED = "saved"
    VERIFIED = "verified"
    CAPTURE_FAILED = "capture_failed"
    FAIL = "fail"
    RETRY = "retry"
    RESUME = "resume"
    CLOSE = "close"


class InvalidTransitionError(Exception):
    """Raised when an event is not accepted in the current state."""

    def __init__(self, state: CaptureState, event: CaptureEvent) -> None:
        self.state = state
        self.event = event
        super().__init__(f"Event {event.value} not allowed in state {state.value}")


_TRANSITIONS: dict[tuple[CaptureState, CaptureEvent], CaptureState] = {
    (CaptureState.IDLE, CaptureEvent.START): CaptureState.STARTING,
    (CaptureState.STARTING, CaptureEvent.CAMERA_READY): CaptureState.CAMERA,
    (CaptureState.CAMERA, CaptureEvent.CAPTURE): CaptureState.VERIFYING,
    (CaptureState.VERIFYING, CaptureEvent.DESCRIPTOR_ACCEPTED): CaptureState.CAPTURING,
    (CaptureState.VERIFYING, CaptureEvent.VERIFIED): CaptureState.DONE,
    (CaptureState.CAPTURING, CaptureEvent.SAVE): CaptureState.SAVING,
    (CaptureState.SAVING, CaptureEvent.SAVED): CaptureState.DONE,
    (CaptureState.VERIFYING, CaptureEvent.CAPTURE_FAILED): CaptureState.CAMERA,
    (CaptureState.CAPTURING, CaptureEvent.CAPTURE_FAILED): CaptureState.CAMERA,
    (CaptureState.SAVING, CaptureEvent.CAPTURE_FAILED): CaptureState.CAMERA,
    (CaptureState.ERROR, CaptureEvent.RETRY): CaptureState.IDLE,
    (CaptureState.ERROR, CaptureEvent.RESUME): CaptureState.CAMERA,
}


def transition(state: CaptureState, event: CaptureEvent) -> CaptureState:
    """Return the state reached from `state` on `event`.

    FAIL is accepted from every state except DONE; CLOSE from every state.

    Raises:
        InvalidTransitionError: If the event is not valid in this state.
    """
    if event is CaptureEvent.CLOSE:
        return CaptureState.IDLE
    if event is CaptureEvent.FAIL and state is not CaptureState.DONE:
        return CaptureState.ERROR
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(state, event) from None


class LivenessTracker:
    """Counts consecutive qualifying frames.

    Any disqualifying frame resets the count to zero; capture is enabled
    once the count reaches the required number.
    """

    def __init__(self, required_frames: int = READY_FRAMES_REQUIRED) -> None:
        self.required_frames = required_frames
        self.count = 0

    @property
    def capture_enabled(self) -> bool:
        return self.count >= self.required_frames

    def observe(self, result: FaceCheckResult) -> bool:
        if result.ready:
            self.count = min(self.count + 1, self.required_frames)
        else:
            self.count = 0
        return self.capture_enabled

    def reset(self) -> None:
        self.count = 0


class CameraSource(Protocol):
    """A live video feed.

    open() resolves once permission is granted and raises if denied;
    release() stops every track.
    """

    async def open(self) -> None:
        ...

    async def read_frame(self) -> Any:
        ...

    def release(self) -> None:
        ...


DescriptorSink = Callable[[list[float]], Awaitable[Any]]


class _CameraFlow:
    """Camera lifecycle and state bookkeeping shared by both flows."""

    def __init__(self, camera: CameraSource, detector: FaceDetector) -> None:
        self.camera = camera
        self.detector = detector
        self.state = CaptureState.IDLE
        self.message = ""
        self._camera_open = False

    def _move(self, event: CaptureEvent) -> CaptureState:
        previous = self.state
        self.state = transition(previous, event)
        if previous is CaptureState.CAMERA and self.state is not CaptureState.CAMERA:
            self._leave_camera()
        if self.state is CaptureState.CAMERA and previous is not CaptureState.CAMERA:
            self._enter_camera()
        logger.debug("%s: %s -> %s on %s", type(self).__name__, previous.value, self.state.value, event.value)
        return self.state

    def _enter_camera(self) -> None:
        pass

    def _leave_camera(self) -> None:
        pass

    def _release_camera(self) -> None:
        if self._camera_open:
            try:
                self.camera.release()
            finally:
                self._camera_open = False

    @property
    def camera_active(self) -> bool:
        return self._camera_open

    async def start(self) -> CaptureState:
        """Request the camera and enter the live state.

        Raises:
            InvalidTransitionError: If not idle.
        """
        self._move(CaptureEvent.START)
        self.message = "Requesting camera..."
        try:
            await self.camera.open()
        except Exception as e:
            logger.info("Camera acquisition failed: %s", e)
            self.message = f"Camera error: {e}"
            return self._move(CaptureEvent.FAIL)
        self._camera_open = True
        self._on_camera_opened()
        return self._move(CaptureEvent.CAMERA_READY)

    def _on_camera_opened(self) -> None:
        pass

    def fail(self, message: str) -> CaptureState:
        """Enter the error state; the camera is kept so retry can resume it."""
        self.message = message
        return self._move(CaptureEvent.FAIL)

    def retry(self) -> CaptureState:
        """Leave the error state: back to the camera if it is still open, else idle."""
        if self._camera_open:
            self._on_camera_opened()
            return self._move(CaptureEvent.RESUME)
        return self._move(CaptureEvent.RETRY)

    async def close(self) -> None:
        """Stop everything and release the camera; safe to call repeatedly."""
        self._move(CaptureEvent.CLOSE)
        await self._drain()
        self._release_camera()

    async def _drain(self) -> None:
        pass

    async def __aenter__(self) -> "_CameraFlow":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _detect(self, with_descriptors: bool) -> Sequence:
        frame = await self.camera.read_frame()
        return await self.detector.detect(frame, with_descriptors=with_descriptors)


class FaceEnrollmentSession(_CameraFlow):
    """Enrollment: live polling gate, strict capture, single-field save."""

    def __init__(
        self,
        camera: CameraSource,
        detector: FaceDetector,
        save_descriptor: DescriptorSink,
        poll_interval: float = LIVE_CHECK_INTERVAL_SECONDS,
        required_frames: int = READY_FRAMES_REQUIRED,
    ) -> None:
        super().__init__(camera, detector)
        self._save_descriptor = save_descriptor
        self.poll_interval = poll_interval
        self.tracker = LivenessTracker(required_frames)
        self.last_check: FaceCheckResult | None = None
        self._poll_task: asyncio.Task | None = None
        self._stopped_tasks: list[asyncio.Task] = []

    @property
    def capture_enabled(self) -> bool:
        return self.state is CaptureState.CAMERA and self.tracker.capture_enabled

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def _on_camera_opened(self) -> None:
        self.tracker.reset()
        self.message = "Position your face clearly in the frame. Capture will enable when detected."

    def _enter_camera(self) -> None:
        self._stopped_tasks = [task for task in self._stopped_tasks if not task.done()]
        if self._poll_task is None:
            self._poll_task = asyncio.create_task(self._poll_loop())

    def _leave_camera(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._stopped_tasks.append(self._poll_task)
            self._poll_task = None

    async def _drain(self) -> None:
        while self._stopped_tasks:
            task = self._stopped_tasks.pop()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def poll_once(self) -> FaceCheckResult:
        """Check the current frame and feed the liveness counter."""
        try:
            result = check_face_for_capture(await self._detect(with_descriptors=False))
        except Exception as e:
            logger.debug("Live face check failed: %s", e)
            result = FaceCheckResult(ready=False, count=0, message="Position your face in the frame")
        self.last_check = result
        self.tracker.observe(result)
        return result

    async def _poll_loop(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.poll_interval)

    async def capture(self) -> list[float] | None:
        """Capture and persist a descriptor.

        Only valid while capture is enabled. On any failure the flow
        returns to the camera state with the liveness counter reset.

        Returns:
            list[float] | None: The stored descriptor, or None on failure.
        """
        if not self.capture_enabled:
            self.message = "Hold still until capture is enabled"
            return None

        self._move(CaptureEvent.CAPTURE)
        self.message = "Verifying capture..."
        try:
            descriptor = descriptor_from_detections_strict(await self._detect(with_descriptors=True))
            self._move(CaptureEvent.DESCRIPTOR_ACCEPTED)
            self.message = "Capture verified"
            self._move(CaptureEvent.SAVE)
            self.message = "Saving securely..."
            await self._save_descriptor(descriptor)
        except FaceCaptureError as e:
            self._return_to_camera(e.message)
            return None
        except Exception as e:
            logger.warning("Face enrollment capture failed: %s", e)
            self._return_to_camera("Capture failed. Ensure one clear face in good light, then try again.")
            return None

        self._release_camera()
        self._move(CaptureEvent.SAVED)
        self.message = "Face enrolled and verified"
        return descriptor

    def _return_to_camera(self, message: str) -> None:
        self.tracker.reset()
        self.message = message
        self._move(CaptureEvent.CAPTURE_FAILED)


class VerificationOutcome(str, Enum):
    """Result of one verification attempt."""

    MATCH = "match"
    NO_MATCH = "no_match"
    NO_FACE = "no_face"


@dataclass
class VerificationResult:
    outcome: VerificationOutcome
    distance: float | None = None

    @property
    def matched(self) -> bool:
        return self.outcome is VerificationOutcome.MATCH


class FaceVerificationSession(_CameraFlow):
    """Unlock flow: one capture compared against the enrolled descriptor.

    "No face" and "did not match" are reported separately; neither is
    retried automatically.
    """

    def __init__(
        self,
        camera: CameraSource,
        detector: FaceDetector,
        stored_descriptor: Sequence[float],
        threshold: float = MATCH_THRESHOLD,
    ) -> None:
        super().__init__(camera, detector)
        self.stored_descriptor = list(stored_descriptor)
        self.threshold = threshold

    def _on_camera_opened(self) -> None:
        self.message = "Position your face in the frame, then click Verify."

    async def verify(self) -> VerificationResult:
        """Run one verification attempt from the camera state."""
        self._move(CaptureEvent.CAPTURE)
        self.message = "Verifying..."
        try:
            current = descriptor_from_detections_strict(await self._detect(with_descriptors=True))
        except FaceCaptureError as e:
            logger.info("Face verification found no usable face: %s", e.kind.value)
            return self._no_face()
        except Exception as e:
            logger.warning("Face verification capture failed: %s", e)
            return self._no_face()

        distance = euclidean_distance(self.stored_descriptor, current)
        if distance < self.threshold:
            self._release_camera()
            self._move(CaptureEvent.VERIFIED)
            self.message = "Verified"
            return VerificationResult(outcome=VerificationOutcome.MATCH, distance=distance)

        logger.info("Face verification did not match (distance %.3f)", distance)
        self.message = "Face did not match. Try again."
        self._move(CaptureEvent.CAPTURE_FAILED)
        return VerificationResult(outcome=VerificationOutcome.NO_MATCH, distance=distance)

    def _no_face(self) -> VerificationResult:
        self.message = "No face detected. Look at the camera and try again."
        self._move(CaptureEvent.CAPTURE_FAILED)
        return VerificationResult(outcome=VerificationOutcome.NO_FACE)
