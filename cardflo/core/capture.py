"""Autocapture engine: polls a classifier until a card is legible, then captures.

States move ``IDLE -> DETECTING -> STEADY -> CAPTURING`` and end in
``HANDED_OFF`` or ``CLOSED``. A poll timer spawns one tick per interval; a
tick takes a low-resolution snapshot and asks the classifier whether a card
is present and steady. At most one classification is outstanding at a time,
and a result that arrives after the session left IDLE/DETECTING is ignored.

The camera is released whenever the view is hidden and on every exit path
(handoff, cancel, error).
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .errors import CameraError, CardfloError, ClassifierError, FrameCaptureError
from .sampler import FrameSampler

logger = logging.getLogger(__name__)


class CaptureState(str, Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    STEADY = "steady"
    CAPTURING = "capturing"
    HANDED_OFF = "handed_off"
    CLOSED = "closed"


POLLING_STATES = frozenset({CaptureState.IDLE, CaptureState.DETECTING})
TERMINAL_STATES = frozenset({CaptureState.HANDED_OFF, CaptureState.CLOSED})


@dataclass
class CaptureConfig:
    """Configuration for the autocapture engine."""
    poll_interval: float = 1.5  # seconds; respect classifier rate limits


@dataclass
class CaptureSession:
    """Transient state of one open camera view."""
    state: CaptureState = CaptureState.IDLE
    last_frame: Optional[bytes] = None
    still: Optional[bytes] = None
    is_partial: bool = False
    is_duplicate: bool = False
    manual: bool = False
    error: Optional[CardfloError] = None

    @property
    def captured(self) -> bool:
        return self.still is not None


class AutoCaptureEngine:
    """Drives one capture session from camera start to handoff."""

    def __init__(
        self,
        sampler: FrameSampler,
        classifier,
        config: Optional[CaptureConfig] = None,
        on_state: Optional[Callable[[CaptureState], None]] = None,
    ):
        """Initialize the engine.

        Args:
            sampler: Frame sampler owning the camera
            classifier: Object with ``classify(image_bytes) -> DetectionResult``
            config: Poll settings (defaults if not provided)
            on_state: Optional callback invoked after every state change
        """
        self.sampler = sampler
        self.classifier = classifier
        self.config = config or CaptureConfig()
        self.on_state = on_state
        self.session: Optional[CaptureSession] = None

        self._pending_call: Optional[asyncio.Future] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._tick_tasks: set[asyncio.Task] = set()
        self._done: Optional[asyncio.Event] = None

    @property
    def state(self) -> CaptureState:
        return self.session.state if self.session else CaptureState.CLOSED

    @property
    def in_flight(self) -> bool:
        return self._pending_call is not None and not self._pending_call.done()

    def _set_state(self, state: CaptureState) -> None:
        previous = self.session.state
        self.session.state = state
        if previous != state:
            logger.debug(f"Capture state {previous.value} -> {state.value}")
            if self.on_state:
                self.on_state(state)

    # -- lifecycle --

    async def start(self, poll: bool = True) -> CaptureSession:
        """Open the camera and begin polling.

        Args:
            poll: Start the recurring poll timer (tests drive ``tick`` by hand)

        Raises:
            CameraError: If the camera cannot be acquired
            RuntimeError: If a session is already running
        """
        if self.session is not None and self.session.state not in TERMINAL_STATES:
            raise RuntimeError("Capture session already running")

        self.session = CaptureSession()
        self._done = asyncio.Event()
        try:
            self.sampler.start()
        except CameraError as e:
            self._fail(e)
            raise

        if self.on_state:
            self.on_state(CaptureState.IDLE)
        if poll:
            self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info("Capture session started")
        return self.session

    async def close(self) -> None:
        """Stop polling and release the camera. Safe to call repeatedly."""
        pending = list(self._tick_tasks)
        if self._poll_task is not None:
            pending.append(self._poll_task)
        self._stop_polling()
        for task in self._tick_tasks:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tick_tasks.clear()

        self.sampler.release()
        if self.session is not None and self.session.state not in TERMINAL_STATES:
            self._set_state(CaptureState.CLOSED)
            logger.info("Capture session closed")
        if self._done is not None:
            self._done.set()

    async def __aenter__(self) -> "AutoCaptureEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    def _fail(self, error: CardfloError) -> None:
        logger.error(f"Capture session failed: {error}")
        self._stop_polling()
        self.sampler.release()
        self.session.error = error
        self._set_state(CaptureState.CLOSED)
        if self._done is not None:
            self._done.set()

    # -- polling --

    def _stop_polling(self) -> None:
        task = self._poll_task
        self._poll_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _poll_loop(self) -> None:
        while self.session is not None and self.session.state in POLLING_STATES:
            await asyncio.sleep(self.config.poll_interval)
            if self.session.state not in POLLING_STATES:
                break
            task = asyncio.create_task(self.tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_finished)

    def _tick_finished(self, task: asyncio.Task) -> None:
        self._tick_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Unexpected error in capture tick", exc_info=task.exception())

    def _call_finished(self, call: asyncio.Future) -> None:
        if not call.cancelled() and call.exception() is not None:
            logger.debug(f"Classification call ended with {call.exception()!r}")

    async def tick(self) -> bool:
        """Run one steadiness check.

        Skipped while a previous check is outstanding, while the view is
        hidden, or once the session has moved past DETECTING.

        Returns:
            True if a classification result was applied
        """
        session = self.session
        if session is None or session.state not in POLLING_STATES:
            return False
        if self.in_flight or not self.sampler.active:
            return False

        try:
            frame = self.sampler.snapshot()
        except FrameCaptureError as e:
            logger.warning(f"Snapshot failed, will retry: {e}")
            return False
        except CameraError as e:
            self._fail(e)
            return False
        session.last_frame = frame

        # in flight until the worker thread returns, even if this tick is cancelled
        call = asyncio.ensure_future(asyncio.to_thread(self.classifier.classify, frame))
        call.add_done_callback(self._call_finished)
        self._pending_call = call
        try:
            result = await asyncio.shield(call)
        except ClassifierError as e:
            logger.warning(f"Steadiness check failed, will retry: {e}")
            return False
        except CameraError as e:
            if session is self.session:
                self._fail(e)
            return False

        if session is not self.session or session.state not in POLLING_STATES:
            logger.debug("Discarding late classification result")
            return False
        self.apply_detection(result)
        return True

    def apply_detection(self, result) -> CaptureState:
        """Move the state machine according to a classifier verdict."""
        session = self.session
        if session is None or session.state not in POLLING_STATES:
            logger.debug("Ignoring detection result for inactive session")
            return self.state

        if not result.card_present:
            self._set_state(CaptureState.IDLE)
        elif not result.is_steady:
            self._set_state(CaptureState.DETECTING)
        else:
            self._set_state(CaptureState.STEADY)
            self._stop_polling()
            try:
                self._capture()
            except (CameraError, FrameCaptureError) as e:
                self._fail(e)
        return self.state

    # -- capture --

    def _capture(self) -> bytes:
        self._set_state(CaptureState.CAPTURING)
        still = self.sampler.still()
        self.session.still = still
        logger.info(f"Captured still ({len(still)} bytes, manual={self.session.manual})")
        self._done.set()
        return still

    def capture_now(self) -> bytes:
        """Capture immediately, bypassing the steadiness loop.

        Raises:
            RuntimeError: If no session is running
            CameraError, FrameCaptureError: If the frame cannot be read
        """
        session = self.session
        if session is None or session.state in TERMINAL_STATES:
            raise RuntimeError("No running capture session")
        if session.still is not None:
            return session.still

        self._stop_polling()
        session.manual = True
        try:
            return self._capture()
        except (CameraError, FrameCaptureError) as e:
            self._fail(e)
            raise

    def set_visible(self, visible: bool) -> None:
        """Release the camera while hidden and reacquire it when shown.

        Raises:
            CameraError: If the camera cannot be reacquired
        """
        if self.session is None or self.session.state in TERMINAL_STATES:
            return
        if not visible:
            self.sampler.pause()
            return
        try:
            self.sampler.resume()
        except CameraError as e:
            self._fail(e)
            raise

    async def wait_for_capture(self, timeout: Optional[float] = None) -> Optional[bytes]:
        """Wait until a still is captured or the session ends.

        Returns:
            The still, or None if the session was closed without one

        Raises:
            CardfloError: The error that ended the session
            asyncio.TimeoutError: If ``timeout`` elapses first
        """
        if self._done is None:
            raise RuntimeError("Capture session not started")
        await asyncio.wait_for(self._done.wait(), timeout)
        if self.session.error is not None:
            raise self.session.error
        return self.session.still

    def handoff(self) -> CaptureSession:
        """Hand the captured still to the caller and release the camera."""
        session = self.session
        if session is None or session.still is None:
            raise RuntimeError("Nothing captured to hand off")
        self._stop_polling()
        self.sampler.release()
        self._set_state(CaptureState.HANDED_OFF)
        return session

    async def run(self, timeout: Optional[float] = None) -> Optional[CaptureSession]:
        """Start, wait for a capture, and hand it off.

        The camera is released on every path out of this call.

        Returns:
            The handed-off session, or None if closed without a capture
        """
        await self.start()
        try:
            still = await self.wait_for_capture(timeout)
            return self.handoff() if still is not None else None
        finally:
            await self.close()
