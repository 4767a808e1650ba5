"""Frame sampler: owns the camera handle for one capture session."""

import logging

from .camera import VideoSource
from .errors import CameraError, FrameCaptureError
from .imaging import encode_jpeg, scale_image

logger = logging.getLogger(__name__)


class FrameSampler:
    """Produces encoded frames from the live video source on demand.

    Snapshots are downscaled and compressed for classification calls; stills
    keep the source resolution for recognition. Both always read the frame
    current at the moment of the call.
    """

    def __init__(
        self,
        source: VideoSource,
        snapshot_scale: float = 0.5,
        snapshot_quality: int = 50,
        still_quality: int = 92,
    ):
        self.source = source
        self.snapshot_scale = snapshot_scale
        self.snapshot_quality = snapshot_quality
        self.still_quality = still_quality
        self._paused = False

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def active(self) -> bool:
        return not self._paused and self.source.is_open()

    def start(self) -> None:
        """Acquire the camera. CameraError propagates to the caller."""
        self._paused = False
        self.source.open()

    def pause(self) -> None:
        """Release the camera while the host view is hidden."""
        if self._paused:
            return
        self._paused = True
        self.source.release()
        logger.debug("Sampler paused, camera released")

    def resume(self) -> None:
        """Reacquire the camera when the host view becomes visible again."""
        if not self._paused:
            return
        self.source.open()
        self._paused = False
        logger.debug("Sampler resumed, camera reacquired")

    def release(self) -> None:
        self.source.release()

    def _read(self):
        if self._paused:
            raise FrameCaptureError("Sampler is paused")
        if not self.source.is_open():
            raise CameraError("Camera is not open")
        return self.source.read()

    def snapshot(self) -> bytes:
        """Low-resolution JPEG of the current frame for steadiness checks."""
        frame = self._read()
        small = scale_image(frame, self.snapshot_scale)
        return encode_jpeg(small, self.snapshot_quality)

    def still(self) -> bytes:
        """Full-resolution JPEG of the current frame."""
        frame = self._read()
        return encode_jpeg(frame, self.still_quality)
