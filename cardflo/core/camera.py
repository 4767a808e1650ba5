"""Camera access behind a small video source interface.

The capture layer only needs to open a device, read the latest frame as a
PIL image and release the device again.
"""

import logging
from typing import Optional, Protocol

import cv2
import numpy as np
from PIL import Image

from .errors import CameraError, FrameCaptureError

logger = logging.getLogger(__name__)


class VideoSource(Protocol):
    def open(self) -> None: ...

    def read(self) -> Image.Image: ...

    def release(self) -> None: ...

    def is_open(self) -> bool: ...


class OpenCVVideoSource:
    """USB/laptop camera read through OpenCV.

    Keeps the driver buffer at one frame so ``read`` returns the live frame
    rather than a queued one.
    """

    DEFAULT_CONFIG = {
        "width": 1920,
        "height": 1080,
        "fps": 30,
        "buffer_size": 1,
    }

    def __init__(self, camera_index: int = 0, config: Optional[dict] = None):
        """Initialize camera source.

        Args:
            camera_index: OpenCV device index
            config: Optional overrides for DEFAULT_CONFIG
        """
        self.camera_index = camera_index
        self.config = {**self.DEFAULT_CONFIG, **(config or {})}
        self.capture: Optional[cv2.VideoCapture] = None

    def open(self) -> None:
        """Acquire the camera device.

        Raises:
            CameraError: If the device cannot be opened
        """
        if self.is_open():
            return

        logger.info(f"Opening camera {self.camera_index}")
        capture = cv2.VideoCapture(self.camera_index)
        if not capture.isOpened():
            capture.release()
            raise CameraError(
                f"Could not open camera {self.camera_index}",
                details={"camera_index": self.camera_index},
            )

        cfg = self.config
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, cfg["width"])
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, cfg["height"])
        capture.set(cv2.CAP_PROP_FPS, cfg["fps"])
        capture.set(cv2.CAP_PROP_BUFFERSIZE, cfg["buffer_size"])
        self.capture = capture

        width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info(f"Camera opened: {width}x{height}")

    def read(self) -> Image.Image:
        """Read the current frame as an RGB PIL image.

        Raises:
            FrameCaptureError: If the camera is closed or returns no frame
        """
        if self.capture is None:
            raise FrameCaptureError("Camera is not open")

        ok, frame = self.capture.read()
        if not ok or frame is None:
            raise FrameCaptureError("Failed to read frame from camera")

        # OpenCV delivers BGR
        rgb = np.ascontiguousarray(frame[:, :, ::-1])
        return Image.fromarray(rgb)

    def release(self) -> None:
        if self.capture is not None:
            self.capture.release()
            self.capture = None
            logger.info(f"Camera {self.camera_index} released")

    def is_open(self) -> bool:
        return self.capture is not None and self.capture.isOpened()
