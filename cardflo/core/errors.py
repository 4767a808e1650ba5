"""Exception hierarchy shared by the capture, matching and quota layers."""


class CardfloError(Exception):
    """Base exception for the card scanning system."""

    error_code = "CARDFLO_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert error to a JSON-serializable decision payload."""
        return {
            "success": False,
            "error": self.message,
            "error_code": self.error_code,
        }


# Image Classifier
class ClassifierError(CardfloError):
    """Raised when a classification call fails (network, HTTP status, parse)."""

    error_code = "CLASSIFIER_FAILED"


class ClassifierResponseError(ClassifierError):
    """Raised when the classifier answers with non-JSON or incomplete data."""

    error_code = "CLASSIFIER_BAD_RESPONSE"


# Camera
class CameraError(CardfloError):
    """Raised when the camera cannot be acquired. Fatal for a capture session."""

    error_code = "CAMERA_UNAVAILABLE"


class FrameCaptureError(CardfloError):
    """Raised when a frame cannot be read from an open camera."""

    error_code = "FRAME_CAPTURE_FAILED"


# Record Store
class RecordStoreError(CardfloError):
    """Raised when a record store operation fails."""

    error_code = "RECORD_STORE_FAILED"


# Quota
class QuotaCheckError(CardfloError):
    """Raised while computing a quota decision. Callers fail open."""

    error_code = "QUOTA_CHECK_FAILED"


class QuotaWriteError(CardfloError):
    """Raised when a usage increment could not be recorded."""

    error_code = "QUOTA_WRITE_FAILED"


class QuotaExceededError(CardfloError):
    """Raised when a save is refused because the owner is over their limit."""

    error_code = "LIMIT_REACHED"

    def __init__(self, owner_id: str, reason: str = "limit_reached"):
        self.owner_id = owner_id
        self.reason = reason
        super().__init__(
            f"Scan limit reached for this billing cycle ({reason})",
            details={"owner_id": owner_id, "reason": reason},
        )
