"""External API integrations - image classifier client."""

from .classifier_api import (
    ClassifierAPI,
    MockClassifierAPI,
    parse_json_payload,
)
from .schemas import ContactFields, DetectionResult, EnrichmentResult

__all__ = [
    "ClassifierAPI",
    "MockClassifierAPI",
    "parse_json_payload",
    "ContactFields",
    "DetectionResult",
    "EnrichmentResult",
]
