"""Image classifier client for card detection and field extraction.

This module provides a client to call an external vision API. The API is
expected to accept JPEG image data and return JSON verdicts or fields.
"""

import json
import re
from typing import Optional

import requests
from pydantic import ValidationError

from ..core.errors import ClassifierError, ClassifierResponseError
from ..core.imaging import format_image_data_url
from ..core.models import CONTACT_FIELDS
from .schemas import ContactFields, DetectionResult, EnrichmentResult

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def parse_json_payload(text: str) -> dict:
    """Parse a JSON object, tolerating markdown code fences around it.

    Raises:
        ClassifierResponseError: If the text is not a JSON object
    """
    cleaned = _FENCE_RE.sub("", text or "").strip()
    try:
        data = json.loads(cleaned)
    except ValueError as e:
        raise ClassifierResponseError(f"Response is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ClassifierResponseError("Response JSON is not an object")
    return data


def _validate(model, data: dict):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ClassifierResponseError(
            f"Response missing or invalid fields: {e.error_count()} error(s)",
            details={"errors": e.errors(include_url=False)},
        )


class ClassifierAPI:
    """Client for the image classifier API.

    Expected API format:
        POST {base_url}/v1/detect
        Request body: {"image": "<data url>"}
        Response: {"is_steady": true, "card_present": true}

        POST {base_url}/v1/extract
        Request body: {"image": "<data url>"}
        Response: {"firstName": "...", ..., "logo_box": [ymin, xmin, ymax, xmax]}

        POST {base_url}/v1/enrich
        Request body: {"image": "<data url>", "existing": {...}}
        Response: {"notes": "..."}
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
    ):
        """Initialize the classifier API client.

        Args:
            base_url: Base URL of the classifier API (e.g., 'http://localhost:8000')
            api_key: Optional API key for authentication
            timeout: Transport timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _get_headers(self) -> dict:
        """Build request headers."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _post(self, path: str, payload: dict) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = requests.post(
                url,
                json=payload,
                headers=self._get_headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ClassifierError(f"Request failed: {e}")

        if response.status_code != 200:
            raise ClassifierError(
                f"API error {response.status_code}: {response.text}"
            )

        return parse_json_payload(response.text)

    def classify(self, image_bytes: bytes) -> DetectionResult:
        """Ask whether a legible card is present in a frame.

        Args:
            image_bytes: JPEG-encoded frame

        Returns:
            DetectionResult with ``card_present`` and ``is_steady``

        Raises:
            ClassifierError: If the API call fails
            ClassifierResponseError: If the response is malformed
        """
        data = self._post("/v1/detect", {"image": format_image_data_url(image_bytes)})
        return _validate(DetectionResult, data)

    def extract(self, image_bytes: bytes) -> ContactFields:
        """Extract contact fields from a full-resolution still.

        Raises:
            ClassifierError: If the API call fails
            ClassifierResponseError: If the response is malformed
        """
        data = self._post("/v1/extract", {"image": format_image_data_url(image_bytes)})
        return _validate(ContactFields, data)

    def enrich(self, existing: ContactFields, back_image_bytes: bytes) -> EnrichmentResult:
        """Collect extra notes from the back side of a card.

        Args:
            existing: Fields already extracted from the front side
            back_image_bytes: JPEG-encoded back side still

        Raises:
            ClassifierError: If the API call fails
            ClassifierResponseError: If the response is malformed
        """
        payload = {
            "image": format_image_data_url(back_image_bytes),
            "existing": existing.model_dump(by_alias=True, exclude_none=True),
        }
        data = self._post("/v1/enrich", payload)
        return _validate(EnrichmentResult, data)

    def health_check(self) -> bool:
        """Check if the API is available.

        Returns:
            True if the API is reachable, False otherwise
        """
        for endpoint in ["/health", "/v1/health", "/"]:
            try:
                response = requests.get(f"{self.base_url}{endpoint}", timeout=5.0)
                if response.status_code < 500:
                    return True
            except requests.RequestException:
                continue
        return False


class MockClassifierAPI(ClassifierAPI):
    """Scripted classifier for testing and offline demos.

    Detection verdicts are played back in order; the last one repeats once
    the script is exhausted.
    """

    def __init__(
        self,
        detections: Optional[list[tuple[bool, bool]]] = None,
        fields: Optional[dict] = None,
        notes: str = "",
    ):
        """Initialize mock API.

        Args:
            detections: Sequence of ``(card_present, is_steady)`` verdicts
            fields: Extraction response (camelCase or snake_case keys)
            notes: Notes returned by ``enrich``
        """
        super().__init__(base_url="http://mock")
        self.detections = list(detections or [(True, True)])
        self.fields = fields or {}
        self.notes = notes
        self.classify_calls = 0
        self.extract_calls = 0

    def classify(self, image_bytes: bytes) -> DetectionResult:
        index = min(self.classify_calls, len(self.detections) - 1)
        self.classify_calls += 1
        present, steady = self.detections[index]
        return DetectionResult(card_present=present, is_steady=steady)

    def extract(self, image_bytes: bytes) -> ContactFields:
        self.extract_calls += 1
        aliases = {info.alias: name for name, info in ContactFields.model_fields.items() if info.alias}
        data = {name: "" for name in CONTACT_FIELDS}
        data.update({aliases.get(key, key): value for key, value in self.fields.items()})
        return _validate(ContactFields, data)

    def enrich(self, existing: ContactFields, back_image_bytes: bytes) -> EnrichmentResult:
        return EnrichmentResult(notes=self.notes)

    def health_check(self) -> bool:
        """Mock always returns True."""
        return True
