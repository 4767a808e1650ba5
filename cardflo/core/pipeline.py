"""Scan pipeline: from a captured still to a persisted contact record."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from .errors import QuotaExceededError
from .imaging import crop_logo
from .matcher import DuplicateMatcher
from .models import ContactRecord
from .quota import QuotaGate, ScanDecision

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """Extracted fields plus the flags shown to the user before saving."""

    owner_id: str
    fields: object  # ContactFields
    front_image: bytes
    back_image: Optional[bytes] = None
    logo_image: Optional[bytes] = None
    is_duplicate: bool = False
    is_partial: bool = False
    warning: bool = False
    extracted_at: datetime = field(default_factory=datetime.now)

    def to_record(self) -> ContactRecord:
        return ContactRecord(owner_id=self.owner_id, **self.fields.scalar_fields())


def is_partial_capture(fields) -> bool:
    """A card is partial when no name or no way of contacting the person was read."""
    has_name = bool(fields.first_name.strip() or fields.last_name.strip())
    has_contact = bool(fields.email.strip() or fields.phone.strip())
    return not (has_name and has_contact)


class ScanPipeline:
    """Runs recognition, duplicate detection and the quota gate around a save."""

    def __init__(
        self,
        classifier,
        store,
        matcher: DuplicateMatcher,
        quota: QuotaGate,
        image_dir: Optional[str | Path] = None,
    ):
        """Initialize the pipeline.

        Args:
            classifier: Image classifier with ``extract`` and ``enrich``
            store: RecordStore for persistence
            matcher: Duplicate matcher bound to the same store
            quota: Quota gate bound to the same store
            image_dir: Where captured images are written; images are not kept if None
        """
        self.classifier = classifier
        self.store = store
        self.matcher = matcher
        self.quota = quota
        self.image_dir = Path(image_dir) if image_dir else None

    def check_quota(self, owner_id: str) -> ScanDecision:
        decision = self.quota.can_scan(owner_id)
        if decision.warning:
            logger.warning(f"Owner {owner_id} is approaching their scan limit")
        return decision

    def process(self, owner_id: str, image_bytes: bytes) -> ScanResult:
        """Extract fields from a still and flag duplicates.

        Raises:
            QuotaExceededError: If the owner is already over their limit
            ClassifierError: If recognition fails
        """
        decision = self.check_quota(owner_id)
        if not decision.allowed:
            raise QuotaExceededError(owner_id, decision.reason or "limit_reached")

        fields = self.classifier.extract(image_bytes)
        result = ScanResult(
            owner_id=owner_id,
            fields=fields,
            front_image=image_bytes,
            warning=decision.warning,
        )
        result.is_partial = is_partial_capture(fields)
        result.is_duplicate = self.matcher.is_duplicate(fields, owner_id)
        if fields.logo_box:
            result.logo_image = crop_logo(image_bytes, fields.logo_box)

        logger.info(
            f"Extracted card for {owner_id}: duplicate={result.is_duplicate} partial={result.is_partial}"
        )
        return result

    def enrich(self, result: ScanResult, back_image: bytes) -> ScanResult:
        """Append notes read from the back side of the card.

        Raises:
            ClassifierError: If the enrichment call fails
        """
        enrichment = self.classifier.enrich(result.fields, back_image)
        if enrichment.notes.strip():
            result.fields.notes = enrichment.notes
        result.back_image = back_image
        return result

    def _write_image(self, image_bytes: Optional[bytes], suffix: str) -> Optional[str]:
        if image_bytes is None or self.image_dir is None:
            return None
        self.image_dir.mkdir(parents=True, exist_ok=True)
        path = self.image_dir / f"{uuid.uuid4().hex}_{suffix}.jpg"
        path.write_bytes(image_bytes)
        return str(path)

    def save(self, result: ScanResult, allow_duplicate: bool = True) -> Optional[ContactRecord]:
        """Persist a reviewed scan after consulting the quota gate.

        Args:
            result: Scan produced by ``process``
            allow_duplicate: Save even if the scan was flagged as a duplicate

        Returns:
            The stored record, or None if skipped as a duplicate

        Raises:
            QuotaExceededError: If the gate denies the save
            RecordStoreError: If the record cannot be stored
            QuotaWriteError: If the record was stored but usage was not recorded
        """
        if result.is_duplicate and not allow_duplicate:
            logger.info(f"Skipping duplicate contact for {result.owner_id}")
            return None

        decision = self.check_quota(result.owner_id)
        if not decision.allowed:
            raise QuotaExceededError(result.owner_id, decision.reason or "limit_reached")

        record = result.to_record()
        record.image_ref = self._write_image(result.front_image, "front")
        record.back_image_ref = self._write_image(result.back_image, "back")
        record.logo_ref = self._write_image(result.logo_image, "logo")
        record.scanned_at = datetime.now()
        self.store.add_contact(record)

        self.quota.increment_usage(result.owner_id)
        logger.info(f"Saved contact {record.id} for {result.owner_id}")
        return record
