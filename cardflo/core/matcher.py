"""Fuzzy duplicate detection for contact records.

Signals are checked strongest first and the first hit wins:

1. exact email (case-insensitive, trimmed), via a targeted store lookup
2. phone digits, either number containing the other (7+ digits each)
3. first/last name, swap tolerant, confirmed only when companies are
   compatible (one side blank, or one contains the other)
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

from .errors import RecordStoreError
from .models import ContactRecord, DuplicatePair, pair_key

logger = logging.getLogger(__name__)

DEFAULT_MAX_SCAN_RECORDS = 1000
MIN_PHONE_DIGITS = 7
MIN_JOINED_NAME_LENGTH = 5

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_NON_DIGIT_RE = re.compile(r"\D")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


class ContactLike(Protocol):
    first_name: str
    last_name: str
    company: str
    email: str
    phone: str


def normalize_email(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def is_email_like(value: str) -> bool:
    return bool(_EMAIL_RE.match(value))


def normalize_phone(value: Optional[str]) -> str:
    return _NON_DIGIT_RE.sub("", value or "")


def normalize_name(value: Optional[str]) -> str:
    return _NON_ALNUM_RE.sub("", (value or "").lower())


def emails_match(a: ContactLike, b: ContactLike) -> bool:
    email = normalize_email(a.email)
    return bool(email) and is_email_like(email) and email == normalize_email(b.email)


def phones_match(a: ContactLike, b: ContactLike) -> bool:
    pa, pb = normalize_phone(a.phone), normalize_phone(b.phone)
    if len(pa) < MIN_PHONE_DIGITS or len(pb) < MIN_PHONE_DIGITS:
        return False
    return pa in pb or pb in pa


def names_match(a: ContactLike, b: ContactLike) -> bool:
    first_a, last_a = normalize_name(a.first_name), normalize_name(a.last_name)
    first_b, last_b = normalize_name(b.first_name), normalize_name(b.last_name)
    if not (first_a and last_a and first_b and last_b):
        return False

    if first_a == first_b and last_a == last_b:
        return True
    if first_a == last_b and last_a == first_b:
        return True
    joined = first_a + last_a
    return len(joined) > MIN_JOINED_NAME_LENGTH and joined == first_b + last_b


def companies_compatible(a: ContactLike, b: ContactLike) -> bool:
    ca, cb = normalize_name(a.company), normalize_name(b.company)
    if not ca or not cb:
        return True
    return ca in cb or cb in ca


def match_reason(a: ContactLike, b: ContactLike, check_email: bool = True) -> Optional[str]:
    """Name the first duplicate signal shared by two records, or None."""
    if check_email and emails_match(a, b):
        return "email"
    if phones_match(a, b):
        return "phone"
    if names_match(a, b) and companies_compatible(a, b):
        return "name"
    return None


@dataclass
class DuplicateReport:
    """Pending duplicate pairs for one owner.

    Dismissed and resolved pair keys are remembered so they never reappear
    in this report.
    """

    owner_id: str
    pairs: list[DuplicatePair] = field(default_factory=list)
    dismissed: set[tuple[str, str]] = field(default_factory=set)
    resolved: set[tuple[str, str]] = field(default_factory=set)

    def __len__(self) -> int:
        return len(self.pairs)

    def __iter__(self):
        return iter(self.pairs)

    def get(self, a: str, b: str) -> Optional[DuplicatePair]:
        key = pair_key(a, b)
        return next((p for p in self.pairs if p.key == key), None)

    def dismiss(self, a: str, b: str) -> None:
        key = pair_key(a, b)
        self.dismissed.add(key)
        self.pairs = [p for p in self.pairs if p.key != key]

    def resolve(self, keep_id: str, drop_id: str) -> None:
        """Drop every pending pair that references either merged id."""
        self.resolved.add(pair_key(keep_id, drop_id))
        self.pairs = [
            p for p in self.pairs
            if not p.involves(keep_id) and not p.involves(drop_id)
        ]


class DuplicateMatcher:
    """Decides whether a contact already exists in an owner's record set."""

    def __init__(self, store, max_records: int = DEFAULT_MAX_SCAN_RECORDS):
        """Initialize the matcher.

        Args:
            store: RecordStore used for email lookups and record scans
            max_records: Upper bound on records considered per check
        """
        if max_records < 1:
            raise ValueError("max_records must be positive")
        self.store = store
        self.max_records = max_records

    def is_duplicate(
        self,
        candidate: ContactLike,
        owner_id: str,
        records: Optional[Iterable[ContactRecord]] = None,
    ) -> bool:
        """Check a freshly parsed record against the owner's stored records.

        Store failures degrade to "no duplicate" so the capture flow keeps
        going.

        Args:
            candidate: Parsed contact fields (not yet persisted)
            owner_id: Owner whose records are searched
            records: Historical records; fetched from the store when omitted

        Returns:
            True if any stored record matches
        """
        try:
            return self._find_match(candidate, owner_id, records) is not None
        except RecordStoreError as e:
            logger.warning(f"Duplicate check failed, assuming no duplicate: {e}")
            return False

    def _find_match(
        self,
        candidate: ContactLike,
        owner_id: str,
        records: Optional[Iterable[ContactRecord]],
    ) -> Optional[ContactRecord]:
        candidate_id = getattr(candidate, "id", None)
        email = normalize_email(candidate.email)
        if email and is_email_like(email):
            hits = [
                r for r in self.store.find_by_email(owner_id, email)
                if not candidate_id or r.id != candidate_id
            ]
            if hits:
                logger.debug(f"Duplicate by email for owner {owner_id}")
                return hits[0]

        if records is None:
            records = self.store.list_contacts(owner_id, limit=self.max_records)

        for index, record in enumerate(records):
            if index >= self.max_records:
                break
            if record.owner_id != owner_id or (candidate_id and record.id == candidate_id):
                continue
            reason = match_reason(candidate, record, check_email=False)
            if reason:
                logger.debug(f"Duplicate by {reason} for owner {owner_id}: {record.id}")
                return record
        return None

    def find_duplicate_pairs(self, owner_id: str) -> DuplicateReport:
        """Compare every pair of an owner's records and report likely duplicates.

        Pairs dismissed earlier are excluded.
        """
        dismissed = self.store.dismissed_pairs(owner_id)
        records = self.store.list_contacts(owner_id, limit=self.max_records)
        report = DuplicateReport(owner_id=owner_id, dismissed=set(dismissed))

        for i, first in enumerate(records):
            for second in records[i + 1:]:
                if pair_key(first.id, second.id) in dismissed:
                    continue
                reason = match_reason(first, second)
                if reason:
                    report.pairs.append(DuplicatePair(first, second, reasons=[reason]))

        logger.info(f"Found {len(report)} duplicate pair(s) among {len(records)} records")
        return report

    def dismiss_pair(self, report: DuplicateReport, a: str, b: str) -> None:
        """Mark a pair as not-a-duplicate, in the report and in the store."""
        self.store.dismiss_pair(report.owner_id, a, b)
        report.dismiss(a, b)

    def merge_pair(self, report: DuplicateReport, keep_id: str, drop_id: str) -> ContactRecord:
        """Merge ``drop_id`` into ``keep_id`` and delete the dropped record.

        Blank fields of the kept record are filled from the dropped one.

        Raises:
            KeyError: If the pair is not pending in the report
        """
        pair = report.get(keep_id, drop_id)
        if pair is None:
            raise KeyError(f"No pending duplicate pair for {keep_id} and {drop_id}")

        keep, drop = (pair.first, pair.second) if pair.first.id == keep_id else (pair.second, pair.first)
        merged = keep.merged_with(drop)
        if merged != keep:
            self.store.update_contact(merged)
        self.store.delete_contact(drop.id)
        report.resolve(keep_id, drop_id)
        logger.info(f"Merged contact {drop_id} into {keep_id}")
        return merged
