"""Data models for contact records, usage counters and accounts."""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Optional


class SubscriptionTier(str, Enum):
    STARTER = "starter"
    LITE = "lite"
    STANDARD = "standard"
    PRO = "pro"
    TEAM = "team"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SubscriptionTier":
        """Map a stored tier name to a tier, defaulting to starter."""
        if not value:
            return cls.STARTER
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.STARTER


@dataclass(frozen=True)
class PlanLimits:
    scan_limit: int
    allow_export: bool
    team_member_cap: int


PLAN_LIMITS: dict[SubscriptionTier, PlanLimits] = {
    SubscriptionTier.STARTER: PlanLimits(scan_limit=10, allow_export=False, team_member_cap=1),
    SubscriptionTier.LITE: PlanLimits(scan_limit=40, allow_export=True, team_member_cap=1),
    SubscriptionTier.STANDARD: PlanLimits(scan_limit=150, allow_export=True, team_member_cap=1),
    SubscriptionTier.PRO: PlanLimits(scan_limit=600, allow_export=True, team_member_cap=1),
    SubscriptionTier.TEAM: PlanLimits(scan_limit=1000, allow_export=True, team_member_cap=5),
}

# Scalar fields copied between contact records, extraction results and merges
CONTACT_FIELDS = (
    "first_name",
    "last_name",
    "job_title",
    "company",
    "email",
    "phone",
    "website",
    "address",
    "notes",
)


def as_local_time(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive local time. Naive values pass through."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp (a trailing "Z" is accepted) as naive local time."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return as_local_time(datetime.fromisoformat(value))


def _format_dt(value: Optional[datetime]) -> Optional[str]:
    return as_local_time(value).isoformat() if value else None


@dataclass
class ContactRecord:
    """A stored business card contact.

    Field values are free text; normalization only happens inside matching.
    """

    owner_id: str
    first_name: str = ""
    last_name: str = ""
    job_title: str = ""
    company: str = ""
    email: str = ""
    phone: str = ""
    website: str = ""
    address: str = ""
    notes: str = ""
    image_ref: Optional[str] = None
    back_image_ref: Optional[str] = None
    logo_ref: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    scanned_at: Optional[datetime] = None

    def __setattr__(self, name, value):
        if name == "owner_id" and getattr(self, "owner_id", None) not in (None, value):
            raise AttributeError("owner_id cannot be changed once set")
        super().__setattr__(name, value)

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email or self.phone or "(unnamed)"

    def merged_with(self, other: "ContactRecord") -> "ContactRecord":
        """Return a copy with blank scalar fields filled in from ``other``."""
        updates = {
            name: getattr(other, name)
            for name in CONTACT_FIELDS
            if not getattr(self, name).strip() and getattr(other, name).strip()
        }
        return replace(self, **updates)

    def to_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["created_at"] = _format_dt(self.created_at)
        data["scanned_at"] = _format_dt(self.scanned_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ContactRecord":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["created_at"] = parse_timestamp(data.get("created_at"))
        values["scanned_at"] = parse_timestamp(data.get("scanned_at"))
        return cls(**values)


@dataclass
class UsageCounter:
    """Scan usage accumulated over one billing cycle."""

    owner_id: str
    scans_count: int = 0
    cycle_start: Optional[datetime] = None
    cycle_end: Optional[datetime] = None
    bonus_scans: int = 0
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.scans_count < 0:
            raise ValueError("scans_count cannot be negative")
        self.cycle_start = as_local_time(self.cycle_start)
        self.cycle_end = as_local_time(self.cycle_end)
        self.created_at = as_local_time(self.created_at)

    def has_ended(self, now: datetime) -> bool:
        return self.cycle_end is not None and self.cycle_end <= now


@dataclass
class Account:
    """Per-owner billing profile consulted by the quota gate."""

    owner_id: str
    tier: SubscriptionTier = SubscriptionTier.STARTER
    is_admin: bool = False
    custom_scan_limit: Optional[int] = None
    billing_cycle_end: Optional[datetime] = None

    def __post_init__(self):
        self.billing_cycle_end = as_local_time(self.billing_cycle_end)

    @property
    def limits(self) -> PlanLimits:
        return PLAN_LIMITS[self.tier]


@dataclass
class StoreStats:
    today: int = 0
    total: int = 0


@dataclass
class DuplicatePair:
    """Two stored records believed to describe the same contact."""

    first: ContactRecord
    second: ContactRecord
    reasons: list[str] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return pair_key(self.first.id, self.second.id)

    def involves(self, record_id: str) -> bool:
        return record_id in self.key


def pair_key(a: str, b: str) -> tuple[str, str]:
    """Canonical key for a pair of record ids, independent of order."""
    return (a, b) if a <= b else (b, a)
