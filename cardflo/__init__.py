"""Cardflo - business card autocapture, duplicate detection and scan quotas.

Package structure:
    cardflo/
    ├── cli.py              # Command-line interface
    ├── config.py           # Settings from env / YAML
    ├── logger.py           # Logging setup
    ├── core/               # Core business logic
    │   ├── models.py       # Data models (ContactRecord, UsageCounter, tiers)
    │   ├── errors.py       # Exception hierarchy
    │   ├── camera.py       # OpenCV video source
    │   ├── sampler.py      # Frame snapshots and stills
    │   ├── capture.py      # Autocapture state machine
    │   ├── matcher.py      # Duplicate detection
    │   ├── quota.py        # Scan allowance gate
    │   └── pipeline.py     # Capture -> extract -> dedupe -> save
    ├── storage/            # Data persistence
    │   └── database.py     # SQLite record store
    └── api/                # External integrations
        ├── schemas.py      # Classifier response models
        └── classifier_api.py # Image classifier client
"""

from .core.models import (
    Account,
    ContactRecord,
    DuplicatePair,
    PLAN_LIMITS,
    SubscriptionTier,
    UsageCounter,
)
from .core.capture import AutoCaptureEngine, CaptureConfig, CaptureSession, CaptureState
from .core.sampler import FrameSampler
from .core.matcher import DuplicateMatcher, DuplicateReport
from .core.quota import QuotaGate, ScanDecision
from .core.pipeline import ScanPipeline, ScanResult
from .storage.database import RecordStore
from .api.classifier_api import ClassifierAPI, MockClassifierAPI
from .api.schemas import ContactFields, DetectionResult

__all__ = [
    # Models
    "Account",
    "ContactRecord",
    "DuplicatePair",
    "PLAN_LIMITS",
    "SubscriptionTier",
    "UsageCounter",
    # Capture
    "AutoCaptureEngine",
    "CaptureConfig",
    "CaptureSession",
    "CaptureState",
    "FrameSampler",
    # Matching / quota
    "DuplicateMatcher",
    "DuplicateReport",
    "QuotaGate",
    "ScanDecision",
    "ScanPipeline",
    "ScanResult",
    # Storage
    "RecordStore",
    # API
    "ClassifierAPI",
    "MockClassifierAPI",
    "ContactFields",
    "DetectionResult",
]
