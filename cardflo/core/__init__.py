"""Core business logic - capture, duplicate matching and quotas."""

from .models import Account, ContactRecord, SubscriptionTier, UsageCounter
from .capture import AutoCaptureEngine, CaptureState
from .matcher import DuplicateMatcher
from .quota import QuotaGate

__all__ = [
    "Account",
    "ContactRecord",
    "SubscriptionTier",
    "UsageCounter",
    "AutoCaptureEngine",
    "CaptureState",
    "DuplicateMatcher",
    "QuotaGate",
]
