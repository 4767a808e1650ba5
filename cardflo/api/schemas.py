"""Pydantic schemas for image classifier responses."""
import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator, model_validator

from ..core.models import CONTACT_FIELDS


class DetectionResult(BaseModel):
    """Response of the steadiness check."""
    is_steady: StrictBool
    card_present: StrictBool


class ContactFields(BaseModel):
    """Structured fields extracted from a business card image.

    Accepts either camelCase (classifier wire format) or snake_case keys.
    """
    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    job_title: str = Field(alias="jobTitle")
    company: str
    email: str
    phone: str
    website: str
    address: str
    notes: str
    normalized_phone: Optional[str] = Field(default=None, alias="normalizedPhone")
    logo_box: Optional[list[int]] = None
    card_box: Optional[list[int]] = None

    @field_validator("logo_box", "card_box")
    @classmethod
    def _check_box(cls, box: Optional[list[int]]) -> Optional[list[int]]:
        if box is None:
            return None
        if len(box) != 4:
            raise ValueError("bounding box must have four coordinates")
        if any(v < 0 or v > 1000 for v in box):
            raise ValueError("bounding box coordinates must be within 0-1000")
        return box

    @model_validator(mode="after")
    def _fill_normalized_phone(self) -> "ContactFields":
        if self.normalized_phone:
            self.normalized_phone = re.sub(r"[\s\-().]", "", self.normalized_phone)
        elif self.phone:
            self.normalized_phone = re.sub(r"[\s\-().]", "", self.phone)
        return self

    def scalar_fields(self) -> dict:
        return {name: getattr(self, name) for name in CONTACT_FIELDS}


class EnrichmentResult(BaseModel):
    """Notes gathered from the back side of a card."""
    notes: str
