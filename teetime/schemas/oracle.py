"""Structured output contracts for every oracle call.

The model is asked to answer with a JSON object matching one of these
models; anything that fails validation is treated like a timeout.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class FlowName(str, Enum):
    BOOKING_NEW = "booking-new"
    BOOKING_STATUS = "booking-status"
    CANCEL_BOOKING = "cancel-booking"
    MODIFY_BOOKING = "modify-booking"
    ONBOARDING = "onboarding"
    SUPPORT = "support"


class RouterFlow(str, Enum):
    BOOKING_NEW = "booking-new"
    BOOKING_STATUS = "booking-status"
    CANCEL_BOOKING = "cancel-booking"
    MODIFY_BOOKING = "modify-booking"
    FAQ = "faq"
    SUPPORT = "support"
    CLARIFY = "clarify"


class RouterClassification(BaseModel):
    flow: RouterFlow
    confidence: float = Field(ge=0.0, le=1.0)


def _blank_to_none(value):
    if isinstance(value, str):
        value = value.strip()
        if not value or value.lower() in {"null", "unknown", "n/a"}:
            return None
    return value


class BookingFields(BaseModel):
    club: Optional[str] = None
    location: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    players: Optional[int] = None
    guest_names: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("club", "location", "date", "time", "guest_names", "notes", mode="before")
    @classmethod
    def clean_text(cls, value):
        return _blank_to_none(value)

    @field_validator("players", mode="before")
    @classmethod
    def coerce_players(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return int(value) if value.isdigit() else None
        return value


class LookupFields(BaseModel):
    reference: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    club: Optional[str] = None

    @field_validator("reference", "date", "time", "club", mode="before")
    @classmethod
    def clean_text(cls, value):
        return _blank_to_none(value)


class ModifyFields(LookupFields):
    requested_changes: Optional[str] = None

    @field_validator("requested_changes", mode="before")
    @classmethod
    def clean_changes(cls, value):
        return _blank_to_none(value)


class OnboardingFields(BaseModel):
    name: Optional[str] = None
    timezone: Optional[str] = None
    favorite_club: Optional[str] = None
    favorite_location: Optional[str] = None

    @field_validator("name", "timezone", "favorite_club", "favorite_location", mode="before")
    @classmethod
    def clean_text(cls, value):
        return _blank_to_none(value)


class SupportFields(BaseModel):
    summary: Optional[str] = None

    @field_validator("summary", mode="before")
    @classmethod
    def clean_text(cls, value):
        return _blank_to_none(value)


class ValidationIssue(BaseModel):
    field: str
    message: str


class ValidationReport(BaseModel):
    issues: List[ValidationIssue] = Field(default_factory=list)


class OptionChoice(BaseModel):
    """Index into the offered options, or null when none fits."""

    index: Optional[int] = None


class CourseCorrectionVerdict(BaseModel):
    is_correction: bool
