"""Availability schemas."""

from __future__ import annotations

from datetime import date, datetime, time
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.core.config import get_settings
from app.modules.availability.engine import WEEKDAYS, format_clock, parse_clock


class TimeWindowIn(BaseModel):
    """One availability window, HH:MM in the tutor's timezone."""

    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def validate_clock(cls, value: str) -> str:
        return format_clock(parse_clock(value))

    @model_validator(mode="after")
    def validate_bounds(self) -> "TimeWindowIn":
        settings = get_settings()
        if self.start >= self.end:
            raise ValueError(f"Window {self.start}-{self.end} must start before it ends")
        if self.start < settings.business_hours_start or self.end > settings.business_hours_end:
            raise ValueError(
                f"Window {self.start}-{self.end} is outside business hours "
                f"{settings.business_hours_start}-{settings.business_hours_end}",
            )
        return self


class AvailabilityTemplateUpdate(BaseModel):
    """Replace the weekly availability template of a tutor."""

    windows: dict[str, list[TimeWindowIn]] = Field(default_factory=dict)

    @field_validator("windows")
    @classmethod
    def validate_days(cls, value: dict[str, list[TimeWindowIn]]) -> dict[str, list[TimeWindowIn]]:
        normalized: dict[str, list[TimeWindowIn]] = {}
        for weekday, windows in value.items():
            key = weekday.strip().lower()
            if key not in WEEKDAYS:
                raise ValueError(f"Unknown weekday {weekday!r}")
            if key in normalized:
                raise ValueError(f"Weekday {key} is listed twice")

            ordered = sorted(windows, key=lambda window: window.start)
            for previous, current in zip(ordered, ordered[1:]):
                if current.start < previous.end:
                    raise ValueError(
                        f"Windows {previous.start}-{previous.end} and "
                        f"{current.start}-{current.end} overlap on {key}",
                    )
            normalized[key] = ordered
        return normalized


class AvailabilityTemplateRead(BaseModel):
    """Weekly availability template response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tutor_id: UUID
    windows: dict[str, list[dict[str, str]]]
    updated_at: datetime


class SlotRead(BaseModel):
    """Generated slot response schema."""

    model_config = ConfigDict(from_attributes=True)

    day: date
    start: time
    end: time
    available: bool
    tutor_id: UUID
    start_at: datetime
    end_at: datetime
