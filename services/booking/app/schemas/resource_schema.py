from datetime import datetime
from typing import Dict, List, Literal, Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from app.services.availability import WEEKDAY_KEYS, is_known_zone, parse_schedule_entry


class ResourceUpsert(BaseModel):
    """Professional or employee pushed from the user directory."""
    kind: Literal["professional", "employee"] = "professional"
    owner_id: Optional[UUID] = Field(default=None, description="Employing professional (employees only)")
    display_name: Optional[str] = Field(default=None, max_length=200)
    availability_schedule: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Working hours per weekday in the resource's timezone; empty means always available",
        examples=[{"monday": ["09:00-12:00", "13:00-17:00"], "tuesday": ["09:00-17:00"]}],
    )
    timezone: str = Field(default="UTC", max_length=64, examples=["Europe/Brussels"])

    @field_validator("availability_schedule")
    @classmethod
    def check_schedule(cls, value):
        schedule = {}
        for day, entries in value.items():
            key = day.lower()
            if key not in WEEKDAY_KEYS:
                raise ValueError(f"Unknown weekday {day!r}")
            for entry in entries:
                parse_schedule_entry(entry)
            schedule[key] = entries
        return schedule

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value):
        if not is_known_zone(value):
            raise ValueError(f"Unknown timezone {value!r}")
        return value


class ResourceOut(BaseModel):
    id: UUID
    kind: str
    owner_id: Optional[UUID]
    display_name: Optional[str]
    availability_schedule: Dict[str, List[str]]
    timezone: str

    model_config = ConfigDict(from_attributes=True)


class BlockedRangeCreate(BaseModel):
    """Manual unavailability declared by the resource owner."""
    start_date: datetime = Field(description="Start of the blocked range (UTC)", examples=["2025-03-10T00:00:00Z"])
    end_date: datetime = Field(description="End of the blocked range (UTC)", examples=["2025-03-12T00:00:00Z"])
    reason: Optional[str] = Field(default=None, max_length=500, examples=["Holiday"])

    @model_validator(mode="after")
    def check_interval(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class BlockedRangeOut(BaseModel):
    id: UUID
    resource_id: UUID
    start_date: datetime
    end_date: datetime
    reason: Optional[str]
    booking_id: Optional[UUID]
    block_type: str
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)
