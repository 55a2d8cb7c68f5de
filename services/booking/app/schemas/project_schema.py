from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field


class DurationConfig(BaseModel):
    value: float = Field(ge=0, description="Length of the duration", examples=[3])
    unit: Optional[Literal["hours", "days"]] = Field(
        default=None,
        description="hours or days; buffer and preparation default to the execution unit",
        examples=["days"],
    )


class SubprojectConfig(BaseModel):
    name: Optional[str] = Field(default=None, max_length=200)
    execution_duration: Optional[DurationConfig] = None
    buffer_duration: Optional[DurationConfig] = None
    preparation_duration: Optional[DurationConfig] = None


class PostBookingQuestion(BaseModel):
    id: str = Field(description="Stable identifier referenced by the answers")
    question: str = Field(max_length=500)
    type: Literal["text", "multiple_choice", "attachment"] = "text"
    options: List[str] = Field(default_factory=list)
    is_required: bool = False


class ProjectUpsert(BaseModel):
    """Project configuration pushed from the project directory."""
    professional_id: UUID = Field(description="Owning professional")
    title: Optional[str] = Field(default=None, max_length=200)
    status: Literal["draft", "pending", "published", "on_hold", "rejected"] = "draft"
    execution_duration: Optional[DurationConfig] = None
    buffer_duration: Optional[DurationConfig] = None
    preparation_duration: Optional[DurationConfig] = None
    resources: List[UUID] = Field(default_factory=list, description="Employees and professionals that can be assigned")
    min_resources: Optional[int] = Field(default=None, ge=1)
    subprojects: List[SubprojectConfig] = Field(default_factory=list)
    post_booking_questions: List[PostBookingQuestion] = Field(default_factory=list)


class ProjectOut(BaseModel):
    id: UUID
    professional_id: UUID
    title: Optional[str]
    status: str
    execution_duration: Optional[dict]
    buffer_duration: Optional[dict]
    preparation_duration: Optional[dict]
    resources: List[str]
    min_resources: Optional[int]
    subprojects: List[dict]
    post_booking_questions: List[dict]

    model_config = ConfigDict(from_attributes=True)


class ScheduleWindowOut(BaseModel):
    start: datetime
    execution_end: datetime
    buffer_start: Optional[datetime]
    buffer_end: datetime
    buffer_unit: Optional[str]
    start_time: Optional[str]
    end_time: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class ScheduleProposalOut(BaseModel):
    earliest_bookable: datetime
    execution_unit: str
    window: ScheduleWindowOut
    assigned_resources: List[UUID]
