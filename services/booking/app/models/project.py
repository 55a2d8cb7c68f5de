from sqlalchemy import Column, DateTime, Integer, String, Uuid
from sqlalchemy.sql import func
from app.core.database import Base
from app.models.types import JSONType


class ProjectStatus:
    DRAFT = "draft"
    PENDING = "pending"
    PUBLISHED = "published"
    ON_HOLD = "on_hold"
    REJECTED = "rejected"

    ALL = (DRAFT, PENDING, PUBLISHED, ON_HOLD, REJECTED)
    BOOKABLE = frozenset({PUBLISHED})


class Project(Base):
    """Project configuration mirrored from the project directory.

    Durations are stored as ``{"value": <number>, "unit": "hours" | "days"}``;
    each subproject may override ``execution_duration``, ``buffer_duration``
    and ``preparation_duration``.
    """

    __tablename__ = "projects"

    id = Column(Uuid(as_uuid=True), primary_key=True)
    professional_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    title = Column(String(200), nullable=True)
    status = Column(String(20), nullable=False, default=ProjectStatus.DRAFT)
    execution_duration = Column(JSONType, nullable=True)
    buffer_duration = Column(JSONType, nullable=True)
    preparation_duration = Column(JSONType, nullable=True)
    resources = Column(JSONType, nullable=False, default=list)
    min_resources = Column(Integer, nullable=True)
    subprojects = Column(JSONType, nullable=False, default=list)
    post_booking_questions = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
