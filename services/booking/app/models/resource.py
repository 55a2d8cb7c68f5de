import uuid
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base
from app.models.types import JSONType


class ResourceKind:
    PROFESSIONAL = "professional"
    EMPLOYEE = "employee"

    ALL = (PROFESSIONAL, EMPLOYEE)


class BlockType:
    MANUAL = "manual"
    EXECUTION = "execution"
    BUFFER = "buffer"

    ALL = (MANUAL, EXECUTION, BUFFER)


BOOKING_TAG_PREFIX = "project-booking:"


def booking_tag(booking_id) -> str:
    return f"{BOOKING_TAG_PREFIX}{booking_id}"


class Resource(Base):
    """A professional or employee whose calendar can be reserved.

    Professionals use their own user id as resource id; employees point at
    the professional that employs them through ``owner_id``.
    ``availability_schedule`` maps weekday names to "HH:MM-HH:MM" ranges in
    the resource's ``timezone``; an empty schedule means always available.
    """

    __tablename__ = "resources"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    kind = Column(String(20), nullable=False, default=ResourceKind.PROFESSIONAL)
    owner_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    display_name = Column(String(200), nullable=True)
    availability_schedule = Column(JSONType, nullable=False, default=dict)
    timezone = Column(String(64), nullable=False, default="UTC")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    blocked_ranges = relationship(
        "ResourceBlockedRange",
        back_populates="resource",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ResourceBlockedRange(Base):
    __tablename__ = "resource_blocked_ranges"
    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="ck_blocked_ranges_start_before_end"),
        Index("ix_blocked_ranges_resource_interval", "resource_id", "start_date", "end_date"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    resource_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    # free text for manual blocks, "project-booking:<id>" for booking blocks
    reason = Column(Text, nullable=True, index=True)
    booking_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    block_type = Column(String(20), nullable=False, default=BlockType.MANUAL)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    resource = relationship("Resource", back_populates="blocked_ranges")
