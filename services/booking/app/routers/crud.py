from typing import List, Optional
from uuid import UUID
from sqlalchemy import or_, select
from sqlalchemy.orm import Session
from app.models.booking import Booking
from app.models.project import Project
from app.models.resource import Resource, ResourceBlockedRange, ResourceKind
from app.schemas.project_schema import ProjectUpsert
from app.schemas.resource_schema import ResourceUpsert
from app.services.actors import Actor


def list_bookings(
    db: Session,
    actor: Actor,
    status: Optional[str] = None,
    booking_type: Optional[str] = None,
    project_id: Optional[UUID] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Booking]:
    query = db.query(Booking)
    if not actor.is_admin:
        owned_projects = select(Project.id).where(Project.professional_id == actor.id)
        query = query.filter(
            or_(
                Booking.customer_id == actor.id,
                Booking.professional_id == actor.id,
                Booking.project_id.in_(owned_projects),
            )
        )
    if status:
        query = query.filter(Booking.status == status)
    if booking_type:
        query = query.filter(Booking.booking_type == booking_type)
    if project_id:
        query = query.filter(Booking.project_id == project_id)
    return query.order_by(Booking.created_at.desc()).offset(offset).limit(limit).all()


def get_project(db: Session, project_id: UUID) -> Optional[Project]:
    return db.query(Project).filter(Project.id == project_id).first()


def ensure_resource(
    db: Session,
    resource_id: UUID,
    *,
    kind: str,
    owner_id: Optional[UUID] = None,
) -> Resource:
    resource = db.get(Resource, resource_id)
    if resource is None:
        resource = Resource(id=resource_id, kind=kind, owner_id=owner_id)
        db.add(resource)
    return resource


def upsert_resource(db: Session, resource_id: UUID, payload: ResourceUpsert) -> Resource:
    """Store the directory's view of a professional or employee, working hours included."""
    resource = ensure_resource(db, resource_id, kind=payload.kind, owner_id=payload.owner_id)
    for field, value in payload.model_dump().items():
        setattr(resource, field, value)
    db.commit()
    db.refresh(resource)
    return resource


def upsert_project(db: Session, project_id: UUID, payload: ProjectUpsert) -> Project:
    """Store the directory's view of a project and make its resources reservable."""
    data = payload.model_dump(mode="json")
    project = get_project(db, project_id)
    if project is None:
        project = Project(id=project_id)
        db.add(project)
    for field, value in data.items():
        setattr(project, field, value)
    project.professional_id = payload.professional_id

    ensure_resource(db, payload.professional_id, kind=ResourceKind.PROFESSIONAL)
    for resource_id in payload.resources:
        if resource_id == payload.professional_id:
            continue
        ensure_resource(db, resource_id, kind=ResourceKind.EMPLOYEE, owner_id=payload.professional_id)

    db.commit()
    db.refresh(project)
    return project


def list_blocked_ranges(db: Session, resource_id: UUID) -> List[ResourceBlockedRange]:
    return (
        db.query(ResourceBlockedRange)
        .filter(ResourceBlockedRange.resource_id == resource_id)
        .order_by(ResourceBlockedRange.start_date.asc())
        .all()
    )
