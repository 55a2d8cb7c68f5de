from datetime import datetime, timezone
from uuid import uuid4

from app.models.booking import BookingStatus, BookingType, PaymentStatus
from app.models.resource import BlockType, ResourceBlockedRange, booking_tag
from app.services import blocking, lifecycle
from app.services.actors import Actor, Role
from app.services.blocking import TimeRange
from app.services.results import Outcome
from app.services.scheduling import window_from_booking


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def _project_booking(make_project, make_booking, status=BookingStatus.PAYMENT_PENDING, **overrides):
    project = make_project()
    booking = make_booking(
        status=status,
        booking_type=BookingType.PROJECT,
        project_id=project.id,
        professional_id=project.professional_id,
        scheduled_start_date=_utc(2024, 2, 1),
        scheduled_execution_end_date=_utc(2024, 2, 4),
        scheduled_buffer_start_date=_utc(2024, 2, 4),
        scheduled_buffer_end_date=_utc(2024, 2, 5),
        scheduled_buffer_unit="days",
        assigned_team_members=[str(project.professional_id)],
        **overrides,
    )
    return project, booking


def _tagged(db, booking_id):
    return db.query(ResourceBlockedRange).filter(ResourceBlockedRange.reason == booking_tag(booking_id)).all()


# =====================================================================
# TimeRange
# =====================================================================

def test_ranges_touching_at_an_endpoint_do_not_overlap():
    first = TimeRange(_utc(2024, 2, 1), _utc(2024, 2, 5))
    assert first.overlaps(TimeRange(_utc(2024, 2, 3), _utc(2024, 2, 6)))
    assert not first.overlaps(TimeRange(_utc(2024, 2, 5), _utc(2024, 2, 6)))
    assert not TimeRange(_utc(2024, 1, 30), _utc(2024, 2, 1)).overlaps(first)


# =====================================================================
# Reserve / release
# =====================================================================

def test_reserve_is_idempotent(db_session, make_project, make_booking):
    project, booking = _project_booking(make_project, make_booking)
    window = window_from_booking(booking)

    first = blocking.reserve(db_session, [project.professional_id], window, booking.id)
    second = blocking.reserve(db_session, [project.professional_id], window, booking.id)
    db_session.commit()

    assert len(first.value) == 2
    assert second.value == []
    entries = _tagged(db_session, booking.id)
    assert sorted(entry.block_type for entry in entries) == [BlockType.BUFFER, BlockType.EXECUTION]


def test_reserve_skips_unknown_resource_with_warning(db_session, make_project, make_booking):
    project, booking = _project_booking(make_project, make_booking)
    missing = uuid4()

    result = blocking.reserve(db_session, [missing, project.professional_id], window_from_booking(booking), booking.id)

    assert result.ok
    assert len(result.warnings) == 1
    assert str(missing) in result.warnings[0]
    assert len(result.value) == 2


def test_release_without_blocks_is_a_no_op(db_session):
    assert blocking.release(db_session, uuid4()) == 0


def test_release_keeps_manual_blocks(db_session, make_project, make_booking):
    project, booking = _project_booking(make_project, make_booking)
    blocking.reserve(db_session, [project.professional_id], window_from_booking(booking), booking.id)
    db_session.add(
        ResourceBlockedRange(
            resource_id=project.professional_id,
            start_date=_utc(2024, 3, 1),
            end_date=_utc(2024, 3, 2),
            reason="Dentist",
        )
    )
    db_session.commit()

    assert blocking.release(db_session, booking.id) == 2
    db_session.commit()

    remaining = blocking.list_blocking(db_session, project.professional_id)
    assert [item.reason for item in remaining] == ["Dentist"]


def test_booked_transition_reserves_and_cancel_releases(ctx, make_project, make_booking):
    project, booking = _project_booking(make_project, make_booking)

    booked = lifecycle.transition_booking(ctx, booking, BookingStatus.BOOKED)
    ctx.db.commit()
    assert booked.ok
    assert len(_tagged(ctx.db, booking.id)) == 2

    lifecycle.transition_booking(ctx, booking, BookingStatus.IN_PROGRESS)
    ctx.db.commit()
    assert len(_tagged(ctx.db, booking.id)) == 2

    lifecycle.transition_booking(ctx, booking, BookingStatus.CANCELLED)
    ctx.db.commit()
    assert _tagged(ctx.db, booking.id) == []


def test_reserve_reports_conflict_written_after_scheduling(ctx, make_project, make_booking):
    project, booking = _project_booking(make_project, make_booking)
    ctx.db.add(
        ResourceBlockedRange(
            resource_id=project.professional_id,
            start_date=_utc(2024, 2, 2),
            end_date=_utc(2024, 2, 3),
            reason="Sick leave",
        )
    )
    ctx.db.commit()

    result = lifecycle.transition_booking(ctx, booking, BookingStatus.BOOKED)
    ctx.db.commit()

    assert result.ok
    assert booking.status == BookingStatus.BOOKED
    assert "Sick leave" in result.warnings[0]
    assert _tagged(ctx.db, booking.id) == []


def test_second_booking_for_same_window_is_not_reserved(ctx, make_project, make_booking):
    project = make_project()
    window = dict(
        booking_type=BookingType.PROJECT,
        project_id=project.id,
        professional_id=project.professional_id,
        scheduled_start_date=_utc(2024, 2, 1),
        scheduled_execution_end_date=_utc(2024, 2, 4),
        scheduled_buffer_start_date=_utc(2024, 2, 4),
        scheduled_buffer_end_date=_utc(2024, 2, 5),
        scheduled_buffer_unit="days",
        assigned_team_members=[str(project.professional_id)],
    )
    first = make_booking(status=BookingStatus.PAYMENT_PENDING, **window)
    second = make_booking(status=BookingStatus.PAYMENT_PENDING, **window)

    booked_first = lifecycle.transition_booking(ctx, first, BookingStatus.BOOKED)
    ctx.db.commit()
    assert booked_first.ok
    assert booked_first.warnings == []
    assert len(_tagged(ctx.db, first.id)) == 2

    booked_second = lifecycle.transition_booking(ctx, second, BookingStatus.BOOKED)
    ctx.db.commit()
    assert booked_second.ok
    assert "conflicts" in booked_second.warnings[0]
    assert _tagged(ctx.db, second.id) == []


def test_completion_releases_blocks(ctx, make_project, make_booking):
    project, booking = _project_booking(
        make_project, make_booking, status=BookingStatus.IN_PROGRESS, payment_status=PaymentStatus.COMPLETED
    )
    blocking.reserve(ctx.db, [project.professional_id], window_from_booking(booking), booking.id)
    ctx.db.commit()

    lifecycle.transition_booking(ctx, booking, BookingStatus.COMPLETED)
    ctx.db.commit()

    assert _tagged(ctx.db, booking.id) == []


# =====================================================================
# Manual blocks
# =====================================================================

def test_owner_manages_manual_blocks(db_session, make_project):
    project = make_project()
    owner = Actor(id=project.professional_id, role=Role.PROFESSIONAL)

    added = blocking.add_manual_block(
        db_session, project.professional_id, _utc(2024, 3, 1), _utc(2024, 3, 3), "Holiday", owner
    )
    db_session.commit()
    assert added.ok

    removed = blocking.remove_manual_block(db_session, project.professional_id, added.value.id, owner)
    db_session.commit()
    assert removed.ok
    assert blocking.list_blocking(db_session, project.professional_id) == []


def test_other_professional_cannot_block_resource(db_session, make_project):
    project = make_project()
    stranger = Actor(id=uuid4(), role=Role.PROFESSIONAL)

    result = blocking.add_manual_block(
        db_session, project.professional_id, _utc(2024, 3, 1), _utc(2024, 3, 3), None, stranger
    )

    assert result.outcome == Outcome.AUTHORIZATION_ERROR


def test_employer_manages_employee_blocks(db_session, make_project):
    employee = uuid4()
    project = make_project(resources=[str(employee)])
    employer = Actor(id=project.professional_id, role=Role.PROFESSIONAL)

    result = blocking.add_manual_block(db_session, employee, _utc(2024, 3, 1), _utc(2024, 3, 2), "Training", employer)

    assert result.ok


def test_booking_tag_is_reserved(db_session, make_project):
    project = make_project()
    admin = Actor(id=uuid4(), role=Role.ADMIN)

    result = blocking.add_manual_block(
        db_session,
        project.professional_id,
        _utc(2024, 3, 1),
        _utc(2024, 3, 2),
        booking_tag(uuid4()),
        admin,
    )

    assert result.outcome == Outcome.VALIDATION_ERROR


def test_booking_blocks_cannot_be_removed_manually(db_session, make_project, make_booking):
    project, booking = _project_booking(make_project, make_booking)
    created = blocking.reserve(db_session, [project.professional_id], window_from_booking(booking), booking.id)
    db_session.commit()
    admin = Actor(id=uuid4(), role=Role.ADMIN)

    result = blocking.remove_manual_block(db_session, project.professional_id, created.value[0].id, admin)

    assert result.outcome == Outcome.CONFLICT
    assert result.code == "BOOKING_BLOCK"
