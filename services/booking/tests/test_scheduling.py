from datetime import date, datetime, time, timedelta, timezone
from uuid import uuid4

import pytest

from app.models.booking import BookingStatus
from app.models.resource import Resource, ResourceBlockedRange
from app.services.availability import parse_schedule_entry, resolve_zone, working_hours_for
from app.services.results import Outcome
from app.services.scheduling import (
    Duration,
    ProjectDurations,
    ScheduleRequest,
    build_schedule_proposal,
    compute_window,
    get_project_durations,
    validate_project_schedule,
)


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def _block(db, resource_id, start, end, reason="Vacation"):
    db.add(ResourceBlockedRange(resource_id=resource_id, start_date=start, end_date=end, reason=reason))
    db.commit()


def _working_hours(db, resource_id, schedule, tz="UTC"):
    resource = db.get(Resource, resource_id)
    resource.availability_schedule = schedule
    resource.timezone = tz
    db.commit()


WEEKDAYS = {day: ["08:00-17:00"] for day in ("monday", "tuesday", "wednesday", "thursday", "friday")}


# =====================================================================
# Window arithmetic
# =====================================================================

def test_days_window_adds_calendar_days():
    durations = ProjectDurations(execution=Duration(3, "days"), buffer=Duration(1, "days"))

    window = compute_window(_utc(2024, 1, 10), durations)

    assert window.execution_end == _utc(2024, 1, 13)
    assert window.buffer_start == _utc(2024, 1, 13)
    assert window.buffer_end == _utc(2024, 1, 14)
    assert window.buffer_unit == "days"
    assert window.start_time is None


def test_hours_window_adds_wall_clock_hours():
    durations = ProjectDurations(execution=Duration(4, "hours"), buffer=Duration(2, "hours"))

    window = compute_window(_utc(2024, 1, 10, 9, 0), durations)

    assert window.execution_end == _utc(2024, 1, 10, 13, 0)
    assert window.buffer_end == _utc(2024, 1, 10, 15, 0)
    assert window.start_time == "09:00"
    assert window.end_time == "13:00"


def test_fractional_days_round_up():
    durations = ProjectDurations(execution=Duration(1.5, "days"))

    window = compute_window(_utc(2024, 1, 10), durations)

    assert window.execution_end == _utc(2024, 1, 12)
    assert window.buffer_start is None
    assert window.buffer_end == window.execution_end


def test_buffer_without_unit_follows_execution(make_project):
    project = make_project(
        execution_duration={"value": 4, "unit": "hours"},
        buffer_duration={"value": 2},
    )

    durations = get_project_durations(project)

    assert durations.buffer == Duration(2, "hours")


def test_subproject_overrides_project_durations(make_project):
    project = make_project(subprojects=[{"name": "Small", "execution_duration": {"value": 1, "unit": "days"}}])

    durations = get_project_durations(project, 0)

    assert durations.execution == Duration(1, "days")
    assert durations.buffer == Duration(1, "days")


# =====================================================================
# Validation of a requested start
# =====================================================================

def test_start_inside_preparation_period_is_rejected(db_session, make_project, clock):
    project = make_project(preparation_duration={"value": 2, "unit": "days"})

    too_early = validate_project_schedule(
        db_session, project, ScheduleRequest(date(2024, 1, 10), time(12, 0)), now=clock()
    )
    assert too_early.outcome == Outcome.VALIDATION_ERROR
    assert too_early.code == "BEFORE_PREPARATION_WINDOW"

    accepted = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 1, 13)), now=clock())
    assert accepted.ok
    assert accepted.value.window.start == _utc(2024, 1, 13)


def test_hours_project_needs_a_start_time(db_session, make_project, clock):
    project = make_project(execution_duration={"value": 4, "unit": "hours"}, buffer_duration=None)

    result = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 1)), now=clock())

    assert result.code == "START_TIME_REQUIRED"


def test_unknown_subproject_is_not_found(db_session, make_project, clock):
    project = make_project()

    result = validate_project_schedule(
        db_session, project, ScheduleRequest(date(2024, 2, 1), subproject_index=3), now=clock()
    )

    assert result.outcome == Outcome.NOT_FOUND
    assert result.code == "SUBPROJECT_NOT_FOUND"


def test_missing_execution_duration(db_session, make_project, clock):
    project = make_project(execution_duration=None)

    result = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 1)), now=clock())

    assert result.code == "MISSING_EXECUTION_DURATION"


def test_unpublished_project_is_not_bookable(db_session, make_project, clock):
    project = make_project(status="draft")

    result = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 1)), now=clock())

    assert result.code == "PROJECT_NOT_BOOKABLE"


# =====================================================================
# Overlap with existing blocks
# =====================================================================

def test_overlapping_block_rejects_and_touching_block_allows(db_session, make_project, clock):
    project = make_project(execution_duration={"value": 1, "unit": "days"}, buffer_duration=None)
    _block(db_session, project.professional_id, _utc(2024, 2, 1), _utc(2024, 2, 5))

    overlapping = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 3)), now=clock())
    assert overlapping.outcome == Outcome.CONFLICT
    assert overlapping.code == "WINDOW_UNAVAILABLE"
    assert overlapping.conflicts[0]["reason"] == "Vacation"

    touching = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 5)), now=clock())
    assert touching.ok
    assert touching.value.assigned_resources == [project.professional_id]


def test_buffer_counts_against_resource_blocks(db_session, make_project, clock):
    project = make_project()
    _block(db_session, project.professional_id, _utc(2024, 2, 4), _utc(2024, 2, 5))

    result = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 1)), now=clock())

    assert result.code == "WINDOW_UNAVAILABLE"


def test_open_booking_on_the_resource_conflicts(db_session, make_project, make_booking, clock):
    project = make_project()
    make_booking(
        status=BookingStatus.QUOTED,
        professional_id=project.professional_id,
        scheduled_start_date=_utc(2024, 2, 1),
        scheduled_execution_end_date=_utc(2024, 2, 4),
        scheduled_buffer_start_date=_utc(2024, 2, 4),
        scheduled_buffer_end_date=_utc(2024, 2, 5),
    )

    result = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 4)), now=clock())

    assert result.code == "WINDOW_UNAVAILABLE"
    assert result.conflicts[0]["reason"] == "booking-buffer"


def test_released_booking_does_not_conflict(db_session, make_project, make_booking, clock):
    project = make_project()
    make_booking(
        status=BookingStatus.CANCELLED,
        professional_id=project.professional_id,
        scheduled_start_date=_utc(2024, 2, 1),
        scheduled_execution_end_date=_utc(2024, 2, 4),
    )

    result = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 1)), now=clock())

    assert result.ok


def test_customer_blocks_only_cover_execution(db_session, make_project, clock):
    project = make_project(execution_duration={"value": 1, "unit": "days"})
    blocks = {"dates": [{"date": "2024-02-03", "reason": "Family visit"}], "windows": []}

    buffer_only = validate_project_schedule(
        db_session, project, ScheduleRequest(date(2024, 2, 2), customer_blocks=blocks), now=clock()
    )
    assert buffer_only.ok

    execution_hit = validate_project_schedule(
        db_session, project, ScheduleRequest(date(2024, 2, 3), customer_blocks=blocks), now=clock()
    )
    assert execution_hit.code == "CUSTOMER_BLOCKED"


def test_min_resources_picks_free_team_members(db_session, make_project, clock):
    first, second = uuid4(), uuid4()
    project = make_project(resources=[str(first), str(second)], min_resources=1)
    _block(db_session, first, _utc(2024, 2, 1), _utc(2024, 2, 10))

    result = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 2)), now=clock())

    assert result.ok
    assert result.value.assigned_resources == [second]


def test_min_resources_not_met_is_a_conflict(db_session, make_project, clock):
    first, second = uuid4(), uuid4()
    project = make_project(resources=[str(first), str(second)], min_resources=2)
    _block(db_session, first, _utc(2024, 2, 1), _utc(2024, 2, 10))

    result = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 2)), now=clock())

    assert result.outcome == Outcome.CONFLICT
    assert result.code == "WINDOW_UNAVAILABLE"


# =====================================================================
# Working hours
# =====================================================================

def test_schedule_entries_are_parsed_and_checked():
    assert parse_schedule_entry("09:00-12:30") == (time(9, 0), time(12, 30))
    with pytest.raises(ValueError):
        parse_schedule_entry("17:00-09:00")
    with pytest.raises(ValueError):
        parse_schedule_entry("all day")


def test_malformed_schedule_entries_are_skipped():
    schedule = {"thursday": ["nonsense", "09:00-17:00"]}

    assert working_hours_for(schedule, date(2024, 2, 1)) == [(time(9, 0), time(17, 0))]
    assert working_hours_for(schedule, date(2024, 2, 2)) == []


def test_unknown_timezone_falls_back_to_utc():
    assert resolve_zone("Mars/Olympus").key == "UTC"
    assert resolve_zone(None).key == "UTC"


def test_days_project_needs_working_days(db_session, make_project, clock):
    project = make_project(execution_duration={"value": 1, "unit": "days"}, buffer_duration=None)
    _working_hours(db_session, project.professional_id, WEEKDAYS)

    saturday = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 3)), now=clock())
    monday = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 5)), now=clock())

    assert saturday.outcome == Outcome.VALIDATION_ERROR
    assert saturday.code == "OUTSIDE_WORKING_HOURS"
    assert monday.ok


def test_multi_day_window_cannot_span_a_day_off(db_session, make_project, clock):
    project = make_project()
    _working_hours(db_session, project.professional_id, WEEKDAYS)

    friday = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 2)), now=clock())

    assert friday.code == "OUTSIDE_WORKING_HOURS"


def test_hours_project_must_fit_working_hours(db_session, make_project, clock):
    project = make_project(execution_duration={"value": 4, "unit": "hours"}, buffer_duration=None)
    _working_hours(db_session, project.professional_id, {"thursday": ["09:00-17:00"]})

    late = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 1), time(14, 0)), now=clock())
    morning = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 1), time(9, 0)), now=clock())

    assert late.code == "OUTSIDE_WORKING_HOURS"
    assert morning.ok
    assert morning.value.window.execution_end == _utc(2024, 2, 1, 13)


def test_working_hours_are_read_in_the_resource_timezone(db_session, make_project, clock):
    project = make_project(execution_duration={"value": 4, "unit": "hours"}, buffer_duration=None)
    _working_hours(db_session, project.professional_id, {"thursday": ["09:00-17:00"]}, tz="Europe/Brussels")

    # Brussels is UTC+1 in February
    opening = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 1), time(8, 0)), now=clock())
    closing = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 1), time(13, 0)), now=clock())

    assert opening.ok
    assert closing.code == "OUTSIDE_WORKING_HOURS"


def test_resource_outside_working_hours_is_skipped(db_session, make_project, clock):
    first, second = uuid4(), uuid4()
    project = make_project(resources=[str(first), str(second)], min_resources=1)
    _working_hours(db_session, first, {"saturday": ["08:00-12:00"]})

    result = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 5)), now=clock())

    assert result.ok
    assert result.value.assigned_resources == [second]


def test_start_time_with_offset_is_converted_to_utc(db_session, make_project, clock):
    project = make_project(execution_duration={"value": 2, "unit": "hours"}, buffer_duration=None)
    local_nine = time(9, 0, tzinfo=timezone(timedelta(hours=2)))

    result = validate_project_schedule(db_session, project, ScheduleRequest(date(2024, 2, 1), local_nine), now=clock())

    assert result.ok
    assert result.value.window.start == _utc(2024, 2, 1, 7)
    assert result.value.window.start_time == "07:00"


# =====================================================================
# Proposal
# =====================================================================

def test_schedule_proposal_starts_after_preparation(db_session, make_project, clock):
    project = make_project(preparation_duration={"value": 2, "unit": "days"})

    result = build_schedule_proposal(db_session, project, now=_utc(2024, 1, 10, 15, 30))

    assert result.ok
    assert result.value["execution_unit"] == "days"
    assert result.value["window"].start == _utc(2024, 1, 12)
    assert result.value["window"].buffer_end == _utc(2024, 1, 16)
    assert result.value["assigned_resources"] == [project.professional_id]


def test_schedule_proposal_skips_blocked_days(db_session, make_project, clock):
    project = make_project(execution_duration={"value": 1, "unit": "days"}, buffer_duration={"value": 1})
    _block(db_session, project.professional_id, _utc(2024, 1, 10), _utc(2024, 1, 13))

    result = build_schedule_proposal(db_session, project, now=clock())

    assert result.ok
    assert result.value["earliest_bookable"] == _utc(2024, 1, 10)
    assert result.value["window"].start == _utc(2024, 1, 13)


def test_schedule_proposal_skips_days_off(db_session, make_project):
    project = make_project(execution_duration={"value": 1, "unit": "days"}, buffer_duration=None)
    _working_hours(db_session, project.professional_id, WEEKDAYS)

    result = build_schedule_proposal(db_session, project, now=_utc(2024, 1, 13, 10))

    assert result.ok
    assert result.value["window"].start == _utc(2024, 1, 15)


def test_schedule_proposal_in_hours_waits_for_opening_time(db_session, make_project):
    project = make_project(execution_duration={"value": 2, "unit": "hours"}, buffer_duration=None)
    _working_hours(db_session, project.professional_id, {"wednesday": ["09:00-17:00"], "thursday": ["09:00-17:00"]})

    result = build_schedule_proposal(db_session, project, now=_utc(2024, 1, 10, 15, 30))

    assert result.ok
    assert result.value["window"].start == _utc(2024, 1, 11, 9)
    assert result.value["window"].start_time == "09:00"


def test_schedule_proposal_without_any_free_window(db_session, make_project, clock):
    project = make_project()
    _block(db_session, project.professional_id, _utc(2024, 1, 1), _utc(2025, 1, 1), reason="Sabbatical")

    result = build_schedule_proposal(db_session, project, now=clock())

    assert result.outcome == Outcome.CONFLICT
    assert result.code == "NO_AVAILABILITY"
