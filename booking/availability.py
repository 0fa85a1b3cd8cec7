"""
Availability resolution.

Decides whether one candidate can take one time window given their
availability rule and the busy intervals gathered for them. The resolver is
pure: it performs no I/O and takes ``now`` as an argument, so callers decide
where busy data comes from and which clock applies.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, Iterator, List
import logging
import zoneinfo

from .domain import (
    AvailabilityRule,
    AvailableSlot,
    BusyInterval,
    BusySource,
    Freeness,
    RejectionReason,
    TimeWindow,
    Weekday,
)

logger = logging.getLogger(__name__)


def _local_day_bounds(
    day: date, zone: zoneinfo.ZoneInfo
) -> TimeWindow:
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return TimeWindow(start=start, end=end)


def busy_horizon(window: TimeWindow, rule: AvailabilityRule) -> TimeWindow:
    """
    The span busy intervals must cover to judge ``window``.

    Covers the window expanded by both buffers and the whole local calendar
    day of ``window.start`` (needed for the daily cap).
    """
    expanded = window.expand(rule.buffer_before, rule.buffer_after)
    day = _local_day_bounds(
        window.start.astimezone(rule.zone).date(), rule.zone
    )
    return TimeWindow(
        start=min(expanded.start, day.start), end=max(expanded.end, day.end)
    )


def within_working_hours(window: TimeWindow, rule: AvailabilityRule) -> bool:
    """
    Checks the window's start against working days and hours in the
    rule's zone.

    Only the start is judged, so a window may run past the end of working
    hours or across local midnight.
    """
    local_start = window.start.astimezone(rule.zone)
    if Weekday(local_start.weekday()) not in rule.working_days:
        return False
    hours = rule.working_hours
    return hours.start <= local_start.time() < hours.end


def _confirmed_bookings_on_local_day(
    busy_intervals: Iterable[BusyInterval],
    window: TimeWindow,
    rule: AvailabilityRule,
) -> int:
    zone = rule.zone
    day = window.start.astimezone(zone).date()
    seen = set()
    for interval in busy_intervals:
        if interval.source is not BusySource.INTERNAL:
            continue
        if interval.window.start.astimezone(zone).date() != day:
            continue
        seen.add(interval.booking_id or interval.window.start.isoformat())
    return len(seen)


def compute_freeness(
    user_id: str,
    window: TimeWindow,
    rule: AvailabilityRule,
    busy_intervals: List[BusyInterval],
    now: datetime,
) -> Freeness:
    """
    Decide whether ``user_id`` can take ``window``.

    Checks run in order and the first failing one names the reason: lead
    time, working days/hours, buffered conflicts, then the daily cap.

    Args:
        user_id: Candidate being evaluated
        window: Requested window
        rule: The candidate's availability rule
        busy_intervals: Busy data covering at least ``busy_horizon``
        now: Current instant

    Returns:
        Freeness describing the decision
    """
    if now + rule.lead_time > window.start:
        return Freeness.busy(
            RejectionReason.LEAD_TIME_VIOLATION,
            f"Bookings need {rule.lead_time_minutes} minutes notice",
        )

    if not within_working_hours(window, rule):
        return Freeness.busy(
            RejectionReason.OUTSIDE_WORKING_HOURS,
            f"Outside working hours in {rule.timezone}",
        )

    expanded = window.expand(rule.buffer_before, rule.buffer_after)
    for interval in busy_intervals:
        if interval.owner_id != user_id:
            continue
        if expanded.overlaps(interval.window):
            logger.debug(
                "Candidate busy",
                extra={
                    "user_id": user_id,
                    "busy_source": interval.source.value,
                    "provider": interval.provider,
                    "booking_id": interval.booking_id,
                },
            )
            return Freeness.busy(
                RejectionReason.CONFLICT,
                f"Overlaps {interval.source.value} busy interval",
            )

    if rule.max_bookings_per_day > 0:
        count = _confirmed_bookings_on_local_day(
            (b for b in busy_intervals if b.owner_id == user_id),
            window,
            rule,
        )
        if count >= rule.max_bookings_per_day:
            return Freeness.busy(
                RejectionReason.DAILY_CAP_REACHED,
                f"{count} bookings already on this day",
            )

    return Freeness.free()


def generate_candidate_windows(
    range_window: TimeWindow,
    duration: timedelta,
    increment: timedelta,
    rule: AvailabilityRule,
) -> Iterator[TimeWindow]:
    """
    Yield windows of ``duration`` starting every ``increment`` inside each
    local working day of ``rule`` that intersects ``range_window``.
    """
    zone = rule.zone
    day = range_window.start.astimezone(zone).date()
    last_day = range_window.end.astimezone(zone).date()
    hours = rule.working_hours

    while day <= last_day:
        if Weekday(day.weekday()) in rule.working_days:
            # Stepped in UTC; each slot lasts exactly ``duration``
            cursor = datetime.combine(
                day, hours.start, tzinfo=zone
            ).astimezone(timezone.utc)
            day_end = datetime.combine(
                day, hours.end, tzinfo=zone
            ).astimezone(timezone.utc)
            while cursor + duration <= day_end:
                candidate = TimeWindow(start=cursor, end=cursor + duration)
                if (
                    candidate.start >= range_window.start
                    and candidate.end <= range_window.end
                ):
                    yield candidate
                cursor += increment
        day += timedelta(days=1)


def merge_slots(
    free_windows: Dict[str, List[TimeWindow]],
) -> List[AvailableSlot]:
    """Union per-candidate free windows into slots listing who is free."""
    by_start: Dict[datetime, AvailableSlot] = {}
    for user_id, windows in free_windows.items():
        for window in windows:
            slot = by_start.get(window.start)
            if slot is None:
                slot = AvailableSlot(window=window)
                by_start[window.start] = slot
            slot.candidate_ids.append(user_id)
    return [by_start[start] for start in sorted(by_start)]
