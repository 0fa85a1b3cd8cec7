"""
Tests for the availability resolver.

All checks are pure, so these tests call compute_freeness directly with
hand-built busy intervals and a fixed ``now``.
"""

from datetime import time, timedelta

from hypothesis import given, strategies as st

from booking.availability import (
    busy_horizon,
    compute_freeness,
    generate_candidate_windows,
    merge_slots,
    within_working_hours,
)
from booking.domain import (
    BusyInterval,
    BusySource,
    RejectionReason,
    TimeWindow,
    Weekday,
    WorkingHours,
)
from booking.tests.factories import (
    NOW,
    at,
    external_busy,
    minimal_booking,
    minimal_rule,
    window,
)

NEW_YORK = "America/New_York"


class TestWorkingHours:
    def test_start_is_judged_against_hour_bounds(self) -> None:
        rule = minimal_rule()
        assert within_working_hours(window(at(4, 9)), rule)
        assert within_working_hours(window(at(4, 16, 30)), rule)
        assert not within_working_hours(window(at(4, 17)), rule)
        assert not within_working_hours(window(at(4, 8, 45)), rule)

    def test_window_may_run_past_end_of_hours(self) -> None:
        # 16:45-17:15 starts inside 09:00-17:00
        assert within_working_hours(window(at(4, 16, 45)), minimal_rule())

    def test_weekend_is_outside(self) -> None:
        # 2025-03-08 is a Saturday
        assert not within_working_hours(window(at(8, 10)), minimal_rule())

    def test_custom_working_days(self) -> None:
        rule = minimal_rule(working_days=[Weekday.SATURDAY])
        assert within_working_hours(window(at(8, 10)), rule)
        assert not within_working_hours(window(at(4, 10)), rule)

    def test_winter_hours_follow_eastern_standard_time(self) -> None:
        rule = minimal_rule(timezone=NEW_YORK)
        # 14:00 UTC is 09:00 EST
        assert within_working_hours(window(at(4, 14)), rule)
        assert not within_working_hours(window(at(4, 13, 30)), rule)

    def test_summer_hours_follow_eastern_daylight_time(self) -> None:
        rule = minimal_rule(timezone=NEW_YORK)
        # DST starts 2025-03-09; 13:00 UTC is 09:00 EDT on the 11th
        assert within_working_hours(window(at(11, 13)), rule)
        assert within_working_hours(window(at(11, 20, 30)), rule)
        assert not within_working_hours(window(at(11, 21)), rule)

    def test_window_spanning_spring_forward_uses_wall_clock(self) -> None:
        rule = minimal_rule(
            timezone=NEW_YORK,
            working_days=list(Weekday),
            working_hours=WorkingHours(start=time(1), end=time(5)),
        )
        # 06:30 UTC is 01:30 EST, 07:30 UTC is 03:30 EDT
        w = TimeWindow(start=at(9, 6, 30), end=at(9, 7, 30))
        assert within_working_hours(w, rule)

    def test_window_crossing_local_midnight_is_judged_by_start(self) -> None:
        rule = minimal_rule(
            working_days=list(Weekday),
            working_hours=WorkingHours(start=time(20), end=time(23, 59)),
        )
        assert within_working_hours(window(at(4, 23, 30), 30), rule)
        assert within_working_hours(window(at(4, 23, 30), 60), rule)
        assert not within_working_hours(window(at(5, 0), 30), rule)


class TestComputeFreeness:
    def test_free_when_nothing_is_busy(self) -> None:
        freeness = compute_freeness(
            "alice", window(at(4, 10)), minimal_rule(), [], NOW
        )
        assert freeness.available
        assert freeness.reason is None

    def test_lead_time_boundary(self) -> None:
        rule = minimal_rule(lead_time_minutes=60)
        # NOW is 08:00 on the 3rd; working hours open at 09:00
        assert compute_freeness(
            "alice", window(at(3, 9)), rule, [], NOW
        ).available

        inside_lead = compute_freeness(
            "alice", window(at(3, 9)), rule, [], NOW + timedelta(minutes=10)
        )
        assert inside_lead.reason is RejectionReason.LEAD_TIME_VIOLATION

    def test_lead_time_is_checked_before_working_hours(self) -> None:
        freeness = compute_freeness(
            "alice",
            window(NOW + timedelta(minutes=10)),
            minimal_rule(lead_time_minutes=60),
            [],
            NOW,
        )
        assert freeness.reason is RejectionReason.LEAD_TIME_VIOLATION

    def test_outside_working_hours(self) -> None:
        freeness = compute_freeness(
            "alice", window(at(4, 18)), minimal_rule(), [], NOW
        )
        assert freeness.reason is RejectionReason.OUTSIDE_WORKING_HOURS

    def test_window_ending_after_hours_is_available(self) -> None:
        freeness = compute_freeness(
            "alice", window(at(4, 16, 45)), minimal_rule(), [], NOW
        )
        assert freeness.available

    def test_window_crossing_midnight_is_available(self) -> None:
        rule = minimal_rule(
            working_days=list(Weekday),
            working_hours=WorkingHours(start=time(20), end=time(23, 59)),
        )
        freeness = compute_freeness(
            "alice", window(at(4, 23, 30)), rule, [], NOW
        )
        assert freeness.available

    def test_overlapping_busy_interval_conflicts(self) -> None:
        busy = [external_busy("alice", at(4, 10, 15))]
        freeness = compute_freeness(
            "alice", window(at(4, 10)), minimal_rule(), busy, NOW
        )
        assert freeness.reason is RejectionReason.CONFLICT

    def test_touching_busy_interval_is_not_a_conflict(self) -> None:
        busy = [
            external_busy("alice", at(4, 9, 30)),
            external_busy("alice", at(4, 10, 30)),
        ]
        assert compute_freeness(
            "alice", window(at(4, 10)), minimal_rule(), busy, NOW
        ).available

    def test_buffer_after_turns_adjacent_busy_into_conflict(self) -> None:
        busy = [external_busy("alice", at(4, 10, 30))]
        rule = minimal_rule(buffer_after_minutes=15)
        freeness = compute_freeness(
            "alice", window(at(4, 10)), rule, busy, NOW
        )
        assert freeness.reason is RejectionReason.CONFLICT

    def test_buffer_before_is_half_open(self) -> None:
        rule = minimal_rule(buffer_before_minutes=10)
        ends_at_buffer = [external_busy("alice", at(4, 9, 30), minutes=20)]
        ends_in_buffer = [external_busy("alice", at(4, 9, 30), minutes=25)]

        assert compute_freeness(
            "alice", window(at(4, 10)), rule, ends_at_buffer, NOW
        ).available
        assert (
            compute_freeness(
                "alice", window(at(4, 10)), rule, ends_in_buffer, NOW
            ).reason
            is RejectionReason.CONFLICT
        )

    def test_other_users_busy_intervals_are_ignored(self) -> None:
        busy = [external_busy("bob", at(4, 10))]
        assert compute_freeness(
            "alice", window(at(4, 10)), minimal_rule(), busy, NOW
        ).available

    def test_daily_cap_counts_internal_bookings(self) -> None:
        rule = minimal_rule(max_bookings_per_day=2)
        busy = [
            minimal_booking("b1", start=at(4, 9)).as_busy_interval(),
            minimal_booking("b2", start=at(4, 11)).as_busy_interval(),
        ]
        freeness = compute_freeness(
            "alice", window(at(4, 14)), rule, busy, NOW
        )
        assert freeness.reason is RejectionReason.DAILY_CAP_REACHED

    def test_daily_cap_ignores_external_events(self) -> None:
        rule = minimal_rule(max_bookings_per_day=1)
        busy = [external_busy("alice", at(4, 9))]
        assert compute_freeness(
            "alice", window(at(4, 14)), rule, busy, NOW
        ).available

    def test_daily_cap_uses_the_local_day(self) -> None:
        rule = minimal_rule(timezone=NEW_YORK, max_bookings_per_day=1)
        # 03:00 UTC on the 5th is 22:00 EST on the 4th
        late_evening = minimal_booking("b1", start=at(5, 3))
        freeness = compute_freeness(
            "alice",
            window(at(4, 15)),
            rule,
            [late_evening.as_busy_interval()],
            NOW,
        )
        assert freeness.reason is RejectionReason.DAILY_CAP_REACHED

        # 03:00 UTC on the 4th is 22:00 EST on the 3rd
        previous_day = minimal_booking("b2", start=at(4, 3))
        assert compute_freeness(
            "alice",
            window(at(4, 15)),
            rule,
            [previous_day.as_busy_interval()],
            NOW,
        ).available

    def test_conflict_is_reported_before_daily_cap(self) -> None:
        rule = minimal_rule(max_bookings_per_day=1)
        busy = [minimal_booking("b1", start=at(4, 10)).as_busy_interval()]
        freeness = compute_freeness(
            "alice", window(at(4, 10)), rule, busy, NOW
        )
        assert freeness.reason is RejectionReason.CONFLICT

    @given(
        buffer_before=st.integers(min_value=0, max_value=60),
        buffer_after=st.integers(min_value=0, max_value=60),
        offset=st.integers(min_value=-300, max_value=300),
        length=st.integers(min_value=1, max_value=120),
    )
    def test_conflict_iff_busy_overlaps_buffered_window(
        self,
        buffer_before: int,
        buffer_after: int,
        offset: int,
        length: int,
    ) -> None:
        rule = minimal_rule(
            buffer_before_minutes=buffer_before,
            buffer_after_minutes=buffer_after,
        )
        requested = window(at(4, 12))
        busy = BusyInterval(
            owner_id="alice",
            window=window(
                requested.start + timedelta(minutes=offset), length
            ),
            source=BusySource.EXTERNAL,
        )
        expanded = requested.expand(rule.buffer_before, rule.buffer_after)

        freeness = compute_freeness("alice", requested, rule, [busy], NOW)

        assert freeness.available == (not expanded.overlaps(busy.window))


class TestBusyHorizon:
    def test_covers_local_day_and_buffers(self) -> None:
        rule = minimal_rule(timezone=NEW_YORK, buffer_after_minutes=30)
        horizon = busy_horizon(window(at(4, 15)), rule)
        # Local day of the 4th in EST is 05:00 UTC to 05:00 UTC
        assert horizon.start == at(4, 5)
        assert horizon.end == at(5, 5)

    def test_buffers_can_extend_past_the_day(self) -> None:
        rule = minimal_rule(buffer_after_minutes=60)
        horizon = busy_horizon(window(at(4, 23, 30)), rule)
        assert horizon.start == at(4, 0)
        assert horizon.end == at(5, 1)


class TestSlotGeneration:
    def test_generates_slots_inside_working_hours(self) -> None:
        windows = list(
            generate_candidate_windows(
                TimeWindow(start=at(4, 0), end=at(5, 0)),
                timedelta(minutes=30),
                timedelta(minutes=30),
                minimal_rule(),
            )
        )
        assert len(windows) == 16
        assert windows[0].start == at(4, 9)
        assert windows[-1].end == at(4, 17)

    def test_slots_follow_the_local_offset_after_dst(self) -> None:
        windows = list(
            generate_candidate_windows(
                TimeWindow(start=at(7, 0), end=at(11, 0)),
                timedelta(minutes=60),
                timedelta(minutes=60),
                minimal_rule(timezone=NEW_YORK),
            )
        )
        starts = {w.start for w in windows}
        # Friday the 7th opens at 14:00 UTC (EST), Monday the 10th at 13:00
        # UTC (EDT); the weekend has no slots
        assert at(7, 14) in starts
        assert at(10, 13) in starts
        assert not any(w.start.day in (8, 9) for w in windows)

    def test_slots_keep_their_length_on_fall_back_day(self) -> None:
        rule = minimal_rule(
            timezone=NEW_YORK,
            working_days=list(Weekday),
            working_hours=WorkingHours(start=time(0), end=time(5)),
        )
        # 2025-11-02: 00:00 EDT is 04:00 UTC, 05:00 EST is 10:00 UTC
        windows = list(
            generate_candidate_windows(
                TimeWindow(start=at(2, 4, month=11), end=at(2, 10, month=11)),
                timedelta(minutes=30),
                timedelta(minutes=30),
                rule,
            )
        )
        assert len(windows) == 12
        assert all(w.duration == timedelta(minutes=30) for w in windows)
        # 01:45 EDT is 05:45 UTC
        assert window(at(2, 5, 45, month=11)) in windows

    def test_slots_are_clipped_to_range(self) -> None:
        windows = list(
            generate_candidate_windows(
                TimeWindow(start=at(4, 10, 15), end=at(4, 12)),
                timedelta(minutes=30),
                timedelta(minutes=30),
                minimal_rule(),
            )
        )
        assert [w.start for w in windows] == [
            at(4, 10, 30),
            at(4, 11),
            at(4, 11, 30),
        ]

    def test_merge_slots_lists_every_free_candidate(self) -> None:
        early, late = window(at(4, 9)), window(at(4, 10))
        slots = merge_slots({"alice": [late, early], "bob": [late]})
        assert [s.window for s in slots] == [early, late]
        assert slots[0].candidate_ids == ["alice"]
        assert slots[1].candidate_ids == ["alice", "bob"]
