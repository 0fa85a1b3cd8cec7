"""
Booking domain models for the availability and booking engine.

These models represent booking links, availability rules, bookings and the
per-link rotation ledger, following the Pydantic v2 patterns used across
the project. All instants are stored as timezone-aware UTC datetimes; local
wall-clock reasoning happens in the availability resolver.
"""

from datetime import datetime, time, timedelta, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional
import logging
import zoneinfo

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_LEAD_TIME_MINUTES = 60
DEFAULT_AVAILABILITY_WINDOW_DAYS = 30


def calendar_idempotency_key(booking_id: str) -> str:
    """Idempotency key used for every calendar write made for a booking."""
    return f"booking-{booking_id}"


# --- Enums ---


class Weekday(IntEnum):
    """Day of week, Monday first (matches datetime.weekday())."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


class BusySource(str, Enum):
    """Where a busy interval came from."""

    INTERNAL = "internal"
    EXTERNAL = "external"


class AssignmentMethod(str, Enum):
    """How a booking link chooses the member who receives a booking."""

    SPECIFIC = "specific"
    ROUND_ROBIN = "round_robin"
    POOLED = "pooled"
    LOAD_BALANCED = "load_balanced"


class BookingStatus(str, Enum):
    """Lifecycle of a booking row."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RejectionCategory(str, Enum):
    """Kind of failure a rejection belongs to."""

    VALIDATION = "validation"
    AVAILABILITY = "availability"
    CONTENTION = "contention"


class RejectionReason(str, Enum):
    """Typed reasons a booking request can be turned down."""

    LINK_NOT_FOUND = "link_not_found"
    LINK_INACTIVE = "link_inactive"
    OUT_OF_WINDOW = "out_of_window"
    DURATION_MISMATCH = "duration_mismatch"
    CONFLICT = "conflict"
    OUTSIDE_WORKING_HOURS = "outside_working_hours"
    LEAD_TIME_VIOLATION = "lead_time_violation"
    DAILY_CAP_REACHED = "daily_cap_reached"
    NO_AVAILABILITY = "no_availability"
    CONTENTION = "contention"

    @property
    def category(self) -> RejectionCategory:
        if self in _VALIDATION_REASONS:
            return RejectionCategory.VALIDATION
        if self is RejectionReason.CONTENTION:
            return RejectionCategory.CONTENTION
        return RejectionCategory.AVAILABILITY

    @property
    def retryable(self) -> bool:
        """Only contention is worth retrying unchanged."""
        return self.category is RejectionCategory.CONTENTION

    @property
    def http_status(self) -> int:
        """Status code the HTTP layer should answer with."""
        if self is RejectionReason.LINK_NOT_FOUND:
            return 404
        return _HTTP_STATUS_BY_CATEGORY[self.category]


_VALIDATION_REASONS = frozenset(
    {
        RejectionReason.LINK_NOT_FOUND,
        RejectionReason.LINK_INACTIVE,
        RejectionReason.OUT_OF_WINDOW,
        RejectionReason.DURATION_MISMATCH,
    }
)

_HTTP_STATUS_BY_CATEGORY = {
    RejectionCategory.VALIDATION: 400,
    RejectionCategory.AVAILABILITY: 409,
    RejectionCategory.CONTENTION: 503,
}


class CalendarSyncOutcome(str, Enum):
    """Result of the post-commit calendar step."""

    SYNCED = "synced"
    FAILED = "failed"
    SKIPPED = "skipped"


class NotificationTemplate(str, Enum):
    BOOKING_CONFIRMED_REQUESTER = "booking_confirmed_requester"
    BOOKING_CONFIRMED_ASSIGNEE = "booking_confirmed_assignee"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_REMINDER = "booking_reminder"


# --- Time primitives ---


class TimeWindow(BaseModel):
    """A half-open interval [start, end) of UTC instants."""

    start: datetime = Field(..., description="Inclusive start instant")
    end: datetime = Field(..., description="Exclusive end instant")

    @field_validator("start", "end")
    @classmethod
    def normalize_to_utc(cls, v: datetime) -> datetime:
        """Naive datetimes are taken as UTC; aware ones are converted."""
        if v.tzinfo is None:
            logger.warning(f"Treating naive datetime {v} as UTC")
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def end_after_start(self) -> "TimeWindow":
        if self.end <= self.start:
            raise ValueError(
                f"Window end {self.end.isoformat()} must be after start "
                f"{self.start.isoformat()}"
            )
        return self

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "TimeWindow") -> bool:
        """Half-open overlap: touching endpoints do not overlap."""
        return self.start < other.end and other.start < self.end

    def expand(self, before: timedelta, after: timedelta) -> "TimeWindow":
        return TimeWindow(start=self.start - before, end=self.end + after)


class BusyInterval(BaseModel):
    """
    A period during which a user cannot take a booking.

    Busy intervals are derived per request from confirmed bookings and
    external calendars and are never persisted.
    """

    owner_id: str
    window: TimeWindow
    source: BusySource
    provider: Optional[str] = Field(
        None, description="Calendar provider for external intervals"
    )
    booking_id: Optional[str] = Field(
        None, description="Booking the interval was derived from"
    )


class WorkingHours(BaseModel):
    """Daily working hours in the owner's local wall-clock time."""

    start: time = Field(time(9, 0), description="Local start of day")
    end: time = Field(time(17, 0), description="Local end of day")

    @model_validator(mode="after")
    def end_after_start(self) -> "WorkingHours":
        if self.end <= self.start:
            raise ValueError("Working hours must end after they start")
        return self


# --- Configuration read by the engine ---


_WEEKDAY_NAMES = {
    name: day
    for day in Weekday
    for name in (day.name.lower(), day.name.lower()[:3])
}


class AvailabilityRule(BaseModel):
    """Per-user rules deciding when a user can be booked."""

    user_id: str
    timezone: str = Field("UTC", description="IANA timezone name")
    working_days: List[Weekday] = Field(
        default_factory=lambda: [
            Weekday.MONDAY,
            Weekday.TUESDAY,
            Weekday.WEDNESDAY,
            Weekday.THURSDAY,
            Weekday.FRIDAY,
        ]
    )
    working_hours: WorkingHours = Field(default_factory=WorkingHours)
    buffer_before_minutes: int = Field(0, ge=0)
    buffer_after_minutes: int = Field(0, ge=0)
    lead_time_minutes: int = Field(DEFAULT_LEAD_TIME_MINUTES, ge=0)
    max_bookings_per_day: int = Field(
        0, ge=0, description="Daily booking cap; 0 means unlimited"
    )

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v: str) -> str:
        try:
            zoneinfo.ZoneInfo(v)
        except (zoneinfo.ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator("working_days", mode="before")
    @classmethod
    def parse_weekday_names(cls, v: Any) -> Any:
        """Accept 'monday' / 'mon' as well as 0-6."""
        if not isinstance(v, (list, tuple, set)):
            return v
        days = []
        for day in v:
            if isinstance(day, str) and not day.isdigit():
                key = day.strip().lower()
                if key not in _WEEKDAY_NAMES:
                    raise ValueError(f"Unknown weekday: {day}")
                days.append(_WEEKDAY_NAMES[key])
            else:
                days.append(day)
        return days

    @property
    def zone(self) -> zoneinfo.ZoneInfo:
        return zoneinfo.ZoneInfo(self.timezone)

    @property
    def buffer_before(self) -> timedelta:
        return timedelta(minutes=self.buffer_before_minutes)

    @property
    def buffer_after(self) -> timedelta:
        return timedelta(minutes=self.buffer_after_minutes)

    @property
    def lead_time(self) -> timedelta:
        return timedelta(minutes=self.lead_time_minutes)

    @classmethod
    def default_for(cls, user_id: str) -> "AvailabilityRule":
        """Rule applied to users who never configured one."""
        return cls(user_id=user_id)


class BookingLink(BaseModel):
    """A published link visitors use to book time with a user or team."""

    link_id: str = Field(..., description="Unique identifier of the link")
    owner_id: str = Field(..., description="User who owns the link")
    team_id: Optional[str] = Field(
        None, description="Team the link distributes bookings across"
    )
    title: str = Field("", description="Human-readable meeting title")
    duration_minutes: int = Field(..., gt=0)
    assignment_method: AssignmentMethod = Field(AssignmentMethod.SPECIFIC)
    candidate_ids: List[str] = Field(
        default_factory=list,
        description="Ordered team members eligible for assignment",
    )
    availability_window_days: int = Field(
        DEFAULT_AVAILABILITY_WINDOW_DAYS,
        gt=0,
        description="How far ahead the link accepts bookings",
    )
    is_active: bool = True
    notify_on_booking: bool = Field(
        True, description="Whether the assignee is notified of new bookings"
    )

    @field_validator("candidate_ids")
    @classmethod
    def unique_candidates(cls, v: List[str]) -> List[str]:
        if len(set(v)) != len(v):
            raise ValueError("Candidate ids must be unique")
        return v

    @model_validator(mode="after")
    def team_methods_need_team(self) -> "BookingLink":
        if (
            self.assignment_method is not AssignmentMethod.SPECIFIC
            and self.team_id is None
        ):
            raise ValueError(
                f"Assignment method {self.assignment_method.value} requires "
                "a team link"
            )
        return self

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.duration_minutes)

    @property
    def is_team_link(self) -> bool:
        return self.team_id is not None


class CalendarConnection(BaseModel):
    """An already-authenticated external calendar attached to a user."""

    connection_id: str
    owner_id: str
    provider: str = Field(..., description="e.g. 'google', 'mock'")
    calendar_id: str = Field("primary", description="Provider calendar id")
    is_active: bool = True
    is_primary: bool = False


class RequesterInfo(BaseModel):
    """The visitor booking the slot."""

    name: str
    email: str
    notes: Optional[str] = None
    timezone: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Requester name cannot be empty")
        return v

    @field_validator("email")
    @classmethod
    def looks_like_email(cls, v: str) -> str:
        v = v.strip()
        local, _, domain = v.partition("@")
        if not local or not domain:
            raise ValueError(f"Invalid email address: {v}")
        return v


# --- Entities written by the engine ---


class ExternalEventRef(BaseModel):
    """Pointer to the event created in an external calendar."""

    provider: str
    calendar_id: str
    event_id: str
    html_link: Optional[str] = None


class Booking(BaseModel):
    """
    A reservation of a time window with an assigned user.

    Only the booking orchestrator writes ``status`` and
    ``assigned_user_id``. Bookings are never deleted; cancellation is a
    status transition.
    """

    booking_id: str
    booking_link_id: str
    assigned_user_id: str
    window: TimeWindow
    requester: RequesterInfo
    status: BookingStatus = Field(BookingStatus.PENDING)
    external_event_ref: Optional[ExternalEventRef] = None
    calendar_sync_failed: bool = Field(
        False, description="Set when the calendar event could not be created"
    )
    calendar_sync_error: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    @property
    def idempotency_key(self) -> str:
        return calendar_idempotency_key(self.booking_id)

    def as_busy_interval(self) -> BusyInterval:
        return BusyInterval(
            owner_id=self.assigned_user_id,
            window=self.window,
            source=BusySource.INTERNAL,
            booking_id=self.booking_id,
        )


class RotationState(BaseModel):
    """Durable per-link rotation ledger."""

    booking_link_id: str
    last_assigned_index: int = Field(
        -1, ge=-1, description="Index of the last assignee; -1 if none yet"
    )
    member_loads: Dict[str, int] = Field(
        default_factory=dict, description="Bookings assigned per member"
    )
    updated_at: Optional[datetime] = None

    def load_of(self, user_id: str) -> int:
        return self.member_loads.get(user_id, 0)


# --- Resolver and assignment results ---


class Freeness(BaseModel):
    """Whether one candidate can take one window, and why not."""

    available: bool
    reason: Optional[RejectionReason] = None
    detail: Optional[str] = None

    @model_validator(mode="after")
    def reason_matches_availability(self) -> "Freeness":
        if self.available and self.reason is not None:
            raise ValueError("An available result cannot carry a reason")
        if not self.available and self.reason is None:
            raise ValueError("An unavailable result needs a reason")
        return self

    @classmethod
    def free(cls) -> "Freeness":
        return cls(available=True)

    @classmethod
    def busy(
        cls, reason: RejectionReason, detail: Optional[str] = None
    ) -> "Freeness":
        return cls(available=False, reason=reason, detail=detail)


class CandidateEvaluation(BaseModel):
    user_id: str
    freeness: Freeness


class AssignmentDecision(BaseModel):
    """Outcome of running the assignment engine for one request."""

    method: AssignmentMethod
    assigned_user_id: Optional[str] = None
    assigned_index: Optional[int] = None
    evaluations: List[CandidateEvaluation] = Field(default_factory=list)
    rotation: Optional[RotationState] = Field(
        None, description="Advanced rotation state to persist on success"
    )

    @property
    def assigned(self) -> bool:
        return self.assigned_user_id is not None


class AvailableSlot(BaseModel):
    window: TimeWindow
    candidate_ids: List[str] = Field(default_factory=list)


class BookingOutcome(BaseModel):
    """Either a confirmed booking or a typed rejection, never both."""

    booking: Optional[Booking] = None
    rejection: Optional[RejectionReason] = None
    detail: Optional[str] = None

    @model_validator(mode="after")
    def exactly_one_result(self) -> "BookingOutcome":
        if (self.booking is None) == (self.rejection is None):
            raise ValueError(
                "Outcome must hold either a booking or a rejection"
            )
        return self

    @property
    def confirmed(self) -> bool:
        return self.booking is not None

    @classmethod
    def accept(cls, booking: Booking) -> "BookingOutcome":
        return cls(booking=booking)

    @classmethod
    def reject(
        cls, reason: RejectionReason, detail: Optional[str] = None
    ) -> "BookingOutcome":
        return cls(rejection=reason, detail=detail)


# --- Side-effect messages ---


class CalendarEventRequest(BaseModel):
    window: TimeWindow
    title: str
    description: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)
    idempotency_key: str


class ReminderRequest(BaseModel):
    recipient: str
    send_at: datetime
    payload: Dict[str, Any] = Field(default_factory=dict)
    dedupe_key: str = Field(
        ..., description="Stable key so retried scheduling is a no-op"
    )


class NotificationRequest(BaseModel):
    recipient: str
    template: NotificationTemplate
    data: Dict[str, Any] = Field(default_factory=dict)
    dedupe_key: str


class BookingSideEffectsJob(BaseModel):
    """Input of the post-commit side-effect saga."""

    booking: Booking
    link: BookingLink
    reminder_lead_minutes: int = Field(
        default=15,
        ge=0,
        description="How long before the start reminders are sent",
    )


class SideEffectsReport(BaseModel):
    booking_id: str
    calendar_sync: CalendarSyncOutcome
    external_event_ref: Optional[ExternalEventRef] = None
    reminders_scheduled: int = 0
    notifications_sent: int = 0
    failed_steps: List[str] = Field(default_factory=list)
