"""Availability resolution and slot-conflict checks for doctor schedules.

Everything in this module is a pure function of its arguments. Routes load
rules, absences and consultations from the database, convert them with the
``from_row`` constructors and ask the questions below.

Day-of-week numbers follow the 0=Sunday .. 6=Saturday convention used by the
stored availability rules.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, Sequence


SLOT_MINUTES = 30
SLOT_DELTA = timedelta(minutes=SLOT_MINUTES)
END_OF_DAY = time(23, 59, 59)

CANCELLED = "CANCELLED"
SCHEDULED = "SCHEDULED"
COMPLETED = "COMPLETED"


class SelectionError(ValueError):
    """Raised when a slot selection cannot become a single booking."""


class RuleSpanError(ValueError):
    """Raised when a recurring rule covers more days than may be expanded."""


def parse_time(value: time | str) -> time:
    if isinstance(value, time):
        return value.replace(microsecond=0)

    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day: {value!r}")
    try:
        numbers = [int(part) for part in parts]
    except ValueError as exc:
        raise ValueError(f"Invalid time of day: {value!r}") from exc
    return time(*numbers)


def format_time(value: time) -> str:
    # Zero-padded so stored values sort the same way as the times they name.
    return value.strftime("%H:%M:%S")


def weekday_number(day: date) -> int:
    return (day.weekday() + 1) % 7


@dataclass(frozen=True)
class TimeInterval:
    start: time
    end: time

    def __post_init__(self) -> None:
        if not self.start < self.end:
            raise ValueError("Interval start must be before its end.")

    def contains(self, point: time) -> bool:
        return self.start <= point < self.end

    def overlaps(self, other: "TimeInterval") -> bool:
        return self.start < other.end and self.end > other.start

    @classmethod
    def from_dict(cls, data: dict) -> "TimeInterval":
        return cls(start=parse_time(data["start"]), end=parse_time(data["end"]))

    def to_dict(self) -> dict:
        return {"start": format_time(self.start), "end": format_time(self.end)}


@dataclass(frozen=True)
class AvailabilityRule:
    is_recurring: bool
    time_slots: tuple[TimeInterval, ...]
    start_date: date | None = None
    end_date: date | None = None
    days_of_week: frozenset[int] = frozenset()
    specific_date: date | None = None

    def applies_to(self, day: date) -> bool:
        if self.is_recurring:
            if self.start_date is None or self.end_date is None:
                return False
            return self.start_date <= day <= self.end_date and weekday_number(day) in self.days_of_week
        return self.specific_date == day

    @classmethod
    def from_row(cls, row) -> "AvailabilityRule":
        return cls(
            is_recurring=bool(row.is_recurring),
            time_slots=tuple(TimeInterval.from_dict(slot) for slot in row.time_slots or []),
            start_date=row.start_date,
            end_date=row.end_date,
            days_of_week=frozenset(row.days_of_week or []),
            specific_date=row.specific_date,
        )


@dataclass(frozen=True)
class Absence:
    start_date: date
    end_date: date

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    @classmethod
    def from_row(cls, row) -> "Absence":
        return cls(start_date=row.start_date, end_date=row.end_date)


@dataclass(frozen=True)
class BookedConsultation:
    consultation_date: date
    start_time: time
    end_time: time
    status: str = SCHEDULED

    def occupies(self, day: date, point: time) -> bool:
        return (
            self.status != CANCELLED
            and self.consultation_date == day
            and self.start_time <= point < self.end_time
        )

    @classmethod
    def from_row(cls, row) -> "BookedConsultation":
        return cls(
            consultation_date=row.consultation_date,
            start_time=row.start_time,
            end_time=row.end_time,
            status=row.status,
        )


def resolve_slots(rules: Iterable[AvailabilityRule], day: date) -> list[TimeInterval]:
    """Return the intervals of every rule that applies to ``day``.

    Intervals from different rules are concatenated as-is; callers test
    membership, so duplicates are harmless.
    """
    slots: list[TimeInterval] = []
    for rule in rules:
        if rule.applies_to(day):
            slots.extend(rule.time_slots)
    return slots


def is_date_blocked(absences: Iterable[Absence], day: date) -> bool:
    return any(absence.covers(day) for absence in absences)


def is_occupied(consultations: Iterable[BookedConsultation], day: date, point: time) -> bool:
    return any(consultation.occupies(day, point) for consultation in consultations)


def is_slot_available(
    rules: Sequence[AvailabilityRule],
    absences: Sequence[Absence],
    consultations: Sequence[BookedConsultation],
    day: date,
    point: time,
) -> bool:
    if is_date_blocked(absences, day):
        return False
    if not any(interval.contains(point) for interval in resolve_slots(rules, day)):
        return False
    return not is_occupied(consultations, day, point)


@dataclass
class ScheduleSnapshot:
    """The rules, absences and consultations of one doctor as last loaded."""

    rules: Sequence[AvailabilityRule] = ()
    absences: Sequence[Absence] = ()
    consultations: Sequence[BookedConsultation] = ()

    def is_date_blocked(self, day: date) -> bool:
        return is_date_blocked(self.absences, day)

    def is_occupied(self, day: date, point: time) -> bool:
        return is_occupied(self.consultations, day, point)

    def is_slot_available(self, day: date, point: time) -> bool:
        return is_slot_available(self.rules, self.absences, self.consultations, day, point)


def _check_alignment(point: datetime) -> None:
    if point.minute % SLOT_MINUTES or point.second or point.microsecond:
        raise SelectionError(f"Slots must start on {SLOT_MINUTES}-minute boundaries.")


def is_contiguous(points: Iterable[datetime]) -> bool:
    ordered = sorted(set(points))
    for previous, following in zip(ordered, ordered[1:]):
        if previous.date() != following.date():
            return False
        if following - previous != SLOT_DELTA:
            return False
    return True


def can_extend_selection(current: Iterable[datetime], candidate: datetime) -> bool:
    return is_contiguous([*current, candidate])


def toggle_selection(current: Sequence[datetime], candidate: datetime) -> list[datetime]:
    """Add ``candidate`` to the selection, or remove it when already selected.

    Removal is unconditional and may leave a gap in the remaining points.
    """
    _check_alignment(candidate)
    if candidate in current:
        return sorted(point for point in current if point != candidate)
    if not can_extend_selection(current, candidate):
        raise SelectionError("Selected slots must be consecutive 30-minute slots on the same day.")
    return sorted({*current, candidate})


def booking_window(points: Iterable[datetime]) -> tuple[date, time, time]:
    """Map a slot selection to ``(date, start, end)`` of a single booking."""
    ordered = sorted(set(points))
    if not ordered:
        raise SelectionError("Select at least one slot.")
    for point in ordered:
        _check_alignment(point)
    if not is_contiguous(ordered):
        raise SelectionError("Selected slots must be consecutive 30-minute slots on the same day.")

    first, last = ordered[0], ordered[-1] + SLOT_DELTA
    end_time = last.time() if last.date() == first.date() else END_OF_DAY
    return first.date(), first.time(), end_time


def slot_points(day: date, start: time, end: time) -> list[time]:
    """Every slot point covered by the half-open window ``[start, end)``."""
    points: list[time] = []
    current = datetime.combine(day, start)
    while current.date() == day and current.time() < end:
        points.append(current.time())
        current += SLOT_DELTA
    return points


def _iterate_rule_dates(rule: AvailabilityRule) -> Iterator[date]:
    current = rule.start_date
    while current <= rule.end_date:
        if weekday_number(current) in rule.days_of_week:
            yield current
        current += timedelta(days=1)


def expand_rule_dates(rule: AvailabilityRule, max_span_days: int) -> Iterator[date]:
    """Concrete dates a rule applies to; recurring spans are checked up front."""
    if not rule.is_recurring:
        return iter([rule.specific_date] if rule.specific_date else [])

    if rule.start_date is None or rule.end_date is None:
        raise RuleSpanError("Recurring availability needs both a start and an end date.")
    span_days = (rule.end_date - rule.start_date).days + 1
    if span_days > max_span_days:
        raise RuleSpanError(f"Recurring availability may span at most {max_span_days} days.")
    return _iterate_rule_dates(rule)


def has_overlap(
    candidate: AvailabilityRule,
    rules: Sequence[AvailabilityRule],
    absences: Sequence[Absence],
    max_span_days: int,
) -> bool:
    """True when the candidate collides with an absence or an existing interval."""
    for day in expand_rule_dates(candidate, max_span_days):
        if is_date_blocked(absences, day):
            return True
        existing = resolve_slots(rules, day)
        for new_interval in candidate.time_slots:
            if any(new_interval.overlaps(interval) for interval in existing):
                return True
    return False


def effective_status(status: str, consultation_date: date, end_time: time, now: datetime | None = None) -> str:
    # COMPLETED is never stored; a scheduled visit becomes completed once it ends.
    if status != SCHEDULED:
        return status
    now = now or datetime.now()
    if datetime.combine(consultation_date, end_time) <= now:
        return COMPLETED
    return status


def week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def week_days(start: date) -> list[date]:
    return [start + timedelta(days=offset) for offset in range(7)]


def day_slot_points(start_hour: int = 0, end_hour: int = 24) -> list[time]:
    return [
        time(minutes // 60, minutes % 60)
        for minutes in range(start_hour * 60, end_hour * 60, SLOT_MINUTES)
    ]
