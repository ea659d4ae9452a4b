"""
Recurrence rule evaluation for recurring event templates.

Expands a RecurrencePattern into the ordered occurrences it defines within a
date window. Evaluation is pure: the same pattern and window always yield the
same occurrences, and the generator can be restarted at any point.

Design:
- Expansion is delegated to dateutil.rrule on naive local wall-clock times,
  then each occurrence is attached to the pattern's IANA zone and resolved
  to a UTC instant
- Weekly blocks of 7 * frequency days are anchored at start_date (the week
  start is the start date's own weekday), so "every 2 weeks" counts from the
  first occurrence, never from a calendar epoch
- Monthly patterns skip months that lack day_of_month instead of rolling
  over (day 31 never lands in February, April, June, September, November)
- Weekday indices follow the client convention: 0 = Sunday ... 6 = Saturday
- DST: wall-clock times are resolved with fold=0, so an ambiguous time maps
  to its first instant and a skipped time uses the pre-transition offset
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import rrule

from backend.src.models.event_template import PatternType
from backend.src.services.exceptions import InvalidPatternError


MAX_INSTANCES_PER_QUERY = 100
MAX_LOOKAHEAD_DAYS = 90
DEFAULT_TIMEZONE = "Africa/Johannesburg"

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

# dateutil weekday constants indexed by client weekday (0 = Sunday)
_RRULE_WEEKDAYS = [rrule.SU, rrule.MO, rrule.TU, rrule.WE, rrule.TH, rrule.FR, rrule.SA]

WindowBound = Union[date, datetime]


def weekday_index(d: date) -> int:
    """Return the client weekday index of a date (0 = Sunday)."""
    return (d.weekday() + 1) % 7


@dataclass(frozen=True)
class RecurrencePattern:
    """
    Authored rule describing how an event template repeats.

    Attributes:
        type: Daily, weekly or monthly
        start_date: Date of the first possible occurrence (local)
        start_time: Local wall-clock time of every occurrence
        timezone: IANA zone in which dates and times are interpreted
        frequency: Every N days / weeks / months (must be positive)
        days_of_week: Weekday indices 0-6, weekly patterns only
        day_of_month: Day 1-31, monthly patterns only
        end_date: Last possible occurrence date (None = open-ended)
        excluded_dates: Dates explicitly skipped (holiday overrides)
    """

    type: PatternType
    start_date: date
    start_time: time
    timezone: str = DEFAULT_TIMEZONE
    frequency: int = 1
    days_of_week: FrozenSet[int] = field(default_factory=frozenset)
    day_of_month: Optional[int] = None
    end_date: Optional[date] = None
    excluded_dates: FrozenSet[date] = field(default_factory=frozenset)

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_timezone: str = DEFAULT_TIMEZONE) -> "RecurrencePattern":
        """
        Build a pattern from a plain mapping.

        Accepts snake_case keys as well as the camelCase keys stored by the
        mobile client (daysOfWeek, dayOfMonth, startDate, ...). Dates are ISO
        strings or date objects, start_time is "HH:MM" or a time object.

        Raises:
            InvalidPatternError: If a value cannot be parsed or the pattern is invalid
        """
        def pick(*keys: str) -> Any:
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return None

        errors: List[str] = []

        raw_type = pick("type")
        pattern_type = None
        try:
            pattern_type = PatternType(raw_type)
        except ValueError:
            errors.append(f"Pattern type must be one of daily, weekly, monthly (got {raw_type!r})")

        start_date = _parse_date(pick("start_date", "startDate"), "start_date", errors, required=True)
        end_date = _parse_date(pick("end_date", "endDate"), "end_date", errors, required=False)
        start_time = _parse_time(pick("start_time", "startTime"), errors)

        excluded = set()
        for raw in pick("excluded_dates", "excludedDates") or []:
            parsed = _parse_date(raw, "excluded_dates", errors, required=True)
            if parsed is not None:
                excluded.add(parsed)

        frequency = pick("frequency")
        if frequency is None:
            frequency = 1
        elif isinstance(frequency, bool) or not isinstance(frequency, int):
            errors.append(f"frequency must be an integer (got {frequency!r})")
            frequency = 1

        raw_days = pick("days_of_week", "daysOfWeek") or []
        days = set()
        for day in raw_days:
            if isinstance(day, bool) or not isinstance(day, int):
                errors.append(f"Invalid day of week: {day!r}. Must be 0-6 (Sunday-Saturday)")
            else:
                days.add(day)

        if errors:
            raise InvalidPatternError(errors)

        pattern = cls(
            type=pattern_type,
            start_date=start_date,
            start_time=start_time,
            timezone=pick("timezone") or default_timezone,
            frequency=frequency,
            days_of_week=frozenset(days),
            day_of_month=pick("day_of_month", "dayOfMonth"),
            end_date=end_date,
            excluded_dates=frozenset(excluded),
        )
        validate_pattern(pattern)
        return pattern

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-friendly mapping (snake_case keys)."""
        return {
            "type": self.type.value,
            "frequency": self.frequency,
            "days_of_week": sorted(self.days_of_week),
            "day_of_month": self.day_of_month,
            "timezone": self.timezone,
            "start_date": self.start_date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "excluded_dates": sorted(d.isoformat() for d in self.excluded_dates),
        }


@dataclass(frozen=True)
class Occurrence:
    """
    A single occurrence produced by evaluating a pattern, before persistence.

    Attributes:
        local_date: Occurrence date in the pattern's timezone
        local_datetime: Aware local wall-clock datetime
        instant: Aware UTC instant
        timezone: IANA zone name
        timezone_abbr: Zone abbreviation at that instant (e.g. "SAST")
    """

    local_date: date
    local_datetime: datetime
    instant: datetime
    timezone: str
    timezone_abbr: str

    @property
    def day_of_week(self) -> str:
        return DAY_NAMES[weekday_index(self.local_date)]

    @property
    def local_time_formatted(self) -> str:
        return format_time_12h(self.local_datetime.time())


def validate_pattern(pattern: RecurrencePattern) -> None:
    """
    Validate a recurrence pattern.

    Collects every problem before raising, mirroring what the organizer
    form displays.

    Raises:
        InvalidPatternError: If the pattern violates any invariant
    """
    errors: List[str] = []

    if not isinstance(pattern.type, PatternType):
        errors.append("Pattern type must be one of daily, weekly, monthly")

    if pattern.frequency is None or pattern.frequency < 1:
        errors.append(f"frequency must be a positive integer (got {pattern.frequency})")

    if pattern.type == PatternType.WEEKLY:
        if not pattern.days_of_week:
            errors.append("At least one day of week must be selected for weekly patterns")
        for day in sorted(pattern.days_of_week):
            if day < 0 or day > 6:
                errors.append(f"Invalid day of week: {day}. Must be 0-6 (Sunday-Saturday)")
    elif pattern.days_of_week:
        errors.append("days_of_week is only allowed for weekly patterns")

    if pattern.type == PatternType.MONTHLY:
        if pattern.day_of_month is None:
            errors.append("day_of_month is required for monthly patterns")
        elif isinstance(pattern.day_of_month, bool) or not isinstance(pattern.day_of_month, int) \
                or not 1 <= pattern.day_of_month <= 31:
            errors.append(f"day_of_month must be between 1 and 31 (got {pattern.day_of_month!r})")
    elif pattern.day_of_month is not None:
        errors.append("day_of_month is only allowed for monthly patterns")

    if pattern.end_date is not None and pattern.start_date is not None \
            and pattern.end_date < pattern.start_date:
        errors.append("End date must not be before start date")

    if not pattern.timezone:
        errors.append("Timezone is required")
    else:
        try:
            ZoneInfo(pattern.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"Invalid timezone: {pattern.timezone}")

    if errors:
        raise InvalidPatternError(errors)


def occurrences_in_window(
    pattern: RecurrencePattern,
    window_start: WindowBound,
    window_end: WindowBound,
) -> Iterator[Occurrence]:
    """
    Lazily yield the occurrences of a pattern inside a window, in order.

    Window bounds are inclusive. A date bound is compared with the local
    occurrence date; a datetime bound is compared with the UTC instant
    (naive datetimes are taken as UTC).

    Args:
        pattern: Recurrence pattern to expand
        window_start: First date or instant of interest
        window_end: Last date or instant of interest

    Yields:
        Occurrence objects, strictly increasing, without duplicates

    Raises:
        InvalidPatternError: If the pattern is invalid
    """
    validate_pattern(pattern)
    return _iter_occurrences(pattern, window_start, window_end)


def _iter_occurrences(
    pattern: RecurrencePattern,
    window_start: Optional[WindowBound],
    window_end: Optional[WindowBound],
) -> Iterator[Occurrence]:
    zone = pattern.zone
    start_bound, start_is_instant = _normalize_bound(window_start)
    end_bound, end_is_instant = _normalize_bound(window_end)

    for local_naive in _build_rule(pattern):
        local_date = local_naive.date()

        if end_bound is not None and not end_is_instant and local_date > end_bound:
            return
        if local_date in pattern.excluded_dates:
            continue

        local_dt = local_naive.replace(tzinfo=zone)
        instant = local_dt.astimezone(timezone.utc)

        if end_bound is not None and end_is_instant and instant > end_bound:
            return
        if start_bound is not None:
            if start_is_instant and instant < start_bound:
                continue
            if not start_is_instant and local_date < start_bound:
                continue

        yield Occurrence(
            local_date=local_date,
            local_datetime=local_dt,
            instant=instant,
            timezone=pattern.timezone,
            timezone_abbr=local_dt.tzname() or pattern.timezone,
        )


def _build_rule(pattern: RecurrencePattern) -> Iterable[datetime]:
    dtstart = datetime.combine(pattern.start_date, pattern.start_time)
    until = datetime.combine(pattern.end_date, time.max) if pattern.end_date else None

    if pattern.type == PatternType.DAILY:
        return rrule.rrule(rrule.DAILY, interval=pattern.frequency, dtstart=dtstart, until=until)

    if pattern.type == PatternType.WEEKLY:
        return rrule.rrule(
            rrule.WEEKLY,
            interval=pattern.frequency,
            dtstart=dtstart,
            until=until,
            byweekday=[_RRULE_WEEKDAYS[d] for d in sorted(pattern.days_of_week)],
            # Week blocks start on the start date's own weekday
            wkst=dtstart.weekday(),
        )

    if pattern.type == PatternType.MONTHLY:
        # RFC 5545 semantics: months without day_of_month are skipped
        return rrule.rrule(
            rrule.MONTHLY,
            interval=pattern.frequency,
            dtstart=dtstart,
            until=until,
            bymonthday=pattern.day_of_month,
        )

    raise InvalidPatternError([f"Unsupported pattern type: {pattern.type!r}"])


def _normalize_bound(bound: Optional[WindowBound]) -> Tuple[Optional[Union[date, datetime]], bool]:
    if bound is None:
        return None, False
    if isinstance(bound, datetime):
        if bound.tzinfo is None:
            return bound.replace(tzinfo=timezone.utc), True
        return bound.astimezone(timezone.utc), True
    return bound, False


def find_next_occurrence(pattern: RecurrencePattern, after: datetime) -> Optional[Occurrence]:
    """
    Find the first occurrence at or after an instant.

    Returns:
        The next Occurrence, or None if the series has ended
    """
    validate_pattern(pattern)
    return next(_iter_occurrences(pattern, after, None), None)


def is_series_active(pattern: RecurrencePattern, today: date) -> bool:
    """Check whether a series can still produce occurrences from today on."""
    return pattern.end_date is None or pattern.end_date >= today


def instance_id_for(template_guid: str, local_date: date) -> str:
    """Build the deterministic instance id for a template occurrence."""
    return f"{template_guid}_{local_date.isoformat()}"


def parse_instance_id(instance_id: str) -> Tuple[str, date]:
    """
    Split an instance id into its template GUID and occurrence date.

    Raises:
        ValueError: If the id is not of the form {template_guid}_{YYYY-MM-DD}
    """
    template_guid, sep, date_str = instance_id.rpartition("_")
    if not sep or not template_guid:
        raise ValueError(f"Invalid instance id: {instance_id}")
    return template_guid, date.fromisoformat(date_str)


def format_time_12h(value: time) -> str:
    """Format a time as "h:mm AM" without a leading zero."""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def format_recurrence_display(pattern: RecurrencePattern) -> str:
    """
    Format a pattern for display.

    Examples:
        "Every Monday, Wednesday at 10:00 AM SAST"
        "Every 2 weeks on Friday at 6:30 PM SAST"
        "Every 3 days at 9:00 AM CET"
        "Monthly on day 15 at 7:00 PM SAST"
    """
    local = datetime.combine(pattern.start_date, pattern.start_time).replace(tzinfo=pattern.zone)
    when = f"at {format_time_12h(pattern.start_time)} {local.tzname()}"

    if pattern.type == PatternType.DAILY:
        prefix = "Every day" if pattern.frequency == 1 else f"Every {pattern.frequency} days"
        return f"{prefix} {when}"

    if pattern.type == PatternType.WEEKLY:
        days = ", ".join(DAY_NAMES[d] for d in sorted(pattern.days_of_week))
        if pattern.frequency == 1:
            return f"Every {days} {when}"
        return f"Every {pattern.frequency} weeks on {days} {when}"

    if pattern.type == PatternType.MONTHLY:
        prefix = "Monthly" if pattern.frequency == 1 else f"Every {pattern.frequency} months"
        return f"{prefix} on day {pattern.day_of_month} {when}"

    return ""


def default_window(now: datetime, lookahead_days: int = MAX_LOOKAHEAD_DAYS) -> Tuple[datetime, datetime]:
    """Return the materialization window [now, now + lookahead_days]."""
    return now, now + timedelta(days=lookahead_days)


def _parse_date(raw: Any, field_name: str, errors: List[str], required: bool) -> Optional[date]:
    if raw is None or raw == "":
        if required:
            errors.append(f"{field_name} is required")
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        # Accept full ISO timestamps from the client; only the date matters
        return date.fromisoformat(str(raw)[:10])
    except ValueError:
        errors.append(f"{field_name} must be an ISO date (got {raw!r})")
        return None


def _parse_time(raw: Any, errors: List[str]) -> Optional[time]:
    if raw is None or raw == "":
        errors.append("Start time is required")
        return None
    if isinstance(raw, time):
        return raw
    text = str(raw)
    try:
        hours, minutes = text.split(":")
        if len(hours) != 2 or len(minutes) != 2:
            raise ValueError(text)
        return time(int(hours), int(minutes))
    except ValueError:
        errors.append('Start time must be in HH:mm format (e.g., "10:00")')
        return None
