"""Event window calculation over single and recurring time intervals.

Every interval is expanded lazily into chronologically ordered occurrences.
Each occurrence is classified relative to ``now`` as ongoing, upcoming or
past. Ongoing occurrences always win: the window spans the earliest ongoing
start to the latest ongoing end. Otherwise the earliest upcoming occurrence
is used. If nothing is ongoing or upcoming, no window is produced.
"""
import calendar
import logging
from datetime import date, datetime, timedelta, timezone
from itertools import count, islice
from typing import Iterator, List, Optional, Tuple

from processor.models import WEEKDAYS, EventWindow, Frequency, TimeInterval
from processor.utils import get_timezone

logger = logging.getLogger(__name__)

ONGOING = 'ongoing'
UPCOMING = 'upcoming'
PAST = 'past'

MAX_OCCURRENCES = 1000
WEEKLY_LOOKAHEAD = timedelta(weeks=52)

Occurrence = Tuple[datetime, Optional[datetime]]


def classify(start: datetime, end: Optional[datetime], now: datetime) -> str:
    """
    Classify an occurrence relative to ``now``.

    Args:
        start: Occurrence start
        end: Occurrence end, None for open-ended
        now: Evaluation instant

    Returns:
        One of ONGOING, UPCOMING or PAST
    """
    if start > now:
        return UPCOMING
    if end is None or now < end:
        return ONGOING
    return PAST


def _add_months(day: date, months: int) -> date:
    # Clamp to the last day of the target month (Jan 31 + 1 month -> Feb 28/29)
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def _at_local_time(day: date, template: datetime) -> datetime:
    """Place ``template``'s wall-clock time on ``day`` in the same timezone."""
    local = datetime.combine(day, template.timetz().replace(tzinfo=None))
    return local.replace(tzinfo=template.tzinfo).astimezone(timezone.utc)


def _duration(interval: TimeInterval) -> Optional[timedelta]:
    if interval.end is None:
        return None
    return max(interval.end - interval.start, timedelta(0))


def _weekly_occurrences(interval: TimeInterval, now: datetime) -> Iterator[Occurrence]:
    """Occurrences of a weekly rule with explicit weekdays."""
    local_start = interval.start.astimezone(get_timezone(interval.timezone))
    duration = _duration(interval)
    horizon = interval.repeat_until or (now + WEEKLY_LOOKAHEAD)

    anchor_monday = local_start.date() - timedelta(days=local_start.weekday())
    step_days = 7 * interval.interval
    offsets = sorted(WEEKDAYS.index(day) for day in interval.weekdays)

    # Skip whole periods that ended before anything could still be running
    earliest_relevant = (now - (duration or timedelta(0))).astimezone(local_start.tzinfo).date()
    first_period = max(0, (earliest_relevant - anchor_monday).days // step_days - 1)

    for period in count(first_period):
        monday = anchor_monday + timedelta(days=period * step_days)
        for offset in offsets:
            day = monday + timedelta(days=offset)
            if day < local_start.date():
                continue
            start = _at_local_time(day, local_start)
            if start > horizon:
                return
            yield start, (start + duration if duration is not None else None)


def _cadence_occurrences(interval: TimeInterval, now: datetime) -> Iterator[Occurrence]:
    """Occurrences of a daily, monthly, yearly or weekday-less weekly rule."""
    local_start = interval.start.astimezone(get_timezone(interval.timezone))
    duration = _duration(interval)
    anchor = local_start.date()

    if interval.frequency == Frequency.DAILY:
        unit_days = interval.interval
    elif interval.frequency == Frequency.WEEKLY:
        unit_days = 7 * interval.interval
    else:
        unit_days = None

    def nth(n: int) -> date:
        if unit_days is not None:
            return anchor + timedelta(days=n * unit_days)
        months = 12 if interval.frequency == Frequency.YEARLY else 1
        return _add_months(anchor, n * months * interval.interval)

    # Fast-forward close to now so the iteration bound is spent on relevant dates
    earliest_relevant = (now - (duration or timedelta(0))).astimezone(local_start.tzinfo).date()
    if unit_days is not None:
        first = max(0, (earliest_relevant - anchor).days // unit_days - 1)
    else:
        months_per_step = (12 if interval.frequency == Frequency.YEARLY else 1) * interval.interval
        elapsed_months = (earliest_relevant.year - anchor.year) * 12 + earliest_relevant.month - anchor.month
        first = max(0, elapsed_months // months_per_step - 1)

    for n in count(first):
        start = _at_local_time(nth(n), local_start)
        if interval.repeat_until is not None and start > interval.repeat_until:
            return
        yield start, (start + duration if duration is not None else None)


def occurrences(interval: TimeInterval, now: datetime) -> Iterator[Occurrence]:
    """
    Chronological occurrences of an interval, bounded by MAX_OCCURRENCES.

    Args:
        interval: Interval to expand
        now: Evaluation instant, used to skip periods long in the past

    Returns:
        Iterator of (start, end) tuples in UTC
    """
    if not interval.is_recurring:
        return iter([(interval.start, interval.end)])
    if interval.frequency == Frequency.WEEKLY and interval.weekdays:
        generator = _weekly_occurrences(interval, now)
    else:
        generator = _cadence_occurrences(interval, now)
    return islice(generator, MAX_OCCURRENCES)


def _classify_interval(interval: TimeInterval, now: datetime) -> Tuple[List[Occurrence], Optional[Occurrence]]:
    """Ongoing occurrences and the first upcoming occurrence of one interval."""
    ongoing = []
    if interval.is_recurring and interval.repeat_until is not None and interval.repeat_until < now:
        return ongoing, None

    for start, end in occurrences(interval, now):
        state = classify(start, end, now)
        if state == ONGOING:
            ongoing.append((start, end))
        elif state == UPCOMING:
            return ongoing, (start, end)
    return ongoing, None


def calculate_event_window(time_intervals: List[TimeInterval], now: Optional[datetime] = None,
                           precomputed: Optional[Tuple[Optional[datetime], Optional[datetime]]] = None
                           ) -> EventWindow:
    """
    Calculate the most relevant start/end window for an event listing.

    A precomputed window (the provider's ``interval_start``/``interval_end``
    attributes) is returned as-is while it is still ongoing or upcoming;
    otherwise the window is derived from the raw intervals.

    Args:
        time_intervals: Intervals attached to the item
        now: Evaluation instant (defaults to the current UTC time)
        precomputed: Optional (start, end) supplied by the provider

    Returns:
        EventWindow, with both fields None when nothing is ongoing or upcoming
    """
    if now is None:
        now = datetime.now(timezone.utc)

    if precomputed is not None:
        hint_start, hint_end = precomputed
        if hint_start is not None and hint_end is not None:
            if classify(hint_start, hint_end, now) != PAST:
                return EventWindow(start=hint_start, end=hint_end)
            logger.debug(f"Ignoring past precomputed interval {hint_start} - {hint_end}")

    ongoing: List[Occurrence] = []
    upcoming: List[Occurrence] = []
    for interval in time_intervals or []:
        interval_ongoing, next_upcoming = _classify_interval(interval, now)
        ongoing.extend(interval_ongoing)
        if next_upcoming is not None:
            upcoming.append(next_upcoming)

    if ongoing:
        ends = [end for _, end in ongoing if end is not None]
        return EventWindow(
            start=min(start for start, _ in ongoing),
            end=max(ends) if ends else None,
        )

    if upcoming:
        start, end = min(upcoming, key=lambda occurrence: occurrence[0])
        return EventWindow(start=start, end=end)

    return EventWindow()
