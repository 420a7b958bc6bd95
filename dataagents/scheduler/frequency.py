#!/usr/bin/env python3
"""
frequency.py
-------------------
Flexible run frequencies with jitter and time windows.

Replaces cron expressions for the auto-apply scheduler. A frequency is one of
three variants:

    - IntervalFrequency: every N minutes ± jitter, optionally inside a window
    - DailyFrequency: once a day at a random time inside a window
    - WeeklyFrequency: once on each allowed weekday inside a window

Windows are "HH:MM" wall-clock times in the scheduler timezone
(Europe/Paris by default) and may cross midnight (e.g. 22:00-06:00).
Weekdays use 0 = Sunday ... 6 = Saturday.

Randomness and the current time are injectable so results are reproducible:

    >>> rng = random.Random(7)
    >>> cfg = DailyFrequency(window_start="00:00", window_end="05:00")
    >>> calculate_next_run(cfg, now=datetime(2025, 3, 1, 12, tzinfo=timezone.utc), rng=rng)
    NextRunResult(...)
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import random
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Union
from zoneinfo import ZoneInfo

# --- Local imports ---
from dataagents.core.exceptions import ValidationError


DEFAULT_TIMEZONE = "Europe/Paris"
MIN_WINDOW_MINUTES = 60
MINUTES_PER_DAY = 24 * 60
DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

_TIME_RE = re.compile(r"^\d{2}:\d{2}$")


class FrequencyType(str, Enum):
    """Kinds of run frequency."""

    INTERVAL = "interval"
    DAILY = "daily"
    WEEKLY = "weekly"

    @classmethod
    def choices(cls) -> List[str]:
        return [t.value for t in cls]


# ═══════════════════════════════════════════════════════════════════════════
# CONFIG VARIANTS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class IntervalFrequency:
    """
    Periodic run every ``interval_minutes`` ± ``jitter_minutes``.

    When both window bounds are set, a next run falling outside the window
    is moved to a random instant inside the next window.
    """

    type: ClassVar[FrequencyType] = FrequencyType.INTERVAL

    interval_minutes: int
    jitter_minutes: int = 0
    window_start: Optional[str] = None
    window_end: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type.value,
            "interval_minutes": self.interval_minutes,
            "jitter_minutes": self.jitter_minutes,
        }
        if self.window_start is not None:
            data["window_start"] = self.window_start
        if self.window_end is not None:
            data["window_end"] = self.window_end
        return data


@dataclass(frozen=True)
class DailyFrequency:
    """One run per day at a random time inside the window."""

    type: ClassVar[FrequencyType] = FrequencyType.DAILY

    window_start: str
    window_end: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "window_start": self.window_start,
            "window_end": self.window_end,
        }


@dataclass(frozen=True)
class WeeklyFrequency:
    """One run per allowed weekday (0 = Sunday) inside the window."""

    type: ClassVar[FrequencyType] = FrequencyType.WEEKLY

    window_start: str
    window_end: str
    days_of_week: Tuple[int, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "window_start": self.window_start,
            "window_end": self.window_end,
            "days_of_week": list(self.days_of_week),
        }


FrequencyConfig = Union[IntervalFrequency, DailyFrequency, WeeklyFrequency]


@dataclass
class FrequencyValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


@dataclass
class NextRunResult:
    """
    Next scheduled run.

    Attributes:
        next_run_at: Instant of the next run (UTC)
        delay_seconds: Seconds between ``now`` and ``next_run_at``
        description: Human-readable local time, e.g. 'Monday 03 March at 02:17'
    """

    next_run_at: datetime
    delay_seconds: float
    description: str


# ═══════════════════════════════════════════════════════════════════════════
# PARSING
# ═══════════════════════════════════════════════════════════════════════════

def _pick(data: Mapping[str, Any], snake: str, camel: str) -> Any:
    if snake in data:
        return data[snake]
    return data.get(camel)


def frequency_from_dict(data: Mapping[str, Any]) -> FrequencyConfig:
    """
    Build a frequency variant from a mapping (YAML settings, stored state).

    Accepts snake_case and camelCase keys (``interval_minutes`` or
    ``intervalMinutes``). The result is not validated; use
    validate_frequency_config() before scheduling with it.

    Raises:
        ValidationError: If the type is missing or unknown
    """
    if not isinstance(data, Mapping):
        raise ValidationError(f"Frequency config must be a mapping, got {type(data).__name__}")

    kind = data.get("type")
    if not kind:
        raise ValidationError(
            f"Frequency type is required ({', '.join(FrequencyType.choices())})"
        )
    if kind not in FrequencyType.choices():
        raise ValidationError(
            f"Invalid frequency type: {kind}. Accepted values: {', '.join(FrequencyType.choices())}"
        )

    window_start = _pick(data, "window_start", "windowStart")
    window_end = _pick(data, "window_end", "windowEnd")

    if kind == FrequencyType.INTERVAL.value:
        return IntervalFrequency(
            interval_minutes=_pick(data, "interval_minutes", "intervalMinutes") or 0,
            jitter_minutes=_pick(data, "jitter_minutes", "jitterMinutes") or 0,
            window_start=window_start,
            window_end=window_end,
        )
    if kind == FrequencyType.DAILY.value:
        return DailyFrequency(window_start=window_start, window_end=window_end)

    days = _pick(data, "days_of_week", "daysOfWeek") or ()
    return WeeklyFrequency(
        window_start=window_start,
        window_end=window_end,
        days_of_week=tuple(days),
    )


def _parse_time(value: str) -> Tuple[int, int]:
    hours, minutes = value.split(":")
    return int(hours), int(minutes)


def _window_bounds(window_start: str, window_end: str) -> Tuple[int, int]:
    """Window as (start, end) minute offsets; end > start, crossing midnight if needed."""
    sh, sm = _parse_time(window_start)
    eh, em = _parse_time(window_end)
    start_total = sh * 60 + sm
    end_total = eh * 60 + em
    if end_total <= start_total:
        end_total += MINUTES_PER_DAY
    return start_total, end_total


# ═══════════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════════

def _check_time(label: str, value: Optional[str], errors: List[str]) -> bool:
    if value is None:
        return False
    if not isinstance(value, str) or not _TIME_RE.match(value):
        errors.append(f"{label} must use the HH:MM format (got: {value})")
        return False
    hours, minutes = _parse_time(value)
    if hours > 23 or minutes > 59:
        errors.append(f"{label} is not a valid time of day (got: {value})")
        return False
    return True


def validate_frequency_config(config: Any) -> FrequencyValidationResult:
    """
    Check a frequency configuration.

    Rules:
        - interval_minutes > 0 for interval frequencies
        - jitter_minutes <= interval_minutes / 2
        - daily and weekly frequencies need both window bounds
        - window bounds use HH:MM and span at least one hour
        - weekly days are non-empty and within 0-6

    Args:
        config: A frequency variant

    Returns:
        FrequencyValidationResult with every problem found
    """
    errors: List[str] = []

    kind = getattr(config, "type", None)
    if kind not in (FrequencyType.INTERVAL, FrequencyType.DAILY, FrequencyType.WEEKLY):
        errors.append(
            f"Frequency type is required ({', '.join(FrequencyType.choices())})"
        )
        return FrequencyValidationResult(valid=False, errors=errors)

    if kind == FrequencyType.INTERVAL:
        interval = config.interval_minutes
        if not isinstance(interval, (int, float)) or isinstance(interval, bool) or interval <= 0:
            errors.append("interval_minutes is required and must be > 0 for 'interval'")
        else:
            jitter = config.jitter_minutes or 0
            if jitter < 0:
                errors.append(f"jitter_minutes must not be negative (got: {jitter})")
            elif jitter > interval / 2:
                errors.append(
                    f"jitter_minutes ({jitter}) exceeds half of interval_minutes ({interval / 2})"
                )
        if (config.window_start is None) != (config.window_end is None):
            errors.append("window_start and window_end must be set together")
    else:
        if not config.window_start:
            errors.append(f"window_start is required for '{kind.value}'")
        if not config.window_end:
            errors.append(f"window_end is required for '{kind.value}'")

    start_ok = _check_time("window_start", config.window_start, errors)
    end_ok = _check_time("window_end", config.window_end, errors)

    if kind == FrequencyType.WEEKLY:
        days = config.days_of_week
        if not days:
            errors.append("days_of_week is required and cannot be empty for 'weekly'")
        else:
            invalid = [d for d in days if not isinstance(d, int) or d < 0 or d > 6]
            if invalid:
                errors.append(
                    "days_of_week contains invalid values: "
                    f"{', '.join(str(d) for d in invalid)}. Accepted values: 0-6 (0=Sunday)"
                )

    if start_ok and end_ok:
        start_total, end_total = _window_bounds(config.window_start, config.window_end)
        duration = end_total - start_total
        if duration < MIN_WINDOW_MINUTES:
            errors.append(
                f"The time window must last at least 1 hour (current duration: {duration} minutes)"
            )

    return FrequencyValidationResult(valid=not errors, errors=errors)


def ensure_valid(config: Any) -> None:
    """Raise ValidationError listing every problem of ``config``."""
    result = validate_frequency_config(config)
    if not result.valid:
        raise ValidationError(f"Invalid frequency config: {'; '.join(result.errors)}")


# ═══════════════════════════════════════════════════════════════════════════
# NEXT RUN
# ═══════════════════════════════════════════════════════════════════════════

def _js_weekday(moment: datetime) -> int:
    return (moment.weekday() + 1) % 7


def _is_in_window(local: datetime, window_start: str, window_end: str) -> bool:
    sh, sm = _parse_time(window_start)
    eh, em = _parse_time(window_end)
    current = local.hour * 60 + local.minute
    start_total = sh * 60 + sm
    end_total = eh * 60 + em
    if start_total <= end_total:
        return start_total <= current < end_total
    return current >= start_total or current < end_total


def _next_window_start(
    from_local: datetime,
    window_start: str,
    days_of_week: Optional[Tuple[int, ...]] = None,
) -> datetime:
    hours, minutes = _parse_time(window_start)
    candidate = from_local.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    if candidate < from_local:
        candidate += timedelta(days=1)

    if days_of_week:
        attempts = 0
        while _js_weekday(candidate) not in days_of_week and attempts < 7:
            candidate += timedelta(days=1)
            attempts += 1
    return candidate


def _random_time_in_window(
    day_local: datetime, window_start: str, window_end: str, rng: random.Random
) -> datetime:
    start_total, end_total = _window_bounds(window_start, window_end)
    target = start_total + rng.randrange(end_total - start_total)
    result = day_local.replace(
        hour=(target // 60) % 24, minute=target % 60, second=0, microsecond=0
    )
    if target >= MINUTES_PER_DAY:
        result += timedelta(days=1)
    return result


def _as_utc(moment: datetime) -> datetime:
    # ZoneInfo arithmetic is wall-clock; normalising through UTC settles the offset.
    return moment.astimezone(timezone.utc)


def calculate_next_run(
    config: FrequencyConfig,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
    tz: Union[str, ZoneInfo] = DEFAULT_TIMEZONE,
) -> NextRunResult:
    """
    Compute the next run instant for ``config``.

    Args:
        config: Frequency variant
        now: Current instant (defaults to the current UTC time; naive values are UTC)
        rng: Random source for jitter and window offsets
        tz: Timezone the windows are expressed in

    Returns:
        NextRunResult with the UTC instant, delay and a readable description

    Raises:
        ValidationError: If the configuration is invalid
    """
    ensure_valid(config)

    zone = tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)
    rng = rng or random.Random()
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    if isinstance(config, IntervalFrequency):
        jitter = rng.randint(-config.jitter_minutes, config.jitter_minutes) if config.jitter_minutes else 0
        next_run = now + timedelta(minutes=config.interval_minutes + jitter)

        if config.window_start and config.window_end:
            local = next_run.astimezone(zone)
            if not _is_in_window(local, config.window_start, config.window_end):
                day = _as_utc(_next_window_start(local, config.window_start)).astimezone(zone)
                next_run = _random_time_in_window(
                    day, config.window_start, config.window_end, rng
                )
    else:
        days = config.days_of_week if isinstance(config, WeeklyFrequency) else None
        local_now = now.astimezone(zone)
        day = _as_utc(_next_window_start(local_now, config.window_start, days)).astimezone(zone)
        next_run = _random_time_in_window(day, config.window_start, config.window_end, rng)

    next_run = _as_utc(next_run)
    local_next = next_run.astimezone(zone)
    return NextRunResult(
        next_run_at=next_run,
        delay_seconds=(next_run - now).total_seconds(),
        description=local_next.strftime("%A %d %B at %H:%M"),
    )


# ═══════════════════════════════════════════════════════════════════════════
# DISPLAY & COMPARISON
# ═══════════════════════════════════════════════════════════════════════════

def _format_minutes(total: int) -> str:
    hours, minutes = divmod(int(total), 60)
    if hours and minutes:
        return f"{hours}h{minutes}min"
    if hours:
        return f"{hours}h"
    return f"{minutes}min"


def format_frequency_config(config: FrequencyConfig) -> str:
    """
    Render a frequency as short text.

    Examples:
        >>> format_frequency_config(IntervalFrequency(120, 30))
        'Every 2h ± 30min'
        >>> format_frequency_config(WeeklyFrequency("06:00", "09:00", (1, 5)))
        'Weekly Mon, Fri (06:00-09:00)'
    """
    if isinstance(config, IntervalFrequency):
        text = f"Every {_format_minutes(config.interval_minutes)}"
        if config.jitter_minutes:
            text += f" ± {_format_minutes(config.jitter_minutes)}"
        if config.window_start and config.window_end:
            text += f" ({config.window_start}-{config.window_end})"
        return text
    if isinstance(config, DailyFrequency):
        return f"Daily ({config.window_start}-{config.window_end})"
    if isinstance(config, WeeklyFrequency):
        days = ", ".join(DAY_NAMES[d] for d in sorted(config.days_of_week))
        return f"Weekly {days} ({config.window_start}-{config.window_end})"
    return "Unknown frequency"


def frequency_configs_equal(a: FrequencyConfig, b: FrequencyConfig) -> bool:
    """Compare two frequencies; weekly days are compared as sorted lists."""
    if a.type != b.type:
        return False
    if isinstance(a, WeeklyFrequency) and isinstance(b, WeeklyFrequency):
        return (
            a.window_start == b.window_start
            and a.window_end == b.window_end
            and sorted(a.days_of_week) == sorted(b.days_of_week)
        )
    return a == b
