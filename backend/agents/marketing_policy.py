"""
Marketing window math. Pure functions of (time, settings) so the lore worker
and the marketing poster can both consult the window without sharing state.

Minutes are counted from local midnight on a 0..1439 circle; a window that
crosses midnight wraps.
"""
import random
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from models.lore import MarketingPolicy

MINUTES_PER_DAY = 1440


def parse_hhmm(value: str) -> Tuple[int, int]:
    parts = (value or "").strip().split(":")
    if len(parts) != 2 or not parts[0].isdigit() or len(parts[1]) != 2 or not parts[1].isdigit():
        raise ValueError(f"Invalid time format (expected HH:MM): {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time value: {value!r}")
    return hour, minute


def get_marketing_policy(cfg) -> MarketingPolicy:
    """Derive the policy from settings; recomputed on every use."""
    hour, minute = parse_hhmm(cfg.marketing_time)
    base = hour * 60 + minute
    window = max(0, int(cfg.marketing_window_minutes))
    jitter = max(0, int(cfg.marketing_jitter_minutes))
    half = window // 2
    return MarketingPolicy(
        enabled=bool(cfg.marketing_enabled),
        timezone=cfg.marketing_timezone,
        base_time_hhmm=cfg.marketing_time,
        base_minutes=base,
        window_minutes=window,
        window_start_minutes=(base - half) % MINUTES_PER_DAY,
        window_end_minutes=(base + half) % MINUTES_PER_DAY,
        jitter_minutes=jitter,
    )


def to_local(when: datetime, tz_name: str) -> datetime:
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.astimezone(ZoneInfo(tz_name))


def local_minutes(when: datetime, tz_name: str) -> int:
    local = to_local(when, tz_name)
    return local.hour * 60 + local.minute


def local_ymd(when: datetime, tz_name: str) -> str:
    return to_local(when, tz_name).strftime("%Y-%m-%d")


def in_circular_range(minute: int, start: int, end: int) -> bool:
    if start <= end:
        return start <= minute <= end
    return minute >= start or minute <= end


def is_in_marketing_window_at(when: datetime, policy: MarketingPolicy) -> bool:
    """True when ``when`` falls inside [start, end] local minutes, inclusive."""
    minute = local_minutes(when, policy.timezone)
    return in_circular_range(minute, policy.window_start_minutes, policy.window_end_minutes)


def pick_jittered_publish_minute(base: int, jitter: int, rng: Optional[random.Random] = None) -> int:
    """Uniform integer in [base - jitter, base + jitter], clamped to the same local day."""
    if jitter <= 0:
        return base
    rng = rng or random.Random()
    picked = rng.randint(base - jitter, base + jitter)
    return max(0, min(MINUTES_PER_DAY - 1, picked))


def publish_delay_seconds(when: datetime, target_minute: int, tz_name: str) -> float:
    """
    Seconds from ``when`` until ``target_minute`` of the same local day.
    Negative when the minute has already passed.
    """
    local = to_local(when, tz_name)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    target = (midnight + timedelta(minutes=target_minute)).replace(fold=0)
    # Aware datetimes sharing one tzinfo subtract as wall clock; compare in UTC
    return (target.astimezone(timezone.utc) - local.astimezone(timezone.utc)).total_seconds()


def seconds_until_next_midnight(when: datetime, tz_name: str) -> float:
    local = to_local(when, tz_name)
    next_day = (local + timedelta(days=1)).date()
    midnight = datetime(next_day.year, next_day.month, next_day.day, tzinfo=local.tzinfo)
    return max(1.0, (midnight.astimezone(timezone.utc) - local.astimezone(timezone.utc)).total_seconds())
