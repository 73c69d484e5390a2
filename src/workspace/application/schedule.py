"""
Next-due-time calculation for task triggers.

Raw trigger fields are first parsed into a typed trigger, then the typed
trigger is evaluated against a reference instant. Both steps are pure.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.workspace.domain.exceptions import InvalidTriggerError
from src.workspace.domain.models.task_state import AsyncStatus
from src.workspace.domain.models.trigger import (
    DailyTrigger,
    IntervalTrigger,
    ManualTrigger,
    OnceTrigger,
    Trigger,
    TriggerType,
)

DEFAULT_TIMEZONE = "Asia/Shanghai"
MAX_INTERVAL_HOURS = 720
_ONCE_FORMATS = ("%Y-%m-%d %H:%M", "%Y-%m-%d %H:%M:%S")


def normalize_timezone(timezone: str | None) -> str:
    return (timezone or "").strip() or DEFAULT_TIMEZONE


def load_timezone(timezone: str | None) -> ZoneInfo:
    name = normalize_timezone(timezone)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTriggerError(f"invalid timezone: {name!r}") from exc


def _trigger_type(trigger_type: str | TriggerType | None) -> TriggerType:
    raw = trigger_type.value if isinstance(trigger_type, TriggerType) else (trigger_type or "")
    raw = raw.strip()
    if not raw:
        return TriggerType.MANUAL
    try:
        return TriggerType(raw)
    except ValueError as exc:
        raise InvalidTriggerError(f"unsupported triggerType: {raw}") from exc


def _parse_timestamp(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        pass
    for fmt in _ONCE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    raise InvalidTriggerError(f"invalid once triggerValue: {value!r}")


def _parse_once(value: str, zone: ZoneInfo) -> datetime:
    parsed = _parse_timestamp(value)
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=zone)


def _parse_daily(value: str) -> DailyTrigger:
    parts = value.split(":")
    if len(parts) != 2:
        raise InvalidTriggerError("invalid daily triggerValue, expected HH:MM")
    try:
        hour = int(parts[0])
    except ValueError:
        hour = -1
    if not 0 <= hour <= 23:
        raise InvalidTriggerError(f"invalid daily hour in {value!r}")
    try:
        minute = int(parts[1])
    except ValueError:
        minute = -1
    if not 0 <= minute <= 59:
        raise InvalidTriggerError(f"invalid daily minute in {value!r}")
    return DailyTrigger(hour=hour, minute=minute)


def _parse_interval(value: str) -> IntervalTrigger:
    try:
        hours = int(value)
    except ValueError:
        hours = 0
    if not 1 <= hours <= MAX_INTERVAL_HOURS:
        raise InvalidTriggerError(f"invalid interval hours, expected 1~{MAX_INTERVAL_HOURS}")
    return IntervalTrigger(hours=hours)


def parse_trigger(
    trigger_type: str | TriggerType | None,
    trigger_value: str | None,
    timezone: str | None = None,
) -> Trigger:
    """Turn stored trigger fields into a typed trigger or raise ``InvalidTriggerError``."""
    kind = _trigger_type(trigger_type)
    if kind is TriggerType.MANUAL:
        return ManualTrigger()

    zone = load_timezone(timezone)
    value = (trigger_value or "").strip()
    if not value:
        raise InvalidTriggerError(f"triggerValue required when triggerType={kind.value}")

    if kind is TriggerType.ONCE:
        return OnceTrigger(at=_parse_once(value, zone))
    if kind is TriggerType.DAILY:
        return _parse_daily(value)
    return _parse_interval(value)


def next_due_for(trigger: Trigger, zone: ZoneInfo, now: datetime) -> datetime | None:
    if isinstance(trigger, ManualTrigger):
        return None
    if isinstance(trigger, OnceTrigger):
        return trigger.at

    base = now.astimezone(zone)
    if isinstance(trigger, DailyTrigger):
        candidate = base.replace(hour=trigger.hour, minute=trigger.minute, second=0, microsecond=0)
        if candidate <= base:
            candidate += timedelta(hours=24)
        return candidate
    return base + timedelta(hours=trigger.hours)


def compute_next_due_at(
    trigger_type: str | TriggerType | None,
    trigger_value: str | None,
    timezone: str | None,
    now: datetime,
) -> datetime | None:
    """
    Return the next instant a task should run, or ``None`` for manual triggers.

    A ``once`` trigger returns its timestamp unchanged; callers clear it after
    it has fired.
    """
    trigger = parse_trigger(trigger_type, trigger_value, timezone)
    if isinstance(trigger, ManualTrigger):
        return None
    return next_due_for(trigger, load_timezone(timezone), now)


def default_async_status(trigger_type: str | TriggerType | None) -> AsyncStatus:
    if _trigger_type(trigger_type) is TriggerType.MANUAL:
        return AsyncStatus.IDLE
    return AsyncStatus.SCHEDULED
