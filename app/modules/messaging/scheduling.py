import logging
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.config import settings
from app.modules.messaging.schemas import MessageRequest, MessageRecipient, NotificationPreferences

log = logging.getLogger(__name__)

def _now() -> datetime:
    return datetime.now(timezone.utc)

def parse_hhmm(value: str) -> time:
    hh, mm = value.split(":")
    return time(int(hh), int(mm))

def zone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or settings.DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        log.warning(f"Unknown timezone {name!r}; using {settings.DEFAULT_TIMEZONE}")
        return ZoneInfo(settings.DEFAULT_TIMEZONE)

def in_window(local: time, start: time, end: time) -> bool:
    if start == end:
        return False
    if start < end:
        return start <= local < end
    # window wraps midnight, e.g. 22:00-08:00
    return local >= start or local < end

def quiet_window(recipient: MessageRecipient, preferences: NotificationPreferences) -> tuple[time, time, ZoneInfo]:
    qh = recipient.quiet_hours or preferences.quiet_hours
    if qh:
        return parse_hhmm(qh.start), parse_hhmm(qh.end), zone(qh.timezone or recipient.timezone)
    return parse_hhmm(settings.QUIET_HOURS_START), parse_hhmm(settings.QUIET_HOURS_END), zone(recipient.timezone)

def calculate_send_time(request: MessageRequest, recipient: MessageRecipient, preferences: NotificationPreferences,
                        now: datetime | None = None) -> datetime:
    """UTC instant at which the delivery may fire; `now` means dispatch immediately."""
    now = now or _now()
    if request.scheduled_at is not None:
        at = request.scheduled_at if request.scheduled_at.tzinfo else request.scheduled_at.replace(tzinfo=timezone.utc)
        if at > now:
            return at.astimezone(timezone.utc)
    if request.priority == "urgent":
        return now
    start, end, tz = quiet_window(recipient, preferences)
    local = now.astimezone(tz)
    if not in_window(local.time(), start, end):
        return now
    target = local.replace(hour=end.hour, minute=end.minute, second=0, microsecond=0)
    if target <= local:
        target += timedelta(days=1)
    log.info(f"Quiet hours for {recipient.user_id}: deferring to {target.isoformat()}")
    return target.astimezone(timezone.utc)
