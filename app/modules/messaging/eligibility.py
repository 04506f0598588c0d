import logging
from app.modules.messaging.schemas import CHANNEL_PRIORITY, MessageRecipient, NotificationPreferences

log = logging.getLogger(__name__)

def has_contact(channel: str, recipient: MessageRecipient) -> bool:
    if channel == "email":
        return bool(recipient.email)
    if channel == "sms":
        return bool(recipient.phone)
    if channel == "push":
        return bool(recipient.push_tokens)
    if channel == "whatsapp":
        return bool(recipient.whatsapp_number)
    return channel == "inapp"

def exclusion(channel: str, recipient: MessageRecipient, preferences: NotificationPreferences, category: str) -> str | None:
    """Reason the channel must be skipped for this recipient, or None."""
    if channel in recipient.unsubscribed:
        return "unsubscribed"
    pref = preferences.channel(channel)
    if not pref.enabled:
        return "disabled"
    if category != "emergency" and pref.categories and category not in pref.categories:
        return f"category {category} not allowed"
    if category == "marketing" and not getattr(preferences.marketing, channel):
        return "marketing opt-out"
    if not has_contact(channel, recipient):
        return "no contact"
    return None

def determine_channels(requested: list[str], recipient: MessageRecipient, preferences: NotificationPreferences, category: str) -> list[str]:
    eligible: list[str] = []
    for ch in requested:
        if ch in eligible:
            continue
        reason = exclusion(ch, recipient, preferences, category)
        if reason:
            log.debug(f"Skipping {ch} for {recipient.user_id}: {reason}")
            continue
        eligible.append(ch)
    ordered = sorted(eligible, key=CHANNEL_PRIORITY.index)
    if recipient.preferred_channel in ordered:
        ordered.remove(recipient.preferred_channel)
        ordered.insert(0, recipient.preferred_channel)
    return ordered

def candidate_channels(template_channels: list[str], requested: list[str] | None) -> list[str]:
    if requested is not None:
        return [ch for ch in requested if ch in template_channels]
    return list(template_channels)
