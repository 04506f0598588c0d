import logging
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.modules.messaging.repository import RecipientRepository
from app.modules.messaging.schemas import MessageRecipient, NotificationPreferences, QuietHours

log = logging.getLogger(__name__)

ENGAGEMENT_SIGNALS = {"opened", "clicked", "ignored"}

class RecipientResolver:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = RecipientRepository(session)

    async def resolve_recipient(self, user_id: str) -> MessageRecipient | None:
        profile = await self.repo.get_profile(user_id)
        if profile is None:
            return None
        quiet = None
        if profile.quiet_hours_start and profile.quiet_hours_end:
            quiet = QuietHours(start=profile.quiet_hours_start, end=profile.quiet_hours_end, timezone=profile.quiet_hours_timezone)
        return MessageRecipient(
            user_id=profile.user_id,
            email=profile.email,
            phone=profile.phone,
            push_tokens=await self.repo.push_tokens(user_id),
            whatsapp_number=profile.whatsapp_number,
            preferred_channel=profile.preferred_channel or "email",
            timezone=profile.timezone or settings.DEFAULT_TIMEZONE,
            language=profile.language or settings.DEFAULT_LANGUAGE,
            unsubscribed=list(profile.unsubscribed or []),
            quiet_hours=quiet,
        )

    async def resolve_preferences(self, user_id: str) -> NotificationPreferences:
        row = await self.repo.get_preferences(user_id)
        if row is None:
            return NotificationPreferences()
        return NotificationPreferences.model_validate({
            **(row.channels or {}),
            "marketing": row.marketing or {},
            "quiet_hours": row.quiet_hours,
        })

    async def save_preferences(self, user_id: str, prefs: NotificationPreferences) -> NotificationPreferences:
        data = prefs.model_dump(mode="json")
        await self.repo.save_preferences(
            user_id,
            channels={ch: data[ch] for ch in ("email", "push", "whatsapp", "sms", "inapp")},
            marketing=data["marketing"],
            quiet_hours=data["quiet_hours"],
        )
        await self.session.commit()
        return prefs

    async def update_channel_preferences(self, user_id: str, channel: str, signal: str) -> None:
        """Win-stays: a channel the user engaged with becomes the preferred one."""
        if signal not in ENGAGEMENT_SIGNALS:
            raise ValueError(f"unknown engagement signal: {signal}")
        profile = await self.repo.get_profile(user_id)
        if profile is None:
            log.info(f"Engagement for unknown user {user_id} on {channel} ignored")
            return
        if signal == "ignored":
            log.debug(f"User {user_id} ignored {channel}")
            return
        if profile.preferred_channel != channel:
            log.info(f"User {user_id} preferred channel {profile.preferred_channel} -> {channel} ({signal})")
            profile.preferred_channel = channel
            await self.session.flush()

    async def add_unsubscribed(self, user_id: str, channel: str) -> None:
        profile = await self.repo.get_profile(user_id)
        if profile is None:
            log.info(f"Unsubscribe for unknown user {user_id} on {channel} ignored")
            return
        current = list(profile.unsubscribed or [])
        if channel not in current:
            # reassign so the JSON column is marked dirty
            profile.unsubscribed = current + [channel]
            await self.session.flush()
            log.info(f"User {user_id} unsubscribed from {channel}")
