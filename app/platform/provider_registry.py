from app.core.config import settings
from app.platform.ports.channel_sender import ChannelSenderPort
from app.platform.ports.rate_limiter import RateLimiterPort
from app.platform.adapters.sender_noop import NoopChannelSender
from app.platform.adapters.sender_inbox import InboxChannelSender
from app.platform.adapters.ratelimit_memory import InMemoryRateLimiter

CHANNELS = ("email", "push", "whatsapp", "sms", "inapp")

class ProviderRegistry:
    _senders: dict[str, ChannelSenderPort] = {}
    _rate_limiter: RateLimiterPort | None = None

    @classmethod
    def _build_sender(cls, channel: str) -> ChannelSenderPort:
        if channel == "inapp":
            return InboxChannelSender()
        prov = {
            "email": settings.EMAIL_PROVIDER,
            "sms": settings.SMS_PROVIDER,
            "whatsapp": settings.WHATSAPP_PROVIDER,
            "push": settings.PUSH_PROVIDER,
        }[channel]
        prov = (prov or "noop").lower()
        if channel == "email" and prov == "mailgun":
            from app.platform.adapters.email_mailgun import MailgunEmailSender
            return MailgunEmailSender()
        if channel in ("sms", "whatsapp") and prov == "twilio":
            from app.platform.adapters.twilio import TwilioSender
            return TwilioSender(channel)
        if channel == "push" and prov == "fcm":
            from app.platform.adapters.push_fcm import FcmPushSender
            return FcmPushSender()
        if prov != "noop":
            raise ValueError(f"Unknown {channel} provider: {prov}")
        return NoopChannelSender(channel)

    @classmethod
    def channel_sender(cls, channel: str) -> ChannelSenderPort:
        if channel not in CHANNELS:
            raise ValueError(f"Unknown channel: {channel}")
        if channel not in cls._senders:
            cls._senders[channel] = cls._build_sender(channel)
        return cls._senders[channel]

    @classmethod
    def use_sender(cls, channel: str, sender: ChannelSenderPort) -> None:
        cls._senders[channel] = sender

    @classmethod
    def rate_limiter(cls) -> RateLimiterPort:
        if cls._rate_limiter is None:
            prov = (settings.RATE_LIMITER_PROVIDER or "memory").lower()
            if prov == "redis":
                from app.core.redis import redis_manager
                from app.platform.adapters.ratelimit_redis import RedisRateLimiter
                cls._rate_limiter = RedisRateLimiter(redis_manager.client())
            else:
                cls._rate_limiter = InMemoryRateLimiter()
        return cls._rate_limiter

    @classmethod
    def use_rate_limiter(cls, limiter: RateLimiterPort) -> None:
        cls._rate_limiter = limiter

    @classmethod
    def reset(cls) -> None:
        cls._senders = {}
        cls._rate_limiter = None

registry = ProviderRegistry()
