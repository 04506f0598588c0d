import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.modules.messaging.eligibility import determine_channels, candidate_channels
from app.modules.messaging.errors import (
    MessagingError, InvalidMessageRequest, TemplateNotFound, RecipientNotFound,
    RateLimitExceeded, RenderError, InvalidTransition,
)
from app.modules.messaging.models import MessageDelivery, MessageStatus, MessageQueueItem
from app.modules.messaging.recipients import RecipientResolver
from app.modules.messaging.renderers.base import fmt
from app.modules.messaging.renderers.registry import get_renderer
from app.modules.messaging.repository import DeliveryRepository, QueueRepository, InboxRepository
from app.modules.messaging.scheduling import calculate_send_time
from app.modules.messaging.schemas import InAppContent, MessageRecipient, MessageRequest, TemplateDefinition
from app.modules.messaging.templates import TemplateStore, bind_variables
from app.platform.ports.channel_sender import WebhookRequest, DeliveryEvent
from app.platform.provider_registry import ProviderRegistry, registry as default_registry

log = logging.getLogger("messaging.orchestrator")

VALID_NEXT = {
    "pending": {"processing", "failed"},
    "processing": {"sent", "failed"},
    "sent": set(),
    "failed": set(),
}

# per-channel status only moves forward; regressions from late webhooks are dropped
STATUS_NEXT = {
    "pending": {"sent", "delivered", "read", "failed", "bounced"},
    "sent": {"delivered", "read", "failed", "bounced", "complained"},
    "delivered": {"read", "bounced", "complained"},
    "read": {"complained"},
    "failed": set(),
    "bounced": set(),
    "complained": set(),
}

INBOX_TYPE = {
    "onboarding": "system",
    "transactional": "transactional",
    "marketing": "marketing",
    "health": "health",
    "emergency": "system",
}

ALL_FAILED = "all channels failed"

def _now() -> datetime:
    return datetime.now(timezone.utc)

@dataclass
class ChannelOutcome:
    channel: str
    provider: str
    success: bool
    provider_message_id: str | None = None
    error: str | None = None

def destination_for(channel: str, recipient: MessageRecipient) -> Any:
    return {
        "email": recipient.email,
        "sms": recipient.phone,
        "whatsapp": recipient.whatsapp_number,
        "push": recipient.push_tokens,
        "inapp": recipient.user_id,
    }[channel]

class MessageOrchestrator:
    def __init__(self, session: AsyncSession, registry: ProviderRegistry = default_registry,
                 clock: Callable[[], datetime] = _now):
        self.session = session
        self.registry = registry
        self.clock = clock
        self.templates = TemplateStore(session)
        self.recipients = RecipientResolver(session)
        self.deliveries = DeliveryRepository(session)
        self.queue = QueueRepository(session)
        self.inbox = InboxRepository(session)

    # ---- state machine ----

    def _transition(self, delivery: MessageDelivery, target: str) -> None:
        if target not in VALID_NEXT.get(delivery.status, set()):
            raise InvalidTransition(delivery.status, target)
        delivery.status = target
        delivery.version = (delivery.version or 1) + 1

    # ---- entry points ----

    async def send_message(self, request: MessageRequest) -> uuid.UUID | None:
        """Resolve, rate-limit, persist and either dispatch or enqueue one request.

        Returns the delivery id, or None when no channel is eligible (no record
        is created in that case).
        """
        if not request.template_key or not request.user_id:
            raise InvalidMessageRequest("template_key and user_id are required")
        template = await self.templates.get_template(request.template_key)
        if template is None:
            raise TemplateNotFound(request.template_key)
        recipient = await self.recipients.resolve_recipient(request.user_id)
        if recipient is None:
            raise RecipientNotFound(request.user_id)
        variables = bind_variables(template, request.variables)
        preferences = await self.recipients.resolve_preferences(request.user_id)

        requested = candidate_channels(template.channels, request.channels)
        channels = determine_channels(requested, recipient, preferences, template.category)
        if not channels:
            log.info(f"No eligible channels for {request.user_id} ({request.template_key}); nothing to send")
            return None

        hit = await self.registry.rate_limiter().acquire(request.user_id, channels)
        if hit:
            channel, retry_after = hit
            log.warning(f"Rate limit hit for {request.user_id} on {channel}; retry in {retry_after:.0f}s")
            raise RateLimitExceeded(channel, retry_after)

        now = self.clock()
        send_at = calculate_send_time(request, recipient, preferences, now)
        deferred = send_at > now
        delivery = await self.deliveries.create(
            template_key=template.key,
            template_version=template.version,
            user_id=request.user_id,
            channels=channels,
            variables=json.loads(json.dumps(variables, default=fmt)),
            status="pending",
            priority=request.priority,
            scheduled_at=send_at if deferred else None,
            meta=request.metadata,
            tags=request.tags,
        )
        if deferred:
            await self.queue.enqueue(delivery.id, send_at)
            await self.session.commit()
            log.info(f"Delivery {delivery.id} scheduled for {send_at.isoformat()} on {channels}")
            return delivery.id

        await self.dispatch(delivery, template, recipient, variables)
        return delivery.id

    async def process_scheduled(self, item: MessageQueueItem) -> MessageDelivery:
        """Dispatch one due queue item; raises on anything that stops it outright."""
        delivery = await self.deliveries.get(item.delivery_id)
        if delivery is None:
            raise MessagingError(f"delivery {item.delivery_id} not found")
        if delivery.status != "pending":
            raise InvalidTransition(delivery.status, "processing")
        template = await self.templates.get_template(delivery.template_key)
        if template is None:
            raise TemplateNotFound(delivery.template_key)
        recipient = await self.recipients.resolve_recipient(delivery.user_id)
        if recipient is None:
            raise RecipientNotFound(delivery.user_id)
        preferences = await self.recipients.resolve_preferences(delivery.user_id)
        variables = bind_variables(template, delivery.variables)
        # consent may have changed while the item waited
        channels = determine_channels(list(delivery.channels), recipient, preferences, template.category)
        if not channels:
            raise MessagingError("no eligible channels at send time")
        if channels != list(delivery.channels):
            log.info(f"Delivery {delivery.id} channels narrowed {delivery.channels} -> {channels}")
            delivery.channels = channels
        return await self.dispatch(delivery, template, recipient, variables)

    async def fail_delivery(self, delivery_id: uuid.UUID, reason: str) -> None:
        delivery = await self.deliveries.get(delivery_id)
        if delivery is None or delivery.status in ("sent", "failed"):
            return
        self._transition(delivery, "failed")
        delivery.failed_at = self.clock()
        delivery.failure_reason = reason[:2000]
        await self.session.flush()

    async def update_channel_preferences(self, user_id: str, channel: str, signal: str) -> None:
        await self.recipients.update_channel_preferences(user_id, channel, signal)
        await self.session.commit()

    # ---- dispatch ----

    def _inbox_content(self, template: TemplateDefinition, variables: dict, priority: str) -> InAppContent:
        fallback = InAppContent(title=template.name, message=settings.INBOX_FALLBACK_MESSAGE, type="info", priority=priority)
        if template.content.inapp is None:
            return fallback
        try:
            return get_renderer("inapp").render(template.content.inapp, variables, now=self.clock())
        except RenderError as e:
            log.warning(f"In-app content for {template.key} failed to render ({e}); using fallback")
            return fallback

    async def _attempt(self, channel: str, template: TemplateDefinition, recipient: MessageRecipient,
                       variables: dict, inbox_content: InAppContent, options: dict) -> ChannelOutcome:
        provider = "unknown"
        try:
            sender = self.registry.channel_sender(channel)
            provider = sender.provider
            if channel == "inapp":
                content = inbox_content
            elif channel == "email":
                content = get_renderer("email").render(template.content.email, variables, language=recipient.language)
            else:
                content = get_renderer(channel).render(getattr(template.content, channel), variables)
            result = await asyncio.wait_for(
                sender.send(destination_for(channel, recipient), content, options),
                timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            log.warning(f"{channel} send timed out after {settings.PROVIDER_TIMEOUT_SECONDS}s")
            return ChannelOutcome(channel, provider, False, error=f"timed out after {settings.PROVIDER_TIMEOUT_SECONDS}s")
        except Exception as ex:
            log.exception(f"{channel} dispatch failed")
            return ChannelOutcome(channel, provider, False, error=str(ex) or ex.__class__.__name__)
        if not result.success:
            log.warning(f"{channel} send failed: {result.error}")
        return ChannelOutcome(channel, provider, result.success, result.provider_message_id, result.error)

    async def dispatch(self, delivery: MessageDelivery, template: TemplateDefinition,
                       recipient: MessageRecipient, variables: dict) -> MessageDelivery:
        self._transition(delivery, "processing")
        await self.session.commit()

        inbox_content = self._inbox_content(template, variables, delivery.priority)
        options = {"delivery_id": str(delivery.id), "tags": list(delivery.tags or []), "priority": delivery.priority}
        # fan-out; writes happen after the join, the session is not shared across tasks
        results = await asyncio.gather(*[
            self._attempt(ch, template, recipient, variables, inbox_content, options) for ch in delivery.channels
        ], return_exceptions=True)
        for r in results:
            if isinstance(r, BaseException) and not isinstance(r, Exception):
                raise r
        outcomes = [
            r if isinstance(r, ChannelOutcome) else ChannelOutcome(ch, "unknown", False, error=str(r) or r.__class__.__name__)
            for ch, r in zip(delivery.channels, results)
        ]

        now = self.clock()
        for o in outcomes:
            await self.deliveries.add_status(
                delivery_id=delivery.id,
                channel=o.channel,
                provider=o.provider,
                status="sent" if o.success else "failed",
                provider_message_id=o.provider_message_id,
                sent_at=now if o.success else None,
                failed_at=None if o.success else now,
                failure_reason=None if o.success else (o.error or "unknown error"),
            )
        await self._create_inbox(delivery, template, inbox_content)

        if any(o.success for o in outcomes):
            self._transition(delivery, "sent")
            delivery.sent_at = now
        else:
            self._transition(delivery, "failed")
            delivery.failed_at = now
            delivery.failure_reason = ALL_FAILED
        await self.session.commit()
        ok = [o.channel for o in outcomes if o.success]
        log.info(f"Delivery {delivery.id} {delivery.status}: ok={ok} failed={[o.channel for o in outcomes if not o.success]}")
        return delivery

    async def _create_inbox(self, delivery: MessageDelivery, template: TemplateDefinition, content: InAppContent):
        action = None
        if content.action:
            action = {
                "label": content.action.label,
                "type": "deep_link" if content.action.deep_link else "link",
                "url": content.action.url,
                "deep_link": content.action.deep_link,
            }
        return await self.inbox.create(
            user_id=delivery.user_id,
            delivery_id=delivery.id,
            type=INBOX_TYPE.get(template.category, "system"),
            notification_type=content.type,
            title=content.title,
            content=content.message,
            summary=content.message[:100],
            channel=delivery.channels[0],
            template_key=template.key,
            priority=content.priority,
            category=template.category,
            tags=list(delivery.tags or []),
            meta=dict(delivery.meta or {}),
            action=action,
            expires_at=content.expires_at,
        )

    # ---- provider callbacks ----

    def _apply_status(self, st: MessageStatus, ev: DeliveryEvent) -> bool:
        if ev.status == st.status or ev.status not in STATUS_NEXT.get(st.status, set()):
            log.debug(f"Ignoring {ev.event} for {st.channel}:{st.provider_message_id} in state {st.status}")
            return False
        st.status = ev.status
        if ev.status == "sent":
            st.sent_at = st.sent_at or ev.timestamp
        elif ev.status == "delivered":
            st.delivered_at = ev.timestamp
        elif ev.status == "read":
            st.read_at = ev.timestamp
            st.delivered_at = st.delivered_at or ev.timestamp
        elif ev.status in ("failed", "bounced"):
            st.failed_at = ev.timestamp
            st.failure_reason = ev.reason or ev.event
        elif ev.status == "complained":
            st.meta = {**(st.meta or {}), "complained_at": ev.timestamp.isoformat()}
        st.version = (st.version or 1) + 1
        return True

    async def handle_webhook(self, channel: str, request: WebhookRequest) -> int:
        """Apply a provider callback; returns how many status rows changed."""
        sender = self.registry.channel_sender(channel)
        events = await sender.handle_webhook(request)
        applied = 0
        for ev in events:
            st = await self.deliveries.status_by_provider_id(channel, ev.message_id)
            if st is None:
                log.info(f"Webhook for unknown {channel} message {ev.message_id} ignored")
                continue
            delivery = await self.deliveries.get(st.delivery_id)
            if ev.event in ("opened", "clicked"):
                await self.recipients.update_channel_preferences(delivery.user_id, channel, ev.event)
            elif ev.event == "unsubscribed":
                await self.recipients.add_unsubscribed(delivery.user_id, channel)
            if ev.status and self._apply_status(st, ev):
                applied += 1
        await self.session.commit()
        return applied
