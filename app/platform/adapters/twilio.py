import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from functools import partial
from typing import Any

from twilio.base.exceptions import TwilioRestException
from twilio.http import HttpClient
from twilio.http.http_client import TwilioHttpClient
from twilio.request_validator import RequestValidator
from twilio.rest import Client

from app.core.config import settings
from app.modules.messaging.errors import WebhookVerificationError
from app.platform.ports.channel_sender import ChannelSenderPort, SendResult, WebhookRequest, DeliveryEvent, EVENT_STATUS

log = logging.getLogger("sender.twilio")

# Twilio MessageStatus -> normalised event
TWILIO_EVENTS = {
    "sent": "sent",
    "delivered": "delivered",
    "read": "read",
    "failed": "failed",
    "undelivered": "undelivered",
}

def to_e164(number: str, country_code: str | None = None) -> str:
    digits = re.sub(r"\D", "", number or "")
    if len(digits) == 10:
        return f"+{country_code or settings.DEFAULT_COUNTRY_CODE}{digits}"
    return f"+{digits}"

class TwilioSender(ChannelSenderPort):
    """Programmable Messaging through the Twilio SDK; one instance per channel (sms | whatsapp)."""
    provider = "twilio"

    def __init__(self, channel: str, http_client: HttpClient | None = None):
        if not (settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN):
            raise RuntimeError("TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN must be configured")
        self.channel = channel
        self.client = Client(
            settings.TWILIO_ACCOUNT_SID,
            settings.TWILIO_AUTH_TOKEN,
            http_client=http_client or TwilioHttpClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS),
        )
        self.validator = RequestValidator(settings.TWILIO_AUTH_TOKEN)

    def _message_kwargs(self, destination: str, content: Any) -> dict:
        if self.channel == "whatsapp":
            # approved template: ContentSid + positional variables over every parameter slot
            variables = {}
            for comp in content.components:
                for p in comp.parameters:
                    variables[str(len(variables) + 1)] = parameter_value(p)
            kwargs = {
                "to": f"whatsapp:{to_e164(destination)}",
                "from_": f"whatsapp:{to_e164(settings.TWILIO_WHATSAPP_FROM or '')}",
                "content_sid": content.template_name,
                "content_variables": json.dumps(variables),
            }
        else:
            kwargs = {"to": to_e164(destination), "from_": settings.TWILIO_FROM_NUMBER, "body": content.body}
        if settings.TWILIO_STATUS_CALLBACK_URL:
            kwargs["status_callback"] = settings.TWILIO_STATUS_CALLBACK_URL
        return kwargs

    async def send(self, destination: Any, content: Any, options: dict | None = None) -> SendResult:
        kwargs = self._message_kwargs(destination, content)
        # the SDK client is synchronous
        loop = asyncio.get_running_loop()
        try:
            message = await loop.run_in_executor(None, partial(self.client.messages.create, **kwargs))
        except TwilioRestException as e:
            log.warning(f"Twilio rejected {self.channel} message to {destination}: {e.status} {e.code} {e.msg}")
            return SendResult(success=False, error=f"twilio {e.code or e.status}: {e.msg}")
        log.info(f"Twilio {self.channel} message {message.sid} queued for {destination}")
        return SendResult(success=True, provider_message_id=message.sid)

    def verify(self, request: WebhookRequest) -> None:
        provided = request.headers.get("x-twilio-signature") or request.headers.get("X-Twilio-Signature")
        if not provided:
            raise WebhookVerificationError("missing X-Twilio-Signature")
        params = {k: str(v) for k, v in (request.payload or {}).items()}
        url = settings.TWILIO_STATUS_CALLBACK_URL or request.url
        if not self.validator.validate(url, params, provided):
            raise WebhookVerificationError("invalid twilio signature")

    async def handle_webhook(self, request: WebhookRequest) -> list[DeliveryEvent]:
        self.verify(request)
        payload = request.payload or {}
        sid = payload.get("MessageSid") or payload.get("SmsSid")
        event = TWILIO_EVENTS.get(str(payload.get("MessageStatus", "")).lower())
        if not sid or not event:
            log.debug(f"Ignoring twilio status {payload.get('MessageStatus')} for {sid}")
            return []
        reason = None
        if payload.get("ErrorCode"):
            reason = f"{payload.get('ErrorCode')}: {payload.get('ErrorMessage') or 'delivery error'}"
        return [DeliveryEvent(
            message_id=sid,
            event=event,
            status=EVENT_STATUS[event],
            timestamp=datetime.now(timezone.utc),
            reason=reason,
        )]

def parameter_value(p: Any) -> str:
    if p.type == "text":
        return p.text or ""
    if p.type == "currency":
        return p.currency.fallback_value
    if p.type == "date_time":
        return p.date_time.fallback_value
    media = getattr(p, p.type)
    return media.link if media else ""
