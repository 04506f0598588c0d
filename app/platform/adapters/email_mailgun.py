import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from app.core.config import settings
from app.modules.messaging.errors import WebhookVerificationError
from app.platform.ports.channel_sender import ChannelSenderPort, SendResult, WebhookRequest, DeliveryEvent, EVENT_STATUS

log = logging.getLogger("sender.mailgun")

# Mailgun event-data.event -> normalised event
MAILGUN_EVENTS = {
    "accepted": "sent",
    "delivered": "delivered",
    "opened": "opened",
    "clicked": "clicked",
    "complained": "complained",
    "unsubscribed": "unsubscribed",
}

class MailgunEmailSender(ChannelSenderPort):
    provider = "mailgun"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        if not (settings.MAILGUN_API_KEY and settings.MAILGUN_DOMAIN):
            raise RuntimeError("MAILGUN_API_KEY and MAILGUN_DOMAIN must be configured")
        self.domain = settings.MAILGUN_DOMAIN
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=settings.MAILGUN_BASE_URL,
            auth=("api", settings.MAILGUN_API_KEY),
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def send(self, destination: Any, content: Any, options: dict | None = None) -> SendResult:
        options = options or {}
        from_email = content.from_email or settings.EMAIL_FROM
        from_name = content.from_name or settings.EMAIL_FROM_NAME
        data = {
            "from": f"{from_name} <{from_email}>",
            "to": destination,
            "subject": content.subject,
            "html": content.markup,
            "text": content.text_version or "",
            "o:tracking": "yes",
        }
        if content.reply_to:
            data["h:Reply-To"] = content.reply_to
        for name, value in (content.headers or {}).items():
            data[f"h:{name}"] = value
        if options.get("delivery_id"):
            data["v:delivery_id"] = options["delivery_id"]
        for tag in options.get("tags") or []:
            data.setdefault("o:tag", [])
            data["o:tag"].append(tag)
        try:
            async with self._client() as client:
                resp = await client.post(f"/v3/{self.domain}/messages", data=data)
        except httpx.RequestError as e:
            log.error(f"Mailgun request failed for {destination}: {e}")
            return SendResult(success=False, error=f"mailgun request failed: {e}")
        if resp.status_code >= 400:
            log.warning(f"Mailgun rejected message to {destination}: {resp.status_code} {resp.text}")
            return SendResult(success=False, error=f"mailgun {resp.status_code}: {resp.text[:200]}")
        message_id = str(resp.json().get("id", "")).strip("<>")
        return SendResult(success=True, provider_message_id=message_id or None)

    def verify(self, signature: dict) -> None:
        key = settings.MAILGUN_WEBHOOK_SIGNING_KEY
        if not key:
            raise WebhookVerificationError("MAILGUN_WEBHOOK_SIGNING_KEY not configured")
        timestamp = str(signature.get("timestamp", ""))
        token = str(signature.get("token", ""))
        expected = hmac.new(key.encode(), f"{timestamp}{token}".encode(), hashlib.sha256).hexdigest()
        if not hmac.compare_digest(expected, str(signature.get("signature", ""))):
            raise WebhookVerificationError("invalid mailgun signature")

    async def handle_webhook(self, request: WebhookRequest) -> list[DeliveryEvent]:
        payload = request.payload or {}
        self.verify(payload.get("signature") or {})
        data = payload.get("event-data") or {}
        name = data.get("event", "")
        if name == "failed":
            if data.get("severity") != "permanent":
                # Mailgun keeps retrying; a later delivered or permanent failure settles it
                log.info(f"Mailgun temporary failure for {message_id_of(data)}: {data.get('reason')}")
                return []
            event = "bounced"
        else:
            event = MAILGUN_EVENTS.get(name)
        message_id = message_id_of(data)
        if not event or not message_id:
            log.debug(f"Ignoring mailgun event {name}")
            return []
        ts = data.get("timestamp")
        when = datetime.fromtimestamp(float(ts), tz=timezone.utc) if ts else datetime.now(timezone.utc)
        status = (data.get("delivery-status") or {})
        reason = data.get("reason") or status.get("description") or status.get("message")
        return [DeliveryEvent(
            message_id=str(message_id).strip("<>"),
            event=event,
            status=EVENT_STATUS[event],
            timestamp=when,
            reason=reason or None,
        )]

def message_id_of(event_data: dict) -> str | None:
    return ((event_data.get("message") or {}).get("headers") or {}).get("message-id")
