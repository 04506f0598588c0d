import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from app.platform.ports.channel_sender import ChannelSenderPort, SendResult, WebhookRequest, DeliveryEvent, EVENT_STATUS

log = logging.getLogger("sender.noop")

class NoopChannelSender(ChannelSenderPort):
    """Records every send in memory; used in local/dev and as the test double.

    Webhooks accept a JSON body ``{"message_id", "event", "reason"?}`` so the
    whole status pipeline can be driven without a real provider.
    """

    def __init__(self, channel: str):
        self.channel = channel
        self.provider = "noop"
        self.sent: list[dict] = []
        self.should_succeed = True
        self.failure_reason = f"{channel} delivery failed"
        self.raise_error: Exception | None = None

    def configure(self, should_succeed: bool = True, failure_reason: str | None = None, raise_error: Exception | None = None):
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason or f"{self.channel} delivery failed"
        self.raise_error = raise_error

    def reset(self):
        self.sent.clear()
        self.configure()

    async def send(self, destination: Any, content: Any, options: dict | None = None) -> SendResult:
        if self.raise_error is not None:
            raise self.raise_error
        if not self.should_succeed:
            log.info(f"[NOOP {self.channel}] to={destination} failed: {self.failure_reason}")
            return SendResult(success=False, error=self.failure_reason)
        message_id = f"{self.channel}-{uuid.uuid4().hex[:12]}"
        self.sent.append({"message_id": message_id, "destination": destination, "content": content, "options": options or {}})
        log.info(f"[NOOP {self.channel}] to={destination} id={message_id}")
        return SendResult(success=True, provider_message_id=message_id)

    async def handle_webhook(self, request: WebhookRequest) -> list[DeliveryEvent]:
        payload = request.payload or (json.loads(request.body) if request.body else {})
        items = payload if isinstance(payload, list) else [payload]
        events = []
        for item in items:
            event = str(item.get("event", "")).lower()
            if not item.get("message_id") or event not in EVENT_STATUS:
                log.debug(f"[NOOP {self.channel}] ignoring webhook item {item}")
                continue
            events.append(DeliveryEvent(
                message_id=str(item["message_id"]),
                event=event,
                status=EVENT_STATUS[event],
                timestamp=datetime.now(timezone.utc),
                reason=item.get("reason"),
            ))
        return events
