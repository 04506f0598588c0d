import logging
import uuid
from typing import Any

from app.platform.ports.channel_sender import ChannelSenderPort, SendResult, WebhookRequest, DeliveryEvent

log = logging.getLogger("sender.inbox")

class InboxChannelSender(ChannelSenderPort):
    """In-app delivery is the inbox row itself, written by the orchestrator; this only acknowledges."""
    provider = "inbox"

    async def send(self, destination: Any, content: Any, options: dict | None = None) -> SendResult:
        message_id = f"inapp-{uuid.uuid4().hex[:12]}"
        log.debug(f"[INBOX] user={destination} id={message_id}")
        return SendResult(success=True, provider_message_id=message_id)

    async def handle_webhook(self, request: WebhookRequest) -> list[DeliveryEvent]:
        # read receipts come through the inbox API, not webhooks
        return []
