from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

@dataclass
class SendResult:
    success: bool
    provider_message_id: str | None = None
    error: str | None = None

@dataclass
class WebhookRequest:
    """Raw provider callback: parsed payload plus what signature checks need."""
    payload: Any = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    url: str = ""

@dataclass
class DeliveryEvent:
    message_id: str
    event: str  # delivered | opened | clicked | bounced | failed | complained | sent | unsubscribed
    status: str | None  # normalised MessageStatus value, None when the event carries no status change
    timestamp: datetime
    reason: str | None = None

@runtime_checkable
class ChannelSenderPort(Protocol):
    provider: str

    async def send(self, destination: Any, content: Any, options: dict | None = None) -> SendResult: ...

    async def handle_webhook(self, request: WebhookRequest) -> list[DeliveryEvent]: ...

# provider event name -> MessageStatus value (None: engagement/consent only)
EVENT_STATUS = {
    "sent": "sent",
    "queued": "sent",
    "delivered": "delivered",
    "opened": "read",
    "read": "read",
    "clicked": "read",
    "bounced": "bounced",
    "failed": "failed",
    "dropped": "failed",
    "undelivered": "failed",
    "complained": "complained",
    "unsubscribed": None,
}
