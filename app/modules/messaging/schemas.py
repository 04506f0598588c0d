import uuid
from datetime import datetime
from typing import Any, Literal
from pydantic import BaseModel, Field

Channel = Literal["email", "push", "whatsapp", "sms", "inapp"]
Category = Literal["onboarding", "transactional", "marketing", "health", "emergency"]
Priority = Literal["low", "medium", "high", "urgent"]
CHANNEL_PRIORITY: list[str] = ["inapp", "push", "email", "whatsapp", "sms"]

class ValidationResult(BaseModel):
    valid: bool = True
    errors: list[str] = []

    @classmethod
    def of(cls, errors: list[str]) -> "ValidationResult":
        return cls(valid=not errors, errors=errors)

# ---- content blocks ----

class EmailContent(BaseModel):
    subject: str
    preheader: str | None = None
    markup: str
    text_version: str | None = None
    from_name: str | None = None
    from_email: str | None = None
    reply_to: str | None = None
    headers: dict[str, str] = {}

class PushContent(BaseModel):
    title: str
    body: str
    icon: str | None = None
    image: str | None = None
    badge: int | None = None
    sound: str | None = None
    click_action: str | None = None
    deep_link: str | None = None
    data: dict[str, Any] = {}

class WhatsAppCurrency(BaseModel):
    fallback_value: str
    code: str
    amount_1000: int | None = None

class WhatsAppDateTime(BaseModel):
    fallback_value: str

class WhatsAppMedia(BaseModel):
    link: str
    filename: str | None = None

class WhatsAppParameter(BaseModel):
    type: str  # text | currency | date_time | image | document | video
    text: str | None = None
    currency: WhatsAppCurrency | None = None
    date_time: WhatsAppDateTime | None = None
    image: WhatsAppMedia | None = None
    document: WhatsAppMedia | None = None
    video: WhatsAppMedia | None = None

class WhatsAppComponent(BaseModel):
    type: str  # header | body | footer | button
    sub_type: str | None = None
    index: int | None = None
    parameters: list[WhatsAppParameter] = []

class WhatsAppContent(BaseModel):
    template_name: str
    language_code: str
    components: list[WhatsAppComponent] = []

class InAppAction(BaseModel):
    label: str
    url: str
    deep_link: str | None = None

class InAppContent(BaseModel):
    title: str
    message: str
    type: str = "info"  # info | success | warning | error | promotion
    action: InAppAction | None = None
    dismissible: bool = True
    expires_at: datetime | None = None
    ttl_hours: float | None = None
    priority: str = "medium"  # low | medium | high | urgent

class SmsContent(BaseModel):
    body: str

class TemplateContent(BaseModel):
    email: EmailContent | None = None
    push: PushContent | None = None
    whatsapp: WhatsAppContent | None = None
    sms: SmsContent | None = None
    inapp: InAppContent | None = None

# ---- templates ----

class VariableRules(BaseModel):
    min: float | None = None
    max: float | None = None
    pattern: str | None = None
    enum: list[Any] | None = None

class TemplateVariable(BaseModel):
    name: str
    type: str = "string"  # string | number | boolean | date | object
    required: bool = False
    description: str | None = None
    default: Any = None
    validation: VariableRules | None = None

class TemplateDefinition(BaseModel):
    key: str
    name: str
    description: str | None = None
    category: Category
    channels: list[Channel]
    variables: list[TemplateVariable] = []
    content: TemplateContent = TemplateContent()
    is_active: bool = True
    created_by: str | None = None
    version: int = 1

class TemplateOut(TemplateDefinition):
    id: uuid.UUID
    version: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

# ---- requests / recipients / preferences ----

class MessageRequest(BaseModel):
    template_key: str = ""
    user_id: str = ""
    variables: dict[str, Any] = {}
    channels: list[Channel] | None = None
    scheduled_at: datetime | None = None
    priority: Priority = "medium"
    metadata: dict[str, Any] = {}
    tags: list[str] = []

class QuietHours(BaseModel):
    start: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    end: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    timezone: str | None = None

class MessageRecipient(BaseModel):
    user_id: str
    email: str | None = None
    phone: str | None = None
    push_tokens: list[str] = []
    whatsapp_number: str | None = None
    preferred_channel: str = "email"
    timezone: str = "Europe/Rome"
    language: str = "it"
    unsubscribed: list[str] = []
    quiet_hours: QuietHours | None = None

class ChannelPreference(BaseModel):
    enabled: bool = True
    categories: list[str] = []  # empty: every category allowed
    frequency: Literal["immediate", "daily", "weekly"] = "immediate"

class MarketingPreferences(BaseModel):
    email: bool = True
    push: bool = True
    whatsapp: bool = True
    sms: bool = True
    inapp: bool = True

class NotificationPreferences(BaseModel):
    email: ChannelPreference = ChannelPreference()
    push: ChannelPreference = ChannelPreference()
    whatsapp: ChannelPreference = ChannelPreference()
    sms: ChannelPreference = ChannelPreference()
    inapp: ChannelPreference = ChannelPreference()
    marketing: MarketingPreferences = MarketingPreferences()
    quiet_hours: QuietHours | None = None

    def channel(self, name: str) -> ChannelPreference:
        return getattr(self, name)

# ---- API payloads ----

class SendOut(BaseModel):
    delivery_id: uuid.UUID | None
    status: str

class EngagementIn(BaseModel):
    user_id: str
    channel: Channel
    signal: Literal["opened", "clicked", "ignored"]

class StatusOut(BaseModel):
    channel: str
    status: str
    provider: str | None
    provider_message_id: str | None
    sent_at: datetime | None
    delivered_at: datetime | None
    read_at: datetime | None
    failed_at: datetime | None
    failure_reason: str | None

    class Config:
        from_attributes = True

class DeliveryOut(BaseModel):
    id: uuid.UUID
    template_key: str
    template_version: int
    user_id: str
    channels: list[str]
    status: str
    priority: str
    scheduled_at: datetime | None
    sent_at: datetime | None
    failed_at: datetime | None
    failure_reason: str | None
    created_at: datetime
    statuses: list[StatusOut] = []

    class Config:
        from_attributes = True

class InboxOut(BaseModel):
    id: uuid.UUID
    delivery_id: uuid.UUID
    type: str
    notification_type: str
    title: str
    content: str
    summary: str
    read: bool
    read_at: datetime | None
    archived: bool
    starred: bool
    channel: str
    template_key: str
    priority: str
    category: str
    tags: list[str]
    action: dict | None
    expires_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True

class InboxPage(BaseModel):
    items: list[InboxOut]
    next_cursor: str | None = None

class UnreadCount(BaseModel):
    unread: int
