import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, Boolean, JSON, ForeignKey, UniqueConstraint, Index
from app.core.base import Base, TimestampedMixin, UTCDateTime

class MessageTemplate(Base, TimestampedMixin):
    # `version` (from the mixin) is bumped on every re-registration of the key
    key: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(32))  # onboarding | transactional | marketing | health | emergency
    channels: Mapped[list] = mapped_column(JSON, default=list)
    variables: Mapped[list] = mapped_column(JSON, default=list)
    content: Mapped[dict] = mapped_column(JSON, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

class RecipientProfile(Base, TimestampedMixin):
    user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    whatsapp_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    preferred_channel: Mapped[str] = mapped_column(String(16), default="email")
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    language: Mapped[str | None] = mapped_column(String(16), nullable=True)
    unsubscribed: Mapped[list] = mapped_column(JSON, default=list)
    quiet_hours_start: Mapped[str | None] = mapped_column(String(5), nullable=True)  # HH:MM
    quiet_hours_end: Mapped[str | None] = mapped_column(String(5), nullable=True)
    quiet_hours_timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)

class PushToken(Base, TimestampedMixin):
    __table_args__ = (UniqueConstraint("user_id", "token"),)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    token: Mapped[str] = mapped_column(String(512))
    platform: Mapped[str | None] = mapped_column(String(16), nullable=True)  # ios | android | web
    active: Mapped[bool] = mapped_column(Boolean, default=True)

class NotificationPreference(Base, TimestampedMixin):
    user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    channels: Mapped[dict] = mapped_column(JSON, default=dict)  # channel -> {enabled, categories, frequency}
    marketing: Mapped[dict] = mapped_column(JSON, default=dict)  # channel -> bool
    quiet_hours: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # {start, end, timezone}

class MessageDelivery(Base, TimestampedMixin):
    template_key: Mapped[str] = mapped_column(String(128), index=True)
    template_version: Mapped[int] = mapped_column(default=1)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    channels: Mapped[list] = mapped_column(JSON, default=list)
    variables: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending | processing | sent | failed
    priority: Mapped[str] = mapped_column(String(16), default="medium")
    scheduled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict] = mapped_column(JSON, default=dict)
    tags: Mapped[list] = mapped_column(JSON, default=list)

class MessageStatus(Base, TimestampedMixin):
    __table_args__ = (Index("ix_messagestatus_provider_msg", "channel", "provider_message_id"),)
    delivery_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("messagedelivery.id"), index=True)
    channel: Mapped[str] = mapped_column(String(16))
    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending | sent | delivered | read | failed | bounced | complained
    provider: Mapped[str | None] = mapped_column(String(32), nullable=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict] = mapped_column(JSON, default=dict)

class MessageQueueItem(Base, TimestampedMixin):
    delivery_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("messagedelivery.id"), index=True)
    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime, index=True)
    status: Mapped[str] = mapped_column(String(16), default="scheduled")  # scheduled | processing | processed | failed
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

class InboxMessage(Base, TimestampedMixin):
    __table_args__ = (Index("ix_inboxmessage_user_created", "user_id", "created_at"),)
    user_id: Mapped[str] = mapped_column(String(64))
    delivery_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("messagedelivery.id"), unique=True)
    type: Mapped[str] = mapped_column(String(16), default="system")  # system | transactional | marketing | health
    title: Mapped[str] = mapped_column(String(255))
    content: Mapped[str] = mapped_column(Text)
    summary: Mapped[str] = mapped_column(String(100))
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    archived: Mapped[bool] = mapped_column(Boolean, default=False)
    archived_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    starred: Mapped[bool] = mapped_column(Boolean, default=False)
    starred_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    channel: Mapped[str] = mapped_column(String(16))
    template_key: Mapped[str] = mapped_column(String(128))
    priority: Mapped[str] = mapped_column(String(16), default="medium")
    category: Mapped[str] = mapped_column(String(32))
    notification_type: Mapped[str] = mapped_column(String(16), default="info")  # info | success | warning | error | promotion
    tags: Mapped[list] = mapped_column(JSON, default=list)
    meta: Mapped[dict] = mapped_column(JSON, default=dict)
    action: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # {label, type: link | deep_link, url, deep_link}
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
