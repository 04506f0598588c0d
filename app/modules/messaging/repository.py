import uuid
from datetime import datetime, timezone
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, and_, or_
from app.modules.messaging.models import (
    MessageTemplate, RecipientProfile, PushToken, NotificationPreference,
    MessageDelivery, MessageStatus, MessageQueueItem, InboxMessage,
)

def _now(): return datetime.now(timezone.utc)

class TemplateRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_key(self, key: str, active_only: bool = True) -> MessageTemplate | None:
        q = select(MessageTemplate).where(MessageTemplate.key == key, MessageTemplate.deleted_at.is_(None))
        if active_only:
            q = q.where(MessageTemplate.is_active.is_(True))
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def create(self, **data) -> MessageTemplate:
        obj = MessageTemplate(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

class RecipientRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_profile(self, user_id: str) -> RecipientProfile | None:
        q = select(RecipientProfile).where(RecipientProfile.user_id == user_id, RecipientProfile.deleted_at.is_(None))
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def create_profile(self, **data) -> RecipientProfile:
        obj = RecipientProfile(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def push_tokens(self, user_id: str) -> list[str]:
        q = select(PushToken.token).where(
            PushToken.user_id == user_id,
            PushToken.active.is_(True),
            PushToken.deleted_at.is_(None),
        ).order_by(PushToken.created_at.asc())
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def add_push_token(self, user_id: str, token: str, platform: str | None = None) -> PushToken:
        obj = PushToken(user_id=user_id, token=token, platform=platform)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get_preferences(self, user_id: str) -> NotificationPreference | None:
        q = select(NotificationPreference).where(NotificationPreference.user_id == user_id, NotificationPreference.deleted_at.is_(None))
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def save_preferences(self, user_id: str, **data) -> NotificationPreference:
        obj = await self.get_preferences(user_id)
        if obj is None:
            obj = NotificationPreference(user_id=user_id, **data)
            self.session.add(obj)
        else:
            for k, v in data.items():
                setattr(obj, k, v)
            obj.version = (obj.version or 1) + 1
        await self.session.flush()
        return obj

class DeliveryRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> MessageDelivery:
        obj = MessageDelivery(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, delivery_id: uuid.UUID) -> MessageDelivery | None:
        q = select(MessageDelivery).where(MessageDelivery.id == delivery_id, MessageDelivery.deleted_at.is_(None))
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def add_status(self, **data) -> MessageStatus:
        obj = MessageStatus(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def statuses(self, delivery_id: uuid.UUID) -> Sequence[MessageStatus]:
        q = select(MessageStatus).where(MessageStatus.delivery_id == delivery_id).order_by(MessageStatus.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def status_by_provider_id(self, channel: str, provider_message_id: str) -> MessageStatus | None:
        q = select(MessageStatus).where(
            MessageStatus.channel == channel,
            MessageStatus.provider_message_id == provider_message_id,
        )
        res = await self.session.execute(q)
        return res.scalars().first()

    async def inapp_status(self, delivery_id: uuid.UUID) -> MessageStatus | None:
        q = select(MessageStatus).where(MessageStatus.delivery_id == delivery_id, MessageStatus.channel == "inapp")
        res = await self.session.execute(q)
        return res.scalars().first()

class QueueRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(self, delivery_id: uuid.UUID, scheduled_at: datetime) -> MessageQueueItem:
        obj = MessageQueueItem(delivery_id=delivery_id, scheduled_at=scheduled_at, status="scheduled")
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def claim_batch(self, limit: int = 100, now: datetime | None = None) -> list[MessageQueueItem]:
        # SELECT ... FOR UPDATE SKIP LOCKED (ignored by sqlite)
        q = (
            select(MessageQueueItem)
            .where(
                and_(
                    MessageQueueItem.deleted_at.is_(None),
                    MessageQueueItem.status == "scheduled",
                    MessageQueueItem.scheduled_at <= (now or _now()),
                )
            )
            .order_by(MessageQueueItem.scheduled_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        res = await self.session.execute(q)
        rows = list(res.scalars().all())
        for r in rows:
            r.status = "processing"
        await self.session.flush()
        return rows

    async def get(self, item_id: uuid.UUID) -> MessageQueueItem | None:
        res = await self.session.execute(select(MessageQueueItem).where(MessageQueueItem.id == item_id))
        return res.scalar_one_or_none()

    async def mark_processed(self, item: MessageQueueItem):
        item.status = "processed"
        item.processed_at = _now()
        await self.session.flush()

    async def mark_failed(self, item: MessageQueueItem, error: str):
        item.status = "failed"
        item.failed_at = _now()
        item.failure_reason = error[:2000]
        await self.session.flush()

class InboxRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    def _visible(self, user_id: str, now: datetime):
        return and_(
            InboxMessage.user_id == user_id,
            InboxMessage.deleted_at.is_(None),
            or_(InboxMessage.expires_at.is_(None), InboxMessage.expires_at > now),
        )

    async def create(self, **data) -> InboxMessage:
        obj = InboxMessage(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, user_id: str, message_id: uuid.UUID) -> InboxMessage | None:
        q = select(InboxMessage).where(InboxMessage.id == message_id, InboxMessage.user_id == user_id, InboxMessage.deleted_at.is_(None))
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def by_delivery(self, delivery_id: uuid.UUID) -> InboxMessage | None:
        res = await self.session.execute(select(InboxMessage).where(InboxMessage.delivery_id == delivery_id))
        return res.scalar_one_or_none()

    async def page(self, user_id: str, *, limit: int, unread_only: bool, archived: bool,
                   after: tuple[datetime, uuid.UUID] | None, now: datetime) -> Sequence[InboxMessage]:
        q = select(InboxMessage).where(self._visible(user_id, now), InboxMessage.archived.is_(archived))
        if unread_only:
            q = q.where(InboxMessage.read.is_(False))
        if after:
            ts, id_ = after
            q = q.where(or_(InboxMessage.created_at < ts, and_(InboxMessage.created_at == ts, InboxMessage.id < id_)))
        q = q.order_by(InboxMessage.created_at.desc(), InboxMessage.id.desc()).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def unread_count(self, user_id: str, now: datetime) -> int:
        q = select(func.count()).select_from(InboxMessage).where(
            self._visible(user_id, now), InboxMessage.read.is_(False), InboxMessage.archived.is_(False)
        )
        res = await self.session.execute(q)
        return int(res.scalar_one())

    async def mark_all_read(self, user_id: str, now: datetime) -> int:
        q = (
            update(InboxMessage)
            .where(self._visible(user_id, now), InboxMessage.read.is_(False))
            .values(read=True, read_at=now)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(q)
        await self.session.flush()
        return res.rowcount or 0

    async def expire(self, now: datetime) -> int:
        q = (
            update(InboxMessage)
            .where(InboxMessage.deleted_at.is_(None), InboxMessage.expires_at.is_not(None), InboxMessage.expires_at <= now)
            .values(deleted_at=now)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(q)
        await self.session.flush()
        return res.rowcount or 0
