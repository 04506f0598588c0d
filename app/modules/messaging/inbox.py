import uuid
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.paging import decode_cursor, inbox_cursor
from app.modules.messaging.models import InboxMessage
from app.modules.messaging.repository import InboxRepository, DeliveryRepository

def _now(): return datetime.now(timezone.utc)

class InboxService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = InboxRepository(session)
        self.deliveries = DeliveryRepository(session)

    async def list(self, user_id: str, *, limit: int = 20, cursor: str | None = None,
                   unread_only: bool = False, archived: bool = False) -> tuple[list[InboxMessage], str | None]:
        after = None
        c = decode_cursor(cursor)
        if c:
            after = (datetime.fromisoformat(c["ts"]), uuid.UUID(c["id"]))
        rows = list(await self.repo.page(user_id, limit=limit + 1, unread_only=unread_only, archived=archived, after=after, now=_now()))
        next_cursor = None
        if len(rows) > limit:
            rows = rows[:limit]
            next_cursor = inbox_cursor(rows[-1].created_at, rows[-1].id)
        return rows, next_cursor

    async def unread_count(self, user_id: str) -> int:
        return await self.repo.unread_count(user_id, _now())

    async def mark_read(self, user_id: str, message_id: uuid.UUID) -> InboxMessage | None:
        msg = await self.repo.get(user_id, message_id)
        if not msg:
            return None
        if not msg.read:
            now = _now()
            msg.read = True
            msg.read_at = now
            # reading the inbox entry is the in-app read receipt
            st = await self.deliveries.inapp_status(msg.delivery_id)
            if st and st.status in ("pending", "sent", "delivered"):
                st.status = "read"
                st.read_at = now
                st.delivered_at = st.delivered_at or now
            await self.session.flush()
            await self.session.commit()
        return msg

    async def mark_all_read(self, user_id: str) -> int:
        n = await self.repo.mark_all_read(user_id, _now())
        await self.session.commit()
        return n

    async def archive(self, user_id: str, message_id: uuid.UUID, archived: bool = True) -> InboxMessage | None:
        msg = await self.repo.get(user_id, message_id)
        if not msg:
            return None
        msg.archived = archived
        msg.archived_at = _now() if archived else None
        await self.session.commit()
        return msg

    async def star(self, user_id: str, message_id: uuid.UUID, starred: bool = True) -> InboxMessage | None:
        msg = await self.repo.get(user_id, message_id)
        if not msg:
            return None
        msg.starred = starred
        msg.starred_at = _now() if starred else None
        await self.session.commit()
        return msg
