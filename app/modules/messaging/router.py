import json
import logging
import uuid
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_session
from app.core.security import get_principal, Principal, require_scopes
from app.modules.messaging.inbox import InboxService
from app.modules.messaging.orchestrator import MessageOrchestrator
from app.modules.messaging.recipients import RecipientResolver
from app.modules.messaging.repository import DeliveryRepository
from app.modules.messaging.schemas import (
    MessageRequest, SendOut, EngagementIn, TemplateDefinition, TemplateOut, DeliveryOut, StatusOut,
    InboxOut, InboxPage, UnreadCount, NotificationPreferences,
)
from app.modules.messaging.templates import TemplateStore
from app.modules.messaging.worker import process_scheduled_messages
from app.platform.ports.channel_sender import WebhookRequest
from app.platform.provider_registry import CHANNELS

router = APIRouter()
inbox_router = APIRouter()
logger = logging.getLogger(__name__)

def orchestrator(session: AsyncSession = Depends(get_session)) -> MessageOrchestrator:
    return MessageOrchestrator(session)

def inbox_svc(session: AsyncSession = Depends(get_session)) -> InboxService:
    return InboxService(session)

# ---- orchestration ----

@router.post("/send", response_model=SendOut, dependencies=[Depends(require_scopes("messaging:send"))])
async def send_message(payload: MessageRequest, orch: MessageOrchestrator = Depends(orchestrator)):
    delivery_id = await orch.send_message(payload)
    if delivery_id is None:
        return SendOut(delivery_id=None, status="skipped")
    delivery = await orch.deliveries.get(delivery_id)
    return SendOut(delivery_id=delivery_id, status=delivery.status)

@router.post("/scheduled/process", dependencies=[Depends(require_scopes("messaging:admin"))])
async def process_scheduled():
    return {"processed": await process_scheduled_messages()}

@router.post("/engagement", status_code=204, dependencies=[Depends(require_scopes("messaging:send"))])
async def record_engagement(payload: EngagementIn, orch: MessageOrchestrator = Depends(orchestrator)):
    await orch.update_channel_preferences(payload.user_id, payload.channel, payload.signal)
    return Response(status_code=204)

@router.post("/webhooks/{channel}")
async def provider_webhook(channel: str, request: Request, orch: MessageOrchestrator = Depends(orchestrator)):
    """Provider delivery callbacks. No bearer auth; each adapter verifies its own signature."""
    if channel not in CHANNELS:
        raise HTTPException(status_code=404, detail="Unknown channel")
    body = await request.body()
    ctype = request.headers.get("content-type", "")
    if "form" in ctype:
        payload = dict(await request.form())
    elif body:
        try:
            payload = json.loads(body)
        except ValueError:
            raise HTTPException(status_code=400, detail="Malformed webhook body")
    else:
        payload = {}
    hook = WebhookRequest(
        payload=payload,
        headers={k.lower(): v for k, v in request.headers.items()},
        body=body,
        url=str(request.url),
    )
    return {"processed": await orch.handle_webhook(channel, hook)}

# ---- templates ----

@router.post("/templates", response_model=TemplateOut, status_code=201, dependencies=[Depends(require_scopes("messaging:admin"))])
async def register_template(payload: TemplateDefinition, principal: Principal = Depends(get_principal), session: AsyncSession = Depends(get_session)):
    if payload.created_by is None:
        payload = payload.model_copy(update={"created_by": str(principal.user_id)})
    return await TemplateStore(session).register(payload)

@router.get("/templates/{key}", response_model=TemplateOut, dependencies=[Depends(require_scopes("messaging:admin"))])
async def get_template(key: str, session: AsyncSession = Depends(get_session)):
    obj = await TemplateStore(session).get_record(key)
    if not obj:
        raise HTTPException(status_code=404, detail="Template not found")
    return obj

# ---- deliveries ----

@router.get("/deliveries/{delivery_id}", response_model=DeliveryOut, dependencies=[Depends(require_scopes("messaging:read"))])
async def get_delivery(delivery_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    repo = DeliveryRepository(session)
    delivery = await repo.get(delivery_id)
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found")
    out = DeliveryOut.model_validate(delivery)
    out.statuses = [StatusOut.model_validate(s) for s in await repo.statuses(delivery_id)]
    return out

# ---- preferences (current user) ----

@router.get("/preferences", response_model=NotificationPreferences)
async def get_preferences(principal: Principal = Depends(get_principal), session: AsyncSession = Depends(get_session)):
    return await RecipientResolver(session).resolve_preferences(str(principal.user_id))

@router.put("/preferences", response_model=NotificationPreferences)
async def put_preferences(payload: NotificationPreferences, principal: Principal = Depends(get_principal), session: AsyncSession = Depends(get_session)):
    return await RecipientResolver(session).save_preferences(str(principal.user_id), payload)

# ---- inbox (current user) ----

@inbox_router.get("", response_model=InboxPage)
async def list_inbox(
    limit: int = 20,
    cursor: str | None = None,
    unread_only: bool = False,
    archived: bool = False,
    principal: Principal = Depends(get_principal),
    service: InboxService = Depends(inbox_svc),
):
    try:
        items, next_cursor = await service.list(str(principal.user_id), limit=max(1, min(limit, 100)), cursor=cursor, unread_only=unread_only, archived=archived)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid cursor")
    return InboxPage(items=[InboxOut.model_validate(i) for i in items], next_cursor=next_cursor)

@inbox_router.get("/unread-count", response_model=UnreadCount)
async def unread_count(principal: Principal = Depends(get_principal), service: InboxService = Depends(inbox_svc)):
    return UnreadCount(unread=await service.unread_count(str(principal.user_id)))

@inbox_router.put("/mark-all-read")
async def mark_all_read(principal: Principal = Depends(get_principal), service: InboxService = Depends(inbox_svc)):
    return {"updated": await service.mark_all_read(str(principal.user_id))}

@inbox_router.put("/{message_id}/read", response_model=InboxOut)
async def mark_read(message_id: uuid.UUID, principal: Principal = Depends(get_principal), service: InboxService = Depends(inbox_svc)):
    obj = await service.mark_read(str(principal.user_id), message_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Inbox message not found")
    return obj

@inbox_router.put("/{message_id}/archive", response_model=InboxOut)
async def archive(message_id: uuid.UUID, archived: bool = True, principal: Principal = Depends(get_principal), service: InboxService = Depends(inbox_svc)):
    obj = await service.archive(str(principal.user_id), message_id, archived)
    if not obj:
        raise HTTPException(status_code=404, detail="Inbox message not found")
    return obj

@inbox_router.put("/{message_id}/star", response_model=InboxOut)
async def star(message_id: uuid.UUID, starred: bool = True, principal: Principal = Depends(get_principal), service: InboxService = Depends(inbox_svc)):
    obj = await service.star(str(principal.user_id), message_id, starred)
    if not obj:
        raise HTTPException(status_code=404, detail="Inbox message not found")
    return obj
