"""Provider callbacks driving per-channel status, preference learning and unsubscribes."""

from sqlalchemy import select

from app.modules.messaging.models import MessageStatus
from app.modules.messaging.repository import RecipientRepository
from app.modules.messaging.schemas import MessageRequest
from app.platform.ports.channel_sender import WebhookRequest


def _hook(message_id, event, **extra):
    return WebhookRequest(payload={"message_id": message_id, "event": event, **extra})


async def _sent(orchestrator, make_template, make_recipient, providers, channel="email"):
    await make_template()
    await make_recipient()
    await orchestrator.send_message(MessageRequest(
        template_key="order_confirmed", user_id="user-1", variables={"name": "Anna", "order_id": "A-1"},
    ))
    return providers.channel_sender(channel).sent[0]["message_id"]


async def _status(session, message_id):
    session.expire_all()
    res = await session.execute(select(MessageStatus).where(MessageStatus.provider_message_id == message_id))
    return res.scalar_one()


class TestDeliveryEvents:
    async def test_delivered_then_read(self, orchestrator, make_template, make_recipient, session, providers):
        mid = await _sent(orchestrator, make_template, make_recipient, providers)

        assert await orchestrator.handle_webhook("email", _hook(mid, "delivered")) == 1
        st = await _status(session, mid)
        assert st.status == "delivered"
        assert st.delivered_at is not None

        assert await orchestrator.handle_webhook("email", _hook(mid, "opened")) == 1
        st = await _status(session, mid)
        assert st.status == "read"
        assert st.read_at is not None

    async def test_late_regression_is_ignored(self, orchestrator, make_template, make_recipient, session, providers):
        mid = await _sent(orchestrator, make_template, make_recipient, providers)
        await orchestrator.handle_webhook("email", _hook(mid, "opened"))
        assert await orchestrator.handle_webhook("email", _hook(mid, "delivered")) == 0
        assert (await _status(session, mid)).status == "read"

    async def test_bounce_records_reason(self, orchestrator, make_template, make_recipient, session, providers):
        mid = await _sent(orchestrator, make_template, make_recipient, providers)
        assert await orchestrator.handle_webhook("email", _hook(mid, "bounced", reason="no such mailbox")) == 1
        st = await _status(session, mid)
        assert st.status == "bounced"
        assert st.failure_reason == "no such mailbox"

    async def test_unknown_message_is_ignored(self, orchestrator, make_template, make_recipient, providers):
        await _sent(orchestrator, make_template, make_recipient, providers)
        assert await orchestrator.handle_webhook("email", _hook("email-doesnotexist", "delivered")) == 0

    async def test_batched_payload(self, orchestrator, make_template, make_recipient, session, providers):
        mid = await _sent(orchestrator, make_template, make_recipient, providers)
        req = WebhookRequest(payload=[
            {"message_id": mid, "event": "delivered"},
            {"message_id": mid, "event": "bogus"},
        ])
        assert await orchestrator.handle_webhook("email", req) == 1


class TestEngagementFromWebhooks:
    async def test_click_on_push_promotes_push(self, orchestrator, make_template, make_recipient, session, providers):
        mid = await _sent(orchestrator, make_template, make_recipient, providers, channel="push")
        await orchestrator.handle_webhook("push", _hook(mid, "clicked"))
        session.expire_all()
        profile = await RecipientRepository(session).get_profile("user-1")
        assert profile.preferred_channel == "push"

    async def test_unsubscribe_blocks_later_sends(self, orchestrator, make_template, make_recipient, session, providers):
        mid = await _sent(orchestrator, make_template, make_recipient, providers)
        assert await orchestrator.handle_webhook("email", _hook(mid, "unsubscribed")) == 0
        session.expire_all()
        assert (await RecipientRepository(session).get_profile("user-1")).unsubscribed == ["email"]

        await orchestrator.send_message(MessageRequest(
            template_key="order_confirmed", user_id="user-1", variables={"name": "Anna", "order_id": "A-2"},
        ))
        assert len(providers.channel_sender("email").sent) == 1
        assert len(providers.channel_sender("push").sent) == 2
