import os
import tempfile

# settings are read at import time; point the app at a throwaway sqlite file first
_TMP = tempfile.mkdtemp(prefix="messaging-tests-")
os.environ["DATABASE_DSN"] = f"sqlite+aiosqlite:///{_TMP}/messaging.db"
os.environ["ENV"] = "local"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["RATE_LIMITER_PROVIDER"] = "memory"
for _var in ("EMAIL_PROVIDER", "SMS_PROVIDER", "WHATSAPP_PROVIDER", "PUSH_PROVIDER"):
    os.environ[_var] = "noop"

from datetime import datetime, timezone

import pytest

from app.core.base import Base
from app.core.db import engine, SessionLocal
from app.modules.messaging import models  # noqa: F401
from app.modules.messaging.orchestrator import MessageOrchestrator
from app.modules.messaging.repository import RecipientRepository
from app.modules.messaging.schemas import TemplateDefinition
from app.modules.messaging.templates import TemplateStore
from app.platform.provider_registry import registry

# 12:00 in Rome, outside the default quiet window
NOON = datetime(2026, 6, 15, 10, 0, tzinfo=timezone.utc)

EMAIL = {
    "subject": "Order {{ order_id }} confirmed",
    "markup": "<h1>Hi {{ name }}</h1><p>Your order {{ order_id }} is confirmed.</p>",
}
PUSH = {"title": "Order confirmed", "body": "Order {{ order_id }} is on its way"}
SMS = {"body": "Order {{ order_id }} confirmed"}
WHATSAPP = {
    "template_name": "order_confirmed",
    "language_code": "it",
    "components": [{"type": "body", "parameters": [{"type": "text", "text": "{{ order_id }}"}]}],
}
INAPP = {
    "title": "Order {{ order_id }}",
    "message": "Thanks {{ name }}, your order is confirmed.",
    "type": "success",
    "action": {"label": "View order", "url": "/orders/{{ order_id }}"},
}
CONTENT = {"email": EMAIL, "push": PUSH, "sms": SMS, "whatsapp": WHATSAPP, "inapp": INAPP}
VARIABLES = [
    {"name": "name", "type": "string", "required": True},
    {"name": "order_id", "type": "string", "required": True},
]


@pytest.fixture(autouse=True)
def providers():
    """Fresh noop senders and an empty in-memory rate limiter for every test."""
    registry.reset()
    yield registry
    registry.reset()


@pytest.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture
async def session(db):
    async with SessionLocal() as s:
        yield s


@pytest.fixture
def make_template(session):
    async def make(key="order_confirmed", channels=("email", "push", "inapp"), category="transactional",
                   content=None, variables=None, **overrides):
        blocks = content if content is not None else {ch: CONTENT[ch] for ch in channels if ch in CONTENT}
        definition = TemplateDefinition.model_validate({
            "key": key,
            "name": overrides.pop("name", "Order confirmed"),
            "category": category,
            "channels": list(channels),
            "variables": VARIABLES if variables is None else variables,
            "content": blocks,
            **overrides,
        })
        return await TemplateStore(session).register(definition)
    return make


@pytest.fixture
def make_recipient(session):
    async def make(user_id="user-1", push_tokens=("tok-1",), **overrides):
        data = {
            "user_id": user_id,
            "email": "anna@example.com",
            "phone": "+393331234567",
            "whatsapp_number": "+393331234567",
            "preferred_channel": "email",
            "timezone": "Europe/Rome",
            "language": "it",
        }
        data.update(overrides)
        repo = RecipientRepository(session)
        profile = await repo.create_profile(**data)
        for token in push_tokens:
            await repo.add_push_token(user_id, token)
        await session.commit()
        return profile
    return make


@pytest.fixture
def orchestrator(session):
    return MessageOrchestrator(session, clock=lambda: NOON)


class FakeCredentials:
    """Stands in for google-auth service-account credentials; counts token refreshes."""

    project_id = "demo-app"

    def __init__(self, token_prefix="ya29.token"):
        self.token_prefix = token_prefix
        self.token = None
        self.valid = False
        self.refreshes = 0

    def refresh(self, request):
        self.refreshes += 1
        self.token = self.token_prefix if self.refreshes == 1 else f"{self.token_prefix}-{self.refreshes}"
        self.valid = True

    def expire(self):
        self.valid = False
