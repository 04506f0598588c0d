from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from app.modules.messaging.errors import RenderError
from app.modules.messaging.renderers.base import ChannelRenderer, substitute, truncate, is_valid_url, is_deep_link, has_placeholder
from app.modules.messaging.schemas import InAppContent, ValidationResult

TITLE_MAX = 100
MESSAGE_MAX = 500
TYPES = {"info", "success", "warning", "error", "promotion"}
PRIORITIES = {"low", "medium", "high", "urgent"}

def _action_url_ok(url: str) -> bool:
    # absolute http(s), or a path inside the app
    return is_valid_url(url) or (url.startswith("/") and not url.startswith("//"))

class InAppRenderer(ChannelRenderer):
    channel = "inapp"
    content_model = InAppContent

    def render(self, content: Any, variables: Mapping[str, Any], now: datetime | None = None) -> InAppContent:
        c = self.coerce(content)
        now = now or datetime.now(timezone.utc)
        if c.type not in TYPES:
            raise RenderError(f"inapp: invalid type {c.type!r}")
        if c.priority not in PRIORITIES:
            raise RenderError(f"inapp: invalid priority {c.priority!r}")
        action = None
        if c.action:
            url = substitute(c.action.url, variables)
            deep_link = substitute(c.action.deep_link, variables)
            if not c.action.label.strip() or not _action_url_ok(url):
                raise RenderError(f"inapp: invalid action url {url!r}")
            if deep_link and not is_deep_link(deep_link):
                raise RenderError(f"inapp: invalid deep link {deep_link!r}")
            action = c.action.model_copy(update={"label": substitute(c.action.label, variables), "url": url, "deep_link": deep_link})
        expires_at = c.expires_at
        if expires_at is None and c.ttl_hours:
            expires_at = now + timedelta(hours=c.ttl_hours)
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at <= now:
                raise RenderError("inapp: expiry is in the past")
        return c.model_copy(update={
            "title": truncate(substitute(c.title, variables), TITLE_MAX, "inapp title"),
            "message": truncate(substitute(c.message, variables), MESSAGE_MAX, "inapp message"),
            "action": action,
            "expires_at": expires_at,
        })

    def validate(self, content: Any) -> ValidationResult:
        try:
            c = self.coerce(content)
        except ValueError as e:
            return ValidationResult.of([f"inapp: {e}"])
        errors = []
        if not c.title.strip():
            errors.append("inapp: title is required")
        elif len(c.title) > TITLE_MAX:
            errors.append(f"inapp: title exceeds {TITLE_MAX} characters")
        if not c.message.strip():
            errors.append("inapp: message is required")
        elif len(c.message) > MESSAGE_MAX:
            errors.append(f"inapp: message exceeds {MESSAGE_MAX} characters")
        if c.type not in TYPES:
            errors.append(f"inapp: type must be one of {sorted(TYPES)}")
        if c.priority not in PRIORITIES:
            errors.append(f"inapp: priority must be one of {sorted(PRIORITIES)}")
        if c.action:
            if not c.action.label.strip():
                errors.append("inapp: action label is required")
            if not has_placeholder(c.action.url) and not _action_url_ok(c.action.url):
                errors.append("inapp: action url must be http(s) or an app path")
            if c.action.deep_link and not has_placeholder(c.action.deep_link) and not is_deep_link(c.action.deep_link):
                errors.append("inapp: action deep_link must look like scheme://path")
        if c.ttl_hours is not None and c.ttl_hours <= 0:
            errors.append("inapp: ttl_hours must be positive")
        if c.expires_at is not None:
            exp = c.expires_at if c.expires_at.tzinfo else c.expires_at.replace(tzinfo=timezone.utc)
            if exp <= datetime.now(timezone.utc):
                errors.append("inapp: expires_at must be in the future")
        return ValidationResult.of(errors)
