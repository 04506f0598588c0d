from typing import Any, Mapping

from app.modules.messaging.errors import RenderError
from app.modules.messaging.renderers.base import ChannelRenderer, substitute, truncate, is_valid_url, is_deep_link, has_placeholder
from app.modules.messaging.schemas import PushContent, ValidationResult

TITLE_MAX = 65
BODY_MAX = 240

class PushRenderer(ChannelRenderer):
    channel = "push"
    content_model = PushContent

    def render(self, content: Any, variables: Mapping[str, Any]) -> PushContent:
        c = self.coerce(content)
        click_action = substitute(c.click_action, variables)
        deep_link = substitute(c.deep_link, variables)
        if click_action and not is_valid_url(click_action):
            raise RenderError(f"push: invalid click_action URL {click_action!r}")
        if deep_link and not is_deep_link(deep_link):
            raise RenderError(f"push: invalid deep link {deep_link!r}")
        data = {k: substitute(v, variables) if isinstance(v, str) else v for k, v in c.data.items()}
        return c.model_copy(update={
            "title": truncate(substitute(c.title, variables), TITLE_MAX, "push title"),
            "body": truncate(substitute(c.body, variables), BODY_MAX, "push body"),
            "image": substitute(c.image, variables),
            "click_action": click_action,
            "deep_link": deep_link,
            "data": data,
        })

    def validate(self, content: Any) -> ValidationResult:
        try:
            c = self.coerce(content)
        except ValueError as e:
            return ValidationResult.of([f"push: {e}"])
        errors = []
        if not c.title.strip():
            errors.append("push: title is required")
        elif len(c.title) > TITLE_MAX:
            errors.append(f"push: title exceeds {TITLE_MAX} characters")
        if not c.body.strip():
            errors.append("push: body is required")
        elif len(c.body) > BODY_MAX:
            errors.append(f"push: body exceeds {BODY_MAX} characters")
        if c.click_action and not has_placeholder(c.click_action) and not is_valid_url(c.click_action):
            errors.append("push: click_action must be an http(s) URL")
        if c.deep_link and not has_placeholder(c.deep_link) and not is_deep_link(c.deep_link):
            errors.append("push: deep_link must look like scheme://path")
        return ValidationResult.of(errors)
