from typing import Any, Mapping

from app.modules.messaging.renderers.base import ChannelRenderer, substitute, truncate
from app.modules.messaging.schemas import SmsContent, ValidationResult

BODY_MAX = 1600  # Twilio concatenated message ceiling

class SmsRenderer(ChannelRenderer):
    channel = "sms"
    content_model = SmsContent

    def render(self, content: Any, variables: Mapping[str, Any]) -> SmsContent:
        c = self.coerce(content)
        return c.model_copy(update={"body": truncate(substitute(c.body, variables), BODY_MAX, "sms body")})

    def validate(self, content: Any) -> ValidationResult:
        try:
            c = self.coerce(content)
        except ValueError as e:
            return ValidationResult.of([f"sms: {e}"])
        return ValidationResult.of([] if c.body.strip() else ["sms: body is required"])
