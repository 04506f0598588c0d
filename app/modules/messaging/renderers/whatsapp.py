import re
from datetime import date, datetime
from typing import Any, Mapping

from app.modules.messaging.errors import RenderError
from app.modules.messaging.renderers.base import ChannelRenderer, substitute, is_valid_url, has_placeholder, PLACEHOLDER_RE
from app.modules.messaging.schemas import WhatsAppContent, ValidationResult

LANGUAGE_RE = re.compile(r"^[a-z]{2}(_[A-Z]{2})?$")
CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
COMPONENT_TYPES = {"header", "body", "footer", "button"}
PARAMETER_TYPES = {"text", "currency", "date_time", "image", "document", "video"}
MEDIA_TYPES = ("image", "document", "video")

def format_date(value: date) -> str:
    if isinstance(value, datetime):
        return value.strftime("%d/%m/%Y %H:%M")
    return value.strftime("%d/%m/%Y")

def _referenced(text: str) -> list[str]:
    return [m.group(0).strip("{} ") for m in PLACEHOLDER_RE.finditer(text or "")]

def parameter_shape(content: WhatsAppContent) -> list[tuple[str, list[str]]]:
    """Component order and parameter types; rendering must keep this identical."""
    return [(c.type, [p.type for p in c.parameters]) for c in content.components]

class WhatsAppRenderer(ChannelRenderer):
    channel = "whatsapp"
    content_model = WhatsAppContent

    def _render_param(self, p, variables: Mapping[str, Any]):
        if p.type == "text":
            return p.model_copy(update={"text": substitute(p.text or "", variables)})
        if p.type == "currency" and p.currency:
            amount = p.currency.amount_1000
            for name in _referenced(p.currency.fallback_value):
                v = variables.get(name)
                if isinstance(v, (int, float)) and not isinstance(v, bool):
                    amount = round(v * 1000)
                    break
            cur = p.currency.model_copy(update={"fallback_value": substitute(p.currency.fallback_value, variables), "amount_1000": amount})
            return p.model_copy(update={"currency": cur})
        if p.type == "date_time" and p.date_time:
            dated = {k: format_date(v) if isinstance(v, date) else v for k, v in variables.items()}
            dt = p.date_time.model_copy(update={"fallback_value": substitute(p.date_time.fallback_value, dated)})
            return p.model_copy(update={"date_time": dt})
        if p.type in MEDIA_TYPES:
            media = getattr(p, p.type)
            if media is None:
                return p
            link = substitute(media.link, variables)
            if not is_valid_url(link):
                raise RenderError(f"whatsapp: {p.type} link is not a valid URL: {link!r}")
            return p.model_copy(update={p.type: media.model_copy(update={"link": link})})
        return p

    def render(self, content: Any, variables: Mapping[str, Any]) -> WhatsAppContent:
        c = self.coerce(content)
        components = [
            comp.model_copy(update={"parameters": [self._render_param(p, variables) for p in comp.parameters]})
            for comp in c.components
        ]
        return c.model_copy(update={"components": components})

    def validate(self, content: Any) -> ValidationResult:
        try:
            c = self.coerce(content)
        except ValueError as e:
            return ValidationResult.of([f"whatsapp: {e}"])
        errors = []
        if not c.template_name.strip():
            errors.append("whatsapp: template_name is required")
        if not LANGUAGE_RE.match(c.language_code or ""):
            errors.append("whatsapp: language_code must look like 'it' or 'it_IT'")
        if not c.components:
            errors.append("whatsapp: at least one component is required")
        for i, comp in enumerate(c.components):
            if comp.type not in COMPONENT_TYPES:
                errors.append(f"whatsapp: component {i} has invalid type {comp.type!r}")
            for j, p in enumerate(comp.parameters):
                where = f"whatsapp: component {i} parameter {j}"
                if p.type not in PARAMETER_TYPES:
                    errors.append(f"{where} has invalid type {p.type!r}")
                elif p.type == "text" and p.text is None:
                    errors.append(f"{where} requires text")
                elif p.type == "currency":
                    if not p.currency:
                        errors.append(f"{where} requires currency")
                    elif not CURRENCY_RE.match(p.currency.code):
                        errors.append(f"{where} currency code must be 3 uppercase letters")
                elif p.type == "date_time" and not p.date_time:
                    errors.append(f"{where} requires date_time")
                elif p.type in MEDIA_TYPES:
                    media = getattr(p, p.type)
                    if media is None:
                        errors.append(f"{where} requires {p.type}")
                    elif not has_placeholder(media.link) and not is_valid_url(media.link):
                        errors.append(f"{where} {p.type} link must be a valid URL")
        return ValidationResult.of(errors)
