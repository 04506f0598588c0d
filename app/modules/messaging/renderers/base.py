import logging
import re
from string import Template
from typing import Any, Mapping
from urllib.parse import urlparse
from pydantic import BaseModel
from app.modules.messaging.schemas import ValidationResult

log = logging.getLogger("messaging.render")

DEEP_LINK_RE = re.compile(r"^[a-z]+://.+")
PLACEHOLDER_RE = re.compile(r"\{\{\s*[_a-zA-Z][_a-zA-Z0-9]*\s*\}\}")

class Placeholders(Template):
    """`{{ name }}` substitution; unknown names stay verbatim via safe_substitute."""
    pattern = r"""
    \{\{\s*(?:
      (?P<named>[_a-z][_a-z0-9]*)\s*\}\}
      |(?P<braced>(?!))
      |(?P<escaped>(?!))
      |(?P<invalid>(?!))
    )
    """

def fmt(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)

def substitute(text: str | None, variables: Mapping[str, Any]) -> str | None:
    if text is None:
        return None
    return Placeholders(text).safe_substitute({k: fmt(v) for k, v in variables.items()})

def has_placeholder(text: str | None) -> bool:
    return bool(text) and bool(PLACEHOLDER_RE.search(text))

def is_valid_url(value: str | None) -> bool:
    if not value:
        return False
    p = urlparse(value)
    return p.scheme in ("http", "https") and bool(p.netloc)

def is_deep_link(value: str | None) -> bool:
    return bool(value) and bool(DEEP_LINK_RE.match(value))

def truncate(text: str, limit: int, field: str) -> str:
    if len(text) <= limit:
        return text
    log.warning(f"{field} exceeds {limit} characters ({len(text)}); truncating")
    return text[: limit - 3] + "..."

class ChannelRenderer:
    channel: str
    content_model: type[BaseModel]

    def coerce(self, content: Any) -> BaseModel:
        if isinstance(content, self.content_model):
            return content
        return self.content_model.model_validate(content)

    def render(self, content: Any, variables: Mapping[str, Any]) -> BaseModel:
        raise NotImplementedError

    def validate(self, content: Any) -> ValidationResult:
        raise NotImplementedError
