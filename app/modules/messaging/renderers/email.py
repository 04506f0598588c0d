import re
from html import unescape
from html.parser import HTMLParser
from typing import Any, Mapping

import bleach
from jinja2 import Environment, BaseLoader, select_autoescape
from markupsafe import Markup, escape

from app.modules.messaging.renderers.base import ChannelRenderer, substitute, fmt, Placeholders
from app.modules.messaging.schemas import EmailContent, ValidationResult

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
VOID_TAGS = {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"}
STRIP_BLOCKS_RE = re.compile(r"<(style|script|head)\b[^>]*>.*?</\1\s*>", re.I | re.S)
BREAK_RE = re.compile(r"<br\s*/?>|</(p|div|h[1-6]|li|tr)\s*>", re.I)

LAYOUT = """<!DOCTYPE html>
<html lang="{{ lang }}">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{{ subject }}</title>
</head>
<body style="margin:0;padding:0;background:#f4f4f7;">
{% if preheader %}<div style="display:none;max-height:0;overflow:hidden;">{{ preheader }}</div>{% endif %}
<table role="presentation" width="100%" cellpadding="0" cellspacing="0">
<tr><td align="center">
<table role="presentation" width="600" cellpadding="24" cellspacing="0" style="background:#ffffff;">
<tr><td>{{ body }}</td></tr>
</table>
</td></tr>
</table>
</body>
</html>
"""

_env = Environment(loader=BaseLoader(), autoescape=select_autoescape(default_for_string=True, default=True))
_layout = _env.from_string(LAYOUT)

class _TagBalance(HTMLParser):
    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.stack: list[str] = []
        self.errors: list[str] = []

    def handle_starttag(self, tag, attrs):
        if tag not in VOID_TAGS:
            self.stack.append(tag)

    def handle_startendtag(self, tag, attrs):
        pass

    def handle_endtag(self, tag):
        if tag in VOID_TAGS:
            return
        if not self.stack:
            self.errors.append(f"unexpected closing tag </{tag}>")
        elif self.stack[-1] != tag:
            self.errors.append(f"mismatched closing tag </{tag}>, expected </{self.stack[-1]}>")
            if tag in self.stack:
                while self.stack and self.stack.pop() != tag:
                    pass
        else:
            self.stack.pop()

def markup_errors(markup: str) -> list[str]:
    parser = _TagBalance()
    parser.feed(markup)
    parser.close()
    errors = list(parser.errors)
    if parser.stack:
        errors.append("unclosed tags: " + ", ".join(f"<{t}>" for t in parser.stack))
    return errors

def html_to_text(html: str) -> str:
    body = STRIP_BLOCKS_RE.sub("", html)
    body = BREAK_RE.sub("\n", body)
    text = unescape(bleach.clean(body, tags=set(), strip=True, strip_comments=True))
    lines = [re.sub(r"[ \t]+", " ", ln).strip() for ln in text.splitlines()]
    return "\n".join(ln for ln in lines if ln)

class EmailRenderer(ChannelRenderer):
    channel = "email"
    content_model = EmailContent

    def render(self, content: Any, variables: Mapping[str, Any], language: str = "en") -> EmailContent:
        c = self.coerce(content)
        subject = substitute(c.subject, variables)
        preheader = substitute(c.preheader, variables)
        escaped = {k: str(escape(fmt(v))) for k, v in variables.items()}
        fragment = Placeholders(c.markup).safe_substitute(escaped)
        document = _layout.render(lang=language, subject=subject, preheader=preheader, body=Markup(fragment))
        text = substitute(c.text_version, variables) if c.text_version else html_to_text(fragment)
        return c.model_copy(update={
            "subject": subject,
            "preheader": preheader,
            "markup": document,
            "text_version": text,
            "reply_to": substitute(c.reply_to, variables),
        })

    def validate(self, content: Any) -> ValidationResult:
        errors: list[str] = []
        try:
            c = self.coerce(content)
        except ValueError as e:
            return ValidationResult.of([f"email: {e}"])
        if not c.subject.strip():
            errors.append("email: subject is required")
        if not c.markup.strip():
            errors.append("email: markup is required")
        else:
            errors.extend(f"email: {e}" for e in markup_errors(c.markup))
        if c.from_email and not EMAIL_RE.match(c.from_email):
            errors.append("email: from_email is not a valid address")
        return ValidationResult.of(errors)
