"""Channel renderer tests: substitution, limits, validation and shape preservation."""

from datetime import date, datetime, timedelta, timezone

import pytest

from app.modules.messaging.errors import RenderError
from app.modules.messaging.renderers.base import substitute
from app.modules.messaging.renderers.email import EmailRenderer, html_to_text, markup_errors
from app.modules.messaging.renderers.inapp import InAppRenderer
from app.modules.messaging.renderers.push import PushRenderer
from app.modules.messaging.renderers.sms import SmsRenderer
from app.modules.messaging.renderers.whatsapp import WhatsAppRenderer, parameter_shape
from app.modules.messaging.schemas import EmailContent, PushContent, WhatsAppContent


class TestPlaceholders:
    def test_whitespace_tolerant(self):
        assert substitute("Hi {{name}} / {{  name  }}", {"name": "Anna"}) == "Hi Anna / Anna"

    def test_unknown_placeholder_left_verbatim(self):
        assert substitute("Hi {{ name }}, {{ missing }}", {"name": "Anna"}) == "Hi Anna, {{ missing }}"

    def test_dollar_signs_are_plain_text(self):
        assert substitute("Total $5 for {{ name }}", {"name": "Anna"}) == "Total $5 for Anna"

    def test_values_are_stringified(self):
        assert substitute("{{ n }} {{ ok }} {{ d }}", {"n": 3, "ok": True, "d": date(2026, 1, 2)}) == "3 true 2026-01-02"


class TestEmailRenderer:
    def test_render_substitutes_and_wraps_document(self):
        block = EmailContent(subject="Order {{ id }}", preheader="Ready, {{ name }}", markup="<p>Hello {{ name }}</p>")
        out = EmailRenderer().render(block, {"id": "A1", "name": "Anna"})
        assert out.subject == "Order A1"
        assert out.preheader == "Ready, Anna"
        assert out.markup.startswith("<!DOCTYPE html>")
        assert "<p>Hello Anna</p>" in out.markup

    def test_values_are_escaped_inside_markup(self):
        block = EmailContent(subject="Hi {{ name }}", markup="<p>{{ name }}</p>")
        out = EmailRenderer().render(block, {"name": "<script>x</script>"})
        assert "<script>x</script>" not in out.markup
        assert "&lt;script&gt;" in out.markup
        # subject is plain text
        assert out.subject == "Hi <script>x</script>"

    def test_plain_text_fallback_derived_from_markup(self):
        block = EmailContent(subject="s", markup="<style>p{color:red}</style><h1>Hi {{ name }}</h1><p>Tom &amp; Jerry</p>")
        out = EmailRenderer().render(block, {"name": "Anna"})
        assert out.text_version == "Hi Anna\nTom & Jerry"

    def test_explicit_text_version_is_kept(self):
        block = EmailContent(subject="s", markup="<p>x</p>", text_version="Plain {{ name }}")
        assert EmailRenderer().render(block, {"name": "Anna"}).text_version == "Plain Anna"

    def test_render_does_not_mutate_source(self):
        block = EmailContent(subject="Order {{ id }}", markup="<p>{{ id }}</p>")
        EmailRenderer().render(block, {"id": "A1"})
        assert block.subject == "Order {{ id }}"
        assert block.markup == "<p>{{ id }}</p>"

    def test_malformed_markup_fails_validation(self):
        result = EmailRenderer().validate({"subject": "s", "markup": "<div><p>Hi</div>"})
        assert not result.valid
        assert any("mismatched" in e for e in result.errors)

    def test_unclosed_markup_fails_validation(self):
        assert markup_errors("<table><tr><td>x</td></tr>")
        assert not markup_errors("<p>line<br>break <img src='x.png'></p>")

    def test_missing_subject_and_bad_sender(self):
        result = EmailRenderer().validate({"subject": " ", "markup": "<p>x</p>", "from_email": "nope"})
        assert "email: subject is required" in result.errors
        assert "email: from_email is not a valid address" in result.errors

    def test_html_to_text_drops_scripts(self):
        assert html_to_text("<script>alert(1)</script><p>Hello</p>") == "Hello"


class TestPushRenderer:
    def test_long_body_truncated_to_240(self):
        out = PushRenderer().render(PushContent(title="t", body="x" * 300), {})
        assert len(out.body) == 240
        assert out.body == "x" * 237 + "..."

    def test_long_title_truncated_to_65(self):
        out = PushRenderer().render(PushContent(title="y" * 80, body="b"), {})
        assert out.title == "y" * 62 + "..."

    def test_truncation_logs_warning(self, caplog):
        with caplog.at_level("WARNING"):
            PushRenderer().render(PushContent(title="t", body="x" * 300), {})
        assert "truncating" in caplog.text

    def test_invalid_click_action_after_substitution(self):
        with pytest.raises(RenderError):
            PushRenderer().render(PushContent(title="t", body="b", click_action="{{ url }}"), {"url": "not a url"})

    def test_deep_link_format(self):
        out = PushRenderer().render(PushContent(title="t", body="b", deep_link="app://orders/{{ id }}"), {"id": "7"})
        assert out.deep_link == "app://orders/7"
        with pytest.raises(RenderError):
            PushRenderer().render(PushContent(title="t", body="b", deep_link="orders/7"), {})

    def test_validation_limits(self):
        result = PushRenderer().validate({"title": "t" * 66, "body": "b" * 241})
        assert not result.valid
        assert len(result.errors) == 2


class TestWhatsAppRenderer:
    block = WhatsAppContent.model_validate({
        "template_name": "order_update",
        "language_code": "it_IT",
        "components": [
            {"type": "header", "parameters": [{"type": "image", "image": {"link": "{{ image_url }}"}}]},
            {"type": "body", "parameters": [
                {"type": "text", "text": "{{ name }}"},
                {"type": "currency", "currency": {"fallback_value": "{{ total }} EUR", "code": "EUR", "amount_1000": 0}},
                {"type": "date_time", "date_time": {"fallback_value": "{{ when }}"}},
            ]},
        ],
    })
    variables = {"image_url": "https://cdn.example.com/o.png", "name": "Anna", "total": 12.5, "when": date(2026, 3, 1)}

    def test_shape_is_preserved(self):
        out = WhatsAppRenderer().render(self.block, self.variables)
        assert parameter_shape(out) == parameter_shape(self.block)

    def test_values_substituted_into_slots(self):
        out = WhatsAppRenderer().render(self.block, self.variables)
        header, body = out.components
        assert header.parameters[0].image.link == "https://cdn.example.com/o.png"
        assert body.parameters[0].text == "Anna"
        assert body.parameters[1].currency.fallback_value == "12.5 EUR"
        assert body.parameters[1].currency.amount_1000 == 12500
        assert body.parameters[2].date_time.fallback_value == "01/03/2026"

    def test_invalid_media_link_rejected(self):
        with pytest.raises(RenderError):
            WhatsAppRenderer().render(self.block, {**self.variables, "image_url": "ftp:/broken"})

    def test_validation(self):
        result = WhatsAppRenderer().validate({
            "template_name": "",
            "language_code": "italian",
            "components": [{"type": "sidebar", "parameters": [{"type": "currency", "currency": {"fallback_value": "1", "code": "eur"}}]}],
        })
        assert not result.valid
        assert len(result.errors) == 4

    def test_placeholder_media_link_is_valid(self):
        assert WhatsAppRenderer().validate(self.block).valid


class TestInAppRenderer:
    def test_render(self):
        out = InAppRenderer().render(
            {"title": "Hi {{ name }}", "message": "m" * 600, "type": "warning", "action": {"label": "Open", "url": "/orders/{{ id }}"}},
            {"name": "Anna", "id": "9"},
        )
        assert out.title == "Hi Anna"
        assert len(out.message) == 500
        assert out.action.url == "/orders/9"

    def test_ttl_sets_expiry(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        out = InAppRenderer().render({"title": "t", "message": "m", "ttl_hours": 2}, {}, now=now)
        assert out.expires_at == now + timedelta(hours=2)

    def test_past_expiry_rejected(self):
        with pytest.raises(RenderError):
            InAppRenderer().render({"title": "t", "message": "m", "expires_at": "2000-01-01T00:00:00Z"}, {})

    def test_invalid_type_rejected(self):
        with pytest.raises(RenderError):
            InAppRenderer().render({"title": "t", "message": "m", "type": "shout"}, {})

    def test_action_requires_valid_url(self):
        with pytest.raises(RenderError):
            InAppRenderer().render({"title": "t", "message": "m", "action": {"label": "Go", "url": "javascript:alert(1)"}}, {})

    def test_validation(self):
        result = InAppRenderer().validate({"title": "t" * 101, "message": "", "priority": "asap", "action": {"label": "", "url": "x"}})
        assert not result.valid
        assert len(result.errors) == 5


class TestSmsRenderer:
    def test_render_and_truncate(self):
        out = SmsRenderer().render({"body": "Code {{ code }} " + "z" * 2000}, {"code": "1234"})
        assert out.body.startswith("Code 1234")
        assert len(out.body) == 1600

    def test_empty_body_invalid(self):
        assert not SmsRenderer().validate({"body": "  "}).valid
