"""Template store tests: registration-time validation, versioning and variable binding."""

from datetime import date, datetime

import pytest

from app.modules.messaging.errors import TemplateValidationError, VariableValidationError
from app.modules.messaging.schemas import TemplateDefinition
from app.modules.messaging.templates import TemplateStore, bind_variables, validate_template

from conftest import EMAIL, PUSH


def _definition(**overrides):
    data = {
        "key": "welcome",
        "name": "Welcome",
        "category": "onboarding",
        "channels": ["email", "push"],
        "variables": [{"name": "name", "type": "string", "required": True}],
        "content": {"email": EMAIL, "push": PUSH},
    }
    data.update(overrides)
    return TemplateDefinition.model_validate(data)


class TestValidateTemplate:
    def test_valid_template(self):
        result = validate_template(_definition())
        assert result.valid
        assert result.errors == []

    def test_requires_key_name_and_channels(self):
        result = validate_template(_definition(key="", name=" ", channels=[]))
        assert "key is required" in result.errors
        assert "name is required" in result.errors
        assert "at least one channel is required" in result.errors

    def test_declared_channel_needs_content(self):
        result = validate_template(_definition(channels=["email", "sms"]))
        assert "sms: content is required for a declared channel" in result.errors

    def test_inapp_without_content_is_allowed(self):
        assert validate_template(_definition(channels=["email", "inapp"])).valid

    def test_malformed_email_markup_is_rejected(self):
        result = validate_template(_definition(content={"email": {"subject": "s", "markup": "<p><b>x</p>"}, "push": PUSH}))
        assert not result.valid
        assert any(e.startswith("email:") for e in result.errors)

    def test_variable_rules(self):
        result = validate_template(_definition(variables=[
            {"name": "1bad", "type": "string"},
            {"name": "age", "type": "integer"},
            {"name": "code", "type": "string", "validation": {"pattern": "("}},
            {"name": "qty", "type": "number", "validation": {"min": 5, "max": 1}},
            {"name": "qty", "type": "number"},
        ]))
        assert len(result.errors) == 5


class TestBindVariables:
    template = _definition(variables=[
        {"name": "name", "type": "string", "required": True, "validation": {"min": 2, "max": 10}},
        {"name": "count", "type": "number", "validation": {"min": 1}},
        {"name": "vip", "type": "boolean", "default": False},
        {"name": "due", "type": "date"},
        {"name": "tier", "type": "string", "validation": {"enum": ["gold", "silver"]}},
        {"name": "code", "type": "string", "validation": {"pattern": "[A-Z]{3}"}},
    ])

    def test_defaults_and_passthrough(self):
        bound = bind_variables(self.template, {"name": "Anna", "extra": 1})
        assert bound == {"name": "Anna", "vip": False, "extra": 1}

    def test_missing_required(self):
        with pytest.raises(VariableValidationError) as exc:
            bind_variables(self.template, {})
        assert exc.value.errors == ["name: required"]

    def test_type_errors_are_collected(self):
        with pytest.raises(VariableValidationError) as exc:
            bind_variables(self.template, {"name": 3, "count": True, "vip": "yes", "due": "soon"})
        assert len(exc.value.errors) == 4

    def test_dates_are_parsed(self):
        bound = bind_variables(self.template, {"name": "Anna", "due": "2026-03-01"})
        assert bound["due"] == date(2026, 3, 1)
        bound = bind_variables(self.template, {"name": "Anna", "due": "2026-03-01T09:30:00Z"})
        assert isinstance(bound["due"], datetime)

    def test_rules(self):
        with pytest.raises(VariableValidationError) as exc:
            bind_variables(self.template, {"name": "A", "count": 0, "tier": "bronze", "code": "abc"})
        assert len(exc.value.errors) == 4


class TestTemplateStore:
    async def test_register_and_get(self, session):
        store = TemplateStore(session)
        obj = await store.register(_definition())
        assert obj.version == 1
        loaded = await store.get_template("welcome")
        assert loaded.name == "Welcome"
        assert loaded.content.email.subject == EMAIL["subject"]
        assert loaded.version == 1

    async def test_reregister_bumps_version(self, session):
        store = TemplateStore(session)
        await store.register(_definition())
        obj = await store.register(_definition(name="Welcome v2"))
        assert obj.version == 2
        assert (await store.get_template("welcome")).name == "Welcome v2"

    async def test_invalid_template_is_never_stored(self, session):
        store = TemplateStore(session)
        with pytest.raises(TemplateValidationError):
            await store.register(_definition(content={"email": {"subject": "s", "markup": "<div>"}, "push": PUSH}))
        assert await store.get_record("welcome") is None

    async def test_inactive_template_is_not_served(self, session):
        store = TemplateStore(session)
        await store.register(_definition(is_active=False))
        assert await store.get_template("welcome") is None
        assert await store.get_record("welcome") is not None
