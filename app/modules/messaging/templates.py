import logging
import re
from datetime import date, datetime
from typing import Any
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.messaging.errors import TemplateValidationError, VariableValidationError
from app.modules.messaging.models import MessageTemplate
from app.modules.messaging.renderers.registry import get_renderer
from app.modules.messaging.repository import TemplateRepository
from app.modules.messaging.schemas import TemplateDefinition, TemplateVariable, ValidationResult

log = logging.getLogger(__name__)

VARIABLE_TYPES = {"string", "number", "boolean", "date", "object"}
NAME_RE = re.compile(r"^[_a-zA-Z][_a-zA-Z0-9]*$")

def validate_template(definition: TemplateDefinition) -> ValidationResult:
    errors: list[str] = []
    if not definition.key.strip():
        errors.append("key is required")
    if not definition.name.strip():
        errors.append("name is required")
    if not definition.channels:
        errors.append("at least one channel is required")
    for channel in definition.channels:
        block = getattr(definition.content, channel)
        if block is None:
            # in-app falls back to a generic inbox entry
            if channel != "inapp":
                errors.append(f"{channel}: content is required for a declared channel")
            continue
        errors.extend(get_renderer(channel).validate(block).errors)
    seen: set[str] = set()
    for var in definition.variables:
        if not var.name or not NAME_RE.match(var.name):
            errors.append(f"variable {var.name!r}: name must be an identifier")
        elif var.name in seen:
            errors.append(f"variable {var.name}: declared twice")
        seen.add(var.name)
        if var.type not in VARIABLE_TYPES:
            errors.append(f"variable {var.name}: type must be one of {sorted(VARIABLE_TYPES)}")
        rules = var.validation
        if rules:
            if rules.pattern:
                try:
                    re.compile(rules.pattern)
                except re.error:
                    errors.append(f"variable {var.name}: pattern does not compile")
            if rules.min is not None and rules.max is not None and rules.min > rules.max:
                errors.append(f"variable {var.name}: min is greater than max")
    return ValidationResult.of(errors)

def _parse_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            if "T" in value or " " in value:
                return datetime.fromisoformat(value.replace("Z", "+00:00"))
            return date.fromisoformat(value)
        except ValueError:
            return None
    return None

def _check(var: TemplateVariable, value: Any) -> tuple[Any, list[str]]:
    errs: list[str] = []
    t = var.type
    if t == "string" and not isinstance(value, str):
        return value, [f"{var.name}: expected string"]
    if t == "number" and (isinstance(value, bool) or not isinstance(value, (int, float))):
        return value, [f"{var.name}: expected number"]
    if t == "boolean" and not isinstance(value, bool):
        return value, [f"{var.name}: expected boolean"]
    if t == "object" and not isinstance(value, (dict, list)):
        return value, [f"{var.name}: expected object"]
    if t == "date":
        parsed = _parse_date(value)
        if parsed is None:
            return value, [f"{var.name}: expected date"]
        value = parsed
    rules = var.validation
    if rules:
        measure = len(value) if isinstance(value, str) else value if t == "number" else None
        if measure is not None:
            if rules.min is not None and measure < rules.min:
                errs.append(f"{var.name}: below minimum {rules.min:g}")
            if rules.max is not None and measure > rules.max:
                errs.append(f"{var.name}: above maximum {rules.max:g}")
        if rules.pattern and isinstance(value, str) and not re.fullmatch(rules.pattern, value):
            errs.append(f"{var.name}: does not match pattern")
        if rules.enum is not None and value not in rules.enum:
            errs.append(f"{var.name}: must be one of {rules.enum}")
    return value, errs

def bind_variables(template: TemplateDefinition, raw: dict[str, Any] | None) -> dict[str, Any]:
    """Check a request's bindings against the declared schema and apply defaults."""
    bound = dict(raw or {})
    errors: list[str] = []
    for var in template.variables:
        value = bound.get(var.name)
        if value is None:
            if var.default is not None:
                bound[var.name] = var.default
                continue
            if var.required:
                errors.append(f"{var.name}: required")
            continue
        bound[var.name], errs = _check(var, value)
        errors.extend(errs)
    if errors:
        raise VariableValidationError(errors)
    return bound

def to_definition(obj: MessageTemplate) -> TemplateDefinition:
    return TemplateDefinition.model_validate({
        "key": obj.key,
        "name": obj.name,
        "description": obj.description,
        "category": obj.category,
        "channels": obj.channels,
        "variables": obj.variables,
        "content": obj.content,
        "is_active": obj.is_active,
        "created_by": obj.created_by,
        "version": obj.version,
    })

class TemplateStore:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = TemplateRepository(session)

    async def get_template(self, key: str) -> TemplateDefinition | None:
        obj = await self.repo.get_by_key(key)
        if obj is None:
            return None
        return to_definition(obj)

    async def get_record(self, key: str) -> MessageTemplate | None:
        return await self.repo.get_by_key(key, active_only=False)

    async def register(self, definition: TemplateDefinition) -> MessageTemplate:
        result = validate_template(definition)
        if not result.valid:
            raise TemplateValidationError(result.errors)
        data = {
            "name": definition.name,
            "description": definition.description,
            "category": definition.category,
            "channels": list(dict.fromkeys(definition.channels)),
            "variables": [v.model_dump(mode="json", exclude_none=True) for v in definition.variables],
            "content": definition.content.model_dump(mode="json", exclude_none=True),
            "is_active": definition.is_active,
            "created_by": definition.created_by,
        }
        obj = await self.repo.get_by_key(definition.key, active_only=False)
        if obj is None:
            obj = await self.repo.create(key=definition.key, version=1, **data)
        else:
            for k, v in data.items():
                setattr(obj, k, v)
            obj.version = (obj.version or 1) + 1
            obj.deleted_at = None
            await self.session.flush()
        await self.session.commit()
        log.info(f"Registered template {obj.key} v{obj.version}")
        return obj
