import json
import logging
import re
from typing import Any

from app.errors import ValidationError
from app.models import AssembledPrompt, TemplateType
from app.providers import DefaultTemplateProvider, LLMConfigProvider, PromptShapeProvider
from app.services.templates import TemplateVersionManager, coerce_template_type, validate_owner

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"{{(.*?)}}")

# Prompt types with a static system-prompt file to fall back on
SYSTEM_PROMPT_TYPES = (TemplateType.CONCEPT_MENTOR, TemplateType.ASSESSMENT_PROMPT)


def _placeholder_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, ensure_ascii=False)


def replace_placeholders(text: str, variables: dict[str, Any]) -> str:
    """Substitute ``{{ name }}`` markers. Unknown names become empty strings."""
    return PLACEHOLDER_RE.sub(lambda m: _placeholder_value(variables.get(m.group(1).strip())), text)


class PromptAssembler:
    """Builds the LLM-ready message list for a user's prompt type."""

    def __init__(
        self,
        templates: TemplateVersionManager,
        defaults: DefaultTemplateProvider,
        prompt_shape: PromptShapeProvider,
        llm_configs: LLMConfigProvider,
    ):
        self.templates = templates
        self.defaults = defaults
        self.prompt_shape = prompt_shape
        self.llm_configs = llm_configs

    async def _system_content(self, owner: str, prompt_type: TemplateType) -> tuple[str, str]:
        active = await self.templates.get_active(owner, prompt_type)
        if active is not None:
            logger.debug("Using database template for %s/%s", owner, prompt_type.value)
            return active.content, "database"

        if prompt_type not in SYSTEM_PROMPT_TYPES:
            raise ValidationError(
                f"Invalid promptType '{prompt_type.value}'. Must be 'conceptMentor' or 'assessmentPrompt'."
            )
        logger.debug("No database template for %s/%s, using default", owner, prompt_type.value)
        return self.defaults.read(prompt_type), "file"

    async def _variables(self, owner: str) -> dict[str, Any]:
        active = await self.templates.get_active(owner, TemplateType.DEFAULT_TEMPLATE_VALUES)
        if active is not None:
            try:
                variables = json.loads(active.content)
            except json.JSONDecodeError:
                logger.warning("Stored template values for %s are not valid JSON, using defaults", owner)
            else:
                if isinstance(variables, dict):
                    return variables
                logger.warning("Stored template values for %s are not a JSON object, using defaults", owner)

        content = self.defaults.read(TemplateType.DEFAULT_TEMPLATE_VALUES)
        try:
            variables = json.loads(content)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Default template values are not valid JSON: {e}") from e
        if not isinstance(variables, dict):
            raise ValidationError("Default template values must be a JSON object")
        return variables

    async def assemble(
        self,
        owner: str,
        prompt_type: TemplateType | str,
        llm_provider: str = "default",
        user_input: str | None = "",
    ) -> AssembledPrompt:
        owner = validate_owner(owner)
        prompt_type = coerce_template_type(prompt_type)
        user_input = user_input or ""
        llm_provider = llm_provider or "default"

        shape = self.prompt_shape.read()
        system_template, source = await self._system_content(owner, prompt_type)
        variables = await self._variables(owner)
        system_content = replace_placeholders(system_template, variables)

        configs = self.llm_configs.read()
        llm_config = configs.get(llm_provider.lower(), configs.get("default"))

        messages = []
        for item in shape:
            role = item.get("role")
            if role == "system":
                messages.append({"role": role, "content": system_content})
            elif role == "user":
                messages.append({"role": role, "content": user_input})
            else:
                messages.append(item)

        return AssembledPrompt(
            messages=messages,
            llm_config=llm_config,
            template_source=source,
            metadata={
                "owner": owner,
                "prompt_type": prompt_type.value,
                "llm_provider": llm_provider,
                "user_input_length": len(user_input),
                "system_content_source": "User Custom Template" if source == "database" else "Default Template",
            },
        )
