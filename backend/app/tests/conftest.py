from collections.abc import AsyncIterator
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from app.api import deps
from app.core.db import SessionFactory, build_session_factory, init_db
from app.errors import NotFoundError
from app.main import app
from app.models import DefaultTemplateInfo, TemplateType
from app.services.chats import ChatSessionManager
from app.services.prompts import PromptAssembler
from app.services.templates import TemplateVersionManager

DEFAULT_CONTENTS = {
    TemplateType.CONCEPT_MENTOR: "Default mentor for {{concept}} at {{level}} level.",
    TemplateType.ASSESSMENT_PROMPT: "Assess understanding of {{concept}}.",
    TemplateType.DEFAULT_TEMPLATE_VALUES: '{"concept": "gravity", "level": "beginner"}',
}

PROMPT_SHAPE = [
    {"role": "system"},
    {"role": "assistant", "content": "Hello! What would you like to learn?"},
    {"role": "user"},
]

LLM_CONFIGS = {
    "default": {"model": "default-model", "temperature": 0.7},
    "openai": {"model": "gpt-4o", "temperature": 0.2},
}


class InMemoryDefaultTemplates:
    def __init__(self, contents: dict[TemplateType, str] | None = None):
        self.contents = dict(contents or {})

    def read(self, template_type: TemplateType) -> str:
        try:
            return self.contents[TemplateType(template_type)]
        except KeyError:
            raise NotFoundError(f"Default template for '{template_type}' not found") from None

    def describe(self, template_type: TemplateType | None = None) -> list[DefaultTemplateInfo]:
        types = [TemplateType(template_type)] if template_type else list(TemplateType)
        return [
            DefaultTemplateInfo(
                template_type=t,
                description=f"{t.value} default",
                kind="json" if t == TemplateType.DEFAULT_TEMPLATE_VALUES else "text",
                filename=f"{t.value}.txt",
                content=self.contents.get(t),
                size=len(self.contents[t]) if t in self.contents else None,
                error=None if t in self.contents else f"File '{t.value}.txt' not found",
            )
            for t in types
        ]


class InMemoryPromptShape:
    def __init__(self, shape: list[dict[str, Any]] | None):
        self.shape = shape

    def read(self) -> list[dict[str, Any]]:
        if self.shape is None:
            raise NotFoundError("'promptTemplate.json' not found.")
        return [dict(item) for item in self.shape]


class InMemoryLLMConfigs:
    def __init__(self, configs: dict[str, Any] | None):
        self.configs = configs

    def read(self) -> dict[str, Any]:
        if self.configs is None:
            raise NotFoundError("'llmConfigs.json' not found.")
        return self.configs


@pytest_asyncio.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> SessionFactory:
    return build_session_factory(engine)


@pytest.fixture
def defaults() -> InMemoryDefaultTemplates:
    return InMemoryDefaultTemplates(DEFAULT_CONTENTS)


@pytest.fixture
def prompt_shape() -> InMemoryPromptShape:
    return InMemoryPromptShape(PROMPT_SHAPE)


@pytest.fixture
def llm_configs() -> InMemoryLLMConfigs:
    return InMemoryLLMConfigs(LLM_CONFIGS)


@pytest.fixture
def template_manager(session_factory, defaults) -> TemplateVersionManager:
    return TemplateVersionManager(session_factory, defaults)


@pytest.fixture
def chat_manager(session_factory) -> ChatSessionManager:
    return ChatSessionManager(session_factory)


@pytest.fixture
def assembler(template_manager, defaults, prompt_shape, llm_configs) -> PromptAssembler:
    return PromptAssembler(template_manager, defaults, prompt_shape, llm_configs)


@pytest_asyncio.fixture
async def client(engine, session_factory, defaults, prompt_shape, llm_configs) -> AsyncIterator[AsyncClient]:
    app.dependency_overrides[deps.get_engine] = lambda: engine
    app.dependency_overrides[deps.get_session_factory] = lambda: session_factory
    app.dependency_overrides[deps.get_default_templates] = lambda: defaults
    app.dependency_overrides[deps.get_prompt_shape] = lambda: prompt_shape
    app.dependency_overrides[deps.get_llm_configs] = lambda: llm_configs
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
