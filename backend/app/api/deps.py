from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.config import settings
from app.core.db import SessionFactory, engine, session_factory
from app.providers import (
    DefaultTemplateProvider,
    FileDefaultTemplateProvider,
    FileLLMConfigProvider,
    FilePromptShapeProvider,
    LLMConfigProvider,
    PromptShapeProvider,
)
from app.services.chats import ChatSessionManager
from app.services.prompts import PromptAssembler
from app.services.templates import TemplateVersionManager


def get_engine() -> AsyncEngine:
    return engine


def get_session_factory() -> SessionFactory:
    return session_factory


def get_default_templates() -> DefaultTemplateProvider:
    return FileDefaultTemplateProvider(settings.DATA_DIR)


def get_prompt_shape() -> PromptShapeProvider:
    return FilePromptShapeProvider(settings.DATA_DIR)


def get_llm_configs() -> LLMConfigProvider:
    return FileLLMConfigProvider(settings.DATA_DIR)


EngineDep = Annotated[AsyncEngine, Depends(get_engine)]
SessionFactoryDep = Annotated[SessionFactory, Depends(get_session_factory)]
DefaultTemplatesDep = Annotated[DefaultTemplateProvider, Depends(get_default_templates)]


def get_template_manager(factory: SessionFactoryDep, defaults: DefaultTemplatesDep) -> TemplateVersionManager:
    return TemplateVersionManager(factory, defaults)


def get_chat_manager(factory: SessionFactoryDep) -> ChatSessionManager:
    return ChatSessionManager(factory)


TemplateManagerDep = Annotated[TemplateVersionManager, Depends(get_template_manager)]
ChatManagerDep = Annotated[ChatSessionManager, Depends(get_chat_manager)]


def get_prompt_assembler(
    templates: TemplateManagerDep,
    defaults: DefaultTemplatesDep,
    prompt_shape: Annotated[PromptShapeProvider, Depends(get_prompt_shape)],
    llm_configs: Annotated[LLMConfigProvider, Depends(get_llm_configs)],
) -> PromptAssembler:
    return PromptAssembler(templates, defaults, prompt_shape, llm_configs)


PromptAssemblerDep = Annotated[PromptAssembler, Depends(get_prompt_assembler)]
