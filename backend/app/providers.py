"""File-backed providers for the static default content.

Managers receive these through ``app.api.deps`` so tests can swap in
in-memory fakes.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from app.errors import NotFoundError, StorageError
from app.models import DefaultTemplateInfo, TemplateType

logger = logging.getLogger(__name__)

PROMPT_SHAPE_FILE = "promptTemplate.json"
LLM_CONFIG_FILE = "llmConfigs.json"


@dataclass(frozen=True)
class DefaultTemplateFile:
    filename: str
    description: str
    kind: str


DEFAULT_TEMPLATE_FILES: dict[TemplateType, DefaultTemplateFile] = {
    TemplateType.CONCEPT_MENTOR: DefaultTemplateFile(
        filename="conceptMentor.txt",
        description="Learning coach template with UbD principles",
        kind="text",
    ),
    TemplateType.ASSESSMENT_PROMPT: DefaultTemplateFile(
        filename="assessmentPrompt.txt",
        description="Evaluation template for measuring conceptual understanding",
        kind="text",
    ),
    TemplateType.DEFAULT_TEMPLATE_VALUES: DefaultTemplateFile(
        filename="defaultTemplateValues.txt",
        description="JSON configuration template with concept variables",
        kind="json",
    ),
}


class DefaultTemplateProvider(Protocol):
    def read(self, template_type: TemplateType) -> str: ...

    def describe(self, template_type: TemplateType | None = None) -> list[DefaultTemplateInfo]: ...


class PromptShapeProvider(Protocol):
    def read(self) -> list[dict[str, Any]]: ...


class LLMConfigProvider(Protocol):
    def read(self) -> dict[str, Any]: ...


def _read_json_file(path: Path) -> Any:
    if not path.is_file():
        raise NotFoundError(f"'{path.name}' not found.")
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise StorageError(f"'{path.name}' is not valid JSON: {e}") from e


class FileDefaultTemplateProvider:
    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)

    def path_for(self, template_type: TemplateType) -> Path:
        return self.data_dir / DEFAULT_TEMPLATE_FILES[TemplateType(template_type)].filename

    def read(self, template_type: TemplateType) -> str:
        """Return the default content. Empty files are returned as ``""``."""
        path = self.path_for(template_type)
        if not path.is_file():
            raise NotFoundError(f"Default template file '{path.name}' not found")
        return path.read_text(encoding="utf-8")

    def describe(self, template_type: TemplateType | None = None) -> list[DefaultTemplateInfo]:
        types = [TemplateType(template_type)] if template_type else list(DEFAULT_TEMPLATE_FILES)
        infos = []
        for t in types:
            entry = DEFAULT_TEMPLATE_FILES[t]
            path = self.data_dir / entry.filename
            if path.is_file():
                stats = path.stat()
                infos.append(
                    DefaultTemplateInfo(
                        template_type=t,
                        description=entry.description,
                        kind=entry.kind,
                        filename=entry.filename,
                        content=path.read_text(encoding="utf-8"),
                        size=stats.st_size,
                        last_modified=datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc),
                    )
                )
            else:
                infos.append(
                    DefaultTemplateInfo(
                        template_type=t,
                        description=entry.description,
                        kind=entry.kind,
                        filename=entry.filename,
                        error=f"File '{entry.filename}' not found",
                    )
                )
        return infos


class FilePromptShapeProvider:
    def __init__(self, data_dir: Path):
        self.path = Path(data_dir) / PROMPT_SHAPE_FILE

    def read(self) -> list[dict[str, Any]]:
        shape = _read_json_file(self.path)
        if not isinstance(shape, list):
            raise StorageError(f"'{self.path.name}' must contain a list of messages")
        return shape


class FileLLMConfigProvider:
    def __init__(self, data_dir: Path):
        self.path = Path(data_dir) / LLM_CONFIG_FILE

    def read(self) -> dict[str, Any]:
        configs = _read_json_file(self.path)
        if not isinstance(configs, dict):
            raise StorageError(f"'{self.path.name}' must contain an object keyed by provider")
        if "default" not in configs:
            logger.warning("'%s' has no 'default' entry", self.path.name)
        return configs
