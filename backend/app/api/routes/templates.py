from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse

from app.api.deps import DefaultTemplatesDep, PromptAssemblerDep, TemplateManagerDep
from app.models import (
    AssembledPrompt,
    BatchResult,
    BulkResetRequest,
    DefaultTemplateInfo,
    Message,
    PromptProcessRequest,
    TemplateDelete,
    TemplateDeleteResult,
    TemplateHistoryPublic,
    TemplateListPublic,
    TemplateResetRequest,
    TemplateResetResult,
    TemplateRestore,
    TemplateSummary,
    TemplateType,
    TemplateUpsert,
    TemplateVersionPublic,
    TemplateWriteResult,
)

router = APIRouter()


@router.get("/", response_model=TemplateVersionPublic | TemplateHistoryPublic)
async def read_template(
    templates: TemplateManagerDep,
    owner: str = Query(min_length=1, max_length=255),
    template_type: TemplateType = Query(),
    version: int | None = Query(default=None, ge=1),
    include_history: bool = False,
) -> Any:
    """
    Active version by default, a specific ``version``, or the full history.
    """
    found = await templates.read(owner, template_type, version=version, include_history=include_history)
    if isinstance(found, list):
        return TemplateHistoryPublic(
            templates=found,
            total_versions=len(found),
            latest_version=max(t.version for t in found),
        )
    return found


@router.post("/", response_model=TemplateWriteResult, status_code=201)
@router.put("/", response_model=TemplateWriteResult, status_code=201)
async def upsert_template(templates: TemplateManagerDep, template_in: TemplateUpsert) -> Any:
    """
    Store new content as the next version and make it the active one.
    """
    return await templates.upsert(template_in.owner, template_in.template_type, template_in.content)


@router.get("/list", response_model=TemplateListPublic)
async def list_templates(
    templates: TemplateManagerDep,
    owner: str = Query(min_length=1, max_length=255),
) -> Any:
    grouped = await templates.list_for_owner(owner)
    summaries = {
        template_type: [
            TemplateSummary.model_validate(t, update={"content_length": len(t.content)}) for t in versions
        ]
        for template_type, versions in grouped.items()
    }
    return TemplateListPublic(
        owner=owner,
        templates=summaries,
        total_templates=sum(len(v) for v in summaries.values()),
    )


@router.delete("/", response_model=TemplateDeleteResult)
async def delete_template(templates: TemplateManagerDep, delete_in: TemplateDelete) -> Any:
    deleted = await templates.delete(
        delete_in.owner,
        delete_in.template_type,
        version=delete_in.version,
        delete_all=delete_in.delete_all,
    )
    template_type = delete_in.template_type.value
    if delete_in.delete_all:
        message = f"All versions of {template_type} deleted for user {delete_in.owner}"
    elif delete_in.version is not None:
        message = f"Version {delete_in.version} of {template_type} deleted for user {delete_in.owner}"
    else:
        message = f"Active version of {template_type} deleted for user {delete_in.owner}"
    return TemplateDeleteResult(message=message, deleted_count=deleted)


@router.post("/restore", response_model=Message)
async def restore_template(templates: TemplateManagerDep, restore_in: TemplateRestore) -> Any:
    await templates.restore(restore_in.owner, restore_in.template_type, restore_in.version)
    return Message(
        message=(
            f"Version {restore_in.version} of {restore_in.template_type.value} "
            f"restored as active for user {restore_in.owner}"
        )
    )


@router.get("/defaults", response_model=list[DefaultTemplateInfo])
def read_default_templates(
    defaults: DefaultTemplatesDep,
    template_type: TemplateType | None = None,
    format_: Literal["json", "raw"] = Query(default="json", alias="format"),
) -> Any:
    """
    Default templates shipped with the service. ``format=raw`` downloads a single file.
    """
    if format_ == "raw":
        if template_type is None:
            raise HTTPException(status_code=400, detail="template_type is required for raw format")
        info = defaults.describe(template_type)[0]
        content = defaults.read(template_type)
        media_type = "application/json" if info.kind == "json" else "text/plain"
        return PlainTextResponse(
            content,
            media_type=media_type,
            headers={"Content-Disposition": f'attachment; filename="{info.filename}"'},
        )
    infos = defaults.describe(template_type)
    if template_type is not None and infos[0].error:
        raise HTTPException(status_code=404, detail=infos[0].error)
    return infos


@router.post("/defaults", response_model=TemplateResetResult)
async def reset_template_to_default(templates: TemplateManagerDep, reset_in: TemplateResetRequest) -> Any:
    if not reset_in.reset_to_default:
        raise HTTPException(status_code=400, detail="Set reset_to_default: true to reset template")
    return await templates.reset_to_default(reset_in.owner, reset_in.template_type)


@router.post("/process", response_model=AssembledPrompt)
async def process_prompt(assembler: PromptAssemblerDep, prompt_in: PromptProcessRequest) -> Any:
    """
    Build the message list for an LLM call from the user's templates.
    """
    return await assembler.assemble(
        prompt_in.owner,
        prompt_in.prompt_type,
        llm_provider=prompt_in.llm_provider,
        user_input=prompt_in.user_input,
    )


@router.post("/update-all-users", response_model=BatchResult)
async def reset_all_users_to_default(templates: TemplateManagerDep, bulk_in: BulkResetRequest) -> Any:
    """
    Write the latest default content as a new version for every user.
    """
    if not bulk_in.confirm_update:
        raise HTTPException(
            status_code=400,
            detail="Set confirm_update: true to update ALL users with the latest default template",
        )
    return await templates.bulk_reset_defaults(bulk_in.template_type)
