"""Versioned prompt templates.

Every write creates a new row; older versions are kept as history with
``is_active`` cleared. At most one row per (owner, template type) is active,
enforced by the ``unique_active_template`` partial index.
"""
import logging

from sqlalchemy import delete, func, update
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.db import SessionFactory, transaction
from app.errors import NotFoundError, ServiceError, ValidationError
from app.models import (
    CONTENT_MAX_LENGTH,
    OWNER_MAX_LENGTH,
    BatchResult,
    BulkResetOutcome,
    TemplateResetResult,
    TemplateType,
    TemplateVersion,
    TemplateVersionPublic,
    TemplateWriteResult,
    get_datetime_utc,
)
from app.providers import DefaultTemplateProvider

logger = logging.getLogger(__name__)

CONTENT_PREVIEW_CHARS = 200


def coerce_template_type(value: TemplateType | str) -> TemplateType:
    try:
        return TemplateType(value)
    except ValueError:
        valid = ", ".join(t.value for t in TemplateType)
        raise ValidationError(
            f"Invalid templateType '{value}'. Must be one of: {valid}",
            details=[{"field": "template_type", "message": f"must be one of: {valid}"}],
        ) from None


def validate_owner(owner: str) -> str:
    if not owner or not owner.strip():
        raise ValidationError("Owner is required", details=[{"field": "owner", "message": "required"}])
    if len(owner) > OWNER_MAX_LENGTH:
        raise ValidationError(
            f"Owner cannot exceed {OWNER_MAX_LENGTH} characters",
            details=[{"field": "owner", "message": "too long"}],
        )
    return owner


def validate_content(content: str) -> str:
    if not content:
        raise ValidationError("Content cannot be empty", details=[{"field": "content", "message": "required"}])
    if len(content) > CONTENT_MAX_LENGTH:
        raise ValidationError("Content cannot exceed 1MB", details=[{"field": "content", "message": "too long"}])
    return content


def validate_version(version: int) -> int:
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise ValidationError(
            "Version must be a positive integer",
            details=[{"field": "version", "message": "must be >= 1"}],
        )
    return version


def _for_key(owner: str, template_type: TemplateType):
    return (
        col(TemplateVersion.owner) == owner,
        col(TemplateVersion.template_type) == template_type.value,
    )


class TemplateVersionManager:
    """Creates, activates, restores and deletes template versions."""

    def __init__(self, session_factory: SessionFactory, defaults: DefaultTemplateProvider):
        self.session_factory = session_factory
        self.defaults = defaults

    async def _next_version(self, session: AsyncSession, owner: str, template_type: TemplateType) -> int:
        statement = select(func.max(TemplateVersion.version)).where(*_for_key(owner, template_type))
        current = (await session.exec(statement)).one()
        return (current or 0) + 1

    async def _deactivate_active(self, session: AsyncSession, owner: str, template_type: TemplateType) -> int:
        statement = (
            update(TemplateVersion)
            .where(*_for_key(owner, template_type), col(TemplateVersion.is_active).is_(True))
            .values(is_active=False, updated_at=get_datetime_utc())
        )
        result = await session.exec(statement)  # type: ignore[call-overload]
        return result.rowcount

    async def _insert_version(
        self, session: AsyncSession, owner: str, template_type: TemplateType, content: str
    ) -> TemplateVersion:
        next_version = await self._next_version(session, owner, template_type)
        deactivated = await self._deactivate_active(session, owner, template_type)
        row = TemplateVersion(
            owner=owner,
            template_type=template_type.value,
            content=content,
            version=next_version,
            is_active=True,
        )
        session.add(row)
        await session.flush()
        logger.info(
            "Template %s/%s v%d created (%d previous version deactivated)",
            owner,
            template_type.value,
            next_version,
            deactivated,
        )
        return row

    async def upsert(self, owner: str, template_type: TemplateType | str, content: str) -> TemplateWriteResult:
        """Store ``content`` as the new active version for owner and type.

        Raises ``ConflictError`` when a concurrent writer got there first;
        the caller should retry the whole call.
        """
        owner = validate_owner(owner)
        template_type = coerce_template_type(template_type)
        content = validate_content(content)

        async with transaction(self.session_factory) as session:
            row = await self._insert_version(session, owner, template_type, content)

        return TemplateWriteResult(
            id=row.id,
            owner=owner,
            template_type=template_type,
            version=row.version,
            created_at=row.created_at,
        )

    async def read(
        self,
        owner: str,
        template_type: TemplateType | str,
        *,
        version: int | None = None,
        include_history: bool = False,
    ) -> TemplateVersionPublic | list[TemplateVersionPublic]:
        """Exact version, full history (newest first) or the active row."""
        owner = validate_owner(owner)
        template_type = coerce_template_type(template_type)

        statement = select(TemplateVersion).where(*_for_key(owner, template_type))
        if version is not None:
            statement = statement.where(col(TemplateVersion.version) == validate_version(version))
        elif include_history:
            statement = statement.order_by(col(TemplateVersion.version).desc())
        else:
            statement = statement.where(col(TemplateVersion.is_active).is_(True))

        async with transaction(self.session_factory) as session:
            rows = (await session.exec(statement)).all()

        if not rows:
            raise NotFoundError(f"No template found for user: {owner}, type: {template_type.value}")

        if version is None and include_history:
            return [TemplateVersionPublic.model_validate(row) for row in rows]
        return TemplateVersionPublic.model_validate(rows[0])

    async def get_active(self, owner: str, template_type: TemplateType | str) -> TemplateVersionPublic | None:
        try:
            return await self.read(owner, template_type)  # type: ignore[return-value]
        except NotFoundError:
            return None

    async def list_for_owner(self, owner: str) -> dict[str, list[TemplateVersionPublic]]:
        """All versions of every template type the owner has, grouped by type."""
        owner = validate_owner(owner)
        statement = (
            select(TemplateVersion)
            .where(col(TemplateVersion.owner) == owner)
            .order_by(col(TemplateVersion.template_type), col(TemplateVersion.version).desc())
        )
        async with transaction(self.session_factory) as session:
            rows = (await session.exec(statement)).all()

        grouped: dict[str, list[TemplateVersionPublic]] = {}
        for row in rows:
            grouped.setdefault(TemplateType(row.template_type).value, []).append(
                TemplateVersionPublic.model_validate(row)
            )
        return grouped

    async def restore(self, owner: str, template_type: TemplateType | str, version: int) -> None:
        """Make ``version`` the active row. Restoring the active version is a no-op."""
        owner = validate_owner(owner)
        template_type = coerce_template_type(template_type)
        version = validate_version(version)

        async with transaction(self.session_factory) as session:
            exists = await session.exec(
                select(TemplateVersion.id).where(
                    *_for_key(owner, template_type), col(TemplateVersion.version) == version
                )
            )
            if exists.first() is None:
                raise NotFoundError(f"Version {version} not found for {template_type.value}")

            await self._deactivate_active(session, owner, template_type)
            await session.exec(  # type: ignore[call-overload]
                update(TemplateVersion)
                .where(*_for_key(owner, template_type), col(TemplateVersion.version) == version)
                .values(is_active=True, updated_at=get_datetime_utc())
            )

        logger.info("Template %s/%s v%d restored as active", owner, template_type.value, version)

    async def delete(
        self,
        owner: str,
        template_type: TemplateType | str,
        *,
        version: int | None = None,
        delete_all: bool = False,
    ) -> int:
        """Delete every version, one version, or (by default) the active one."""
        owner = validate_owner(owner)
        template_type = coerce_template_type(template_type)

        statement = delete(TemplateVersion).where(*_for_key(owner, template_type))
        if delete_all:
            pass
        elif version is not None:
            statement = statement.where(col(TemplateVersion.version) == validate_version(version))
        else:
            statement = statement.where(col(TemplateVersion.is_active).is_(True))

        async with transaction(self.session_factory) as session:
            result = await session.exec(statement)  # type: ignore[call-overload]
            if result.rowcount == 0:
                raise NotFoundError("No matching templates found to delete")
            deleted = result.rowcount

        logger.info("Deleted %d version(s) of %s for %s", deleted, template_type.value, owner)
        return deleted

    async def reset_to_default(self, owner: str, template_type: TemplateType | str) -> TemplateResetResult:
        owner = validate_owner(owner)
        template_type = coerce_template_type(template_type)
        content = self.defaults.read(template_type)

        written = await self.upsert(owner, template_type, content)
        return TemplateResetResult(
            owner=owner,
            template_type=template_type,
            default_content=content,
            new_version=written.version,
            template_id=written.id,
            created_at=written.created_at,
        )

    async def owners(self) -> list[str]:
        statement = select(TemplateVersion.owner).distinct().order_by(col(TemplateVersion.owner))
        async with transaction(self.session_factory) as session:
            return list((await session.exec(statement)).all())

    async def bulk_reset_defaults(
        self, template_type: TemplateType | str = TemplateType.DEFAULT_TEMPLATE_VALUES
    ) -> BatchResult:
        """Write the current default content as a new version for every owner.

        Each owner is written in its own transaction; a failure for one owner
        is recorded in the result and the batch carries on.
        """
        template_type = coerce_template_type(template_type)
        content = self.defaults.read(template_type)
        owners = await self.owners()
        logger.info(
            "Bulk reset of %s for %d owner(s) (%d characters)", template_type.value, len(owners), len(content)
        )

        results: list[BulkResetOutcome] = []
        for owner in owners:
            try:
                written = await self.upsert(owner, template_type, content)
            except ServiceError as e:
                logger.error("Bulk reset failed for %s: %s", owner, e.message)
                results.append(BulkResetOutcome(owner=owner, success=False, error=e.message))
                continue
            results.append(
                BulkResetOutcome(
                    owner=owner,
                    success=True,
                    new_version=written.version,
                    template_id=written.id,
                    action="created" if written.version == 1 else "updated",
                )
            )

        success_count = sum(1 for r in results if r.success)
        batch = BatchResult(
            template_type=template_type,
            total_owners=len(owners),
            success_count=success_count,
            failure_count=len(results) - success_count,
            content_preview=content[:CONTENT_PREVIEW_CHARS],
            results=results,
        )
        logger.info(
            "Bulk reset of %s finished: %d succeeded, %d failed",
            template_type.value,
            batch.success_count,
            batch.failure_count,
        )
        return batch
