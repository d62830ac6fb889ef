import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.api.deps import EngineDep
from app.core.config import settings
from app.core.db import EXPECTED_TABLES, get_table_names, init_db
from app.models import get_datetime_utc

router = APIRouter(prefix="/utils", tags=["utils"])
logger = logging.getLogger(__name__)


class MigrationRequest(BaseModel):
    secret: str


class MigrationStatus(BaseModel):
    existing_tables: list[str]
    missing_tables: list[str]
    all_tables_exist: bool
    timestamp: datetime


@router.get("/health-check/")
async def health_check() -> bool:
    return True


@router.get("/migrations/status", response_model=MigrationStatus)
async def migration_status(engine: EngineDep) -> Any:
    tables = await get_table_names(engine)
    existing = sorted(t for t in tables if t in EXPECTED_TABLES)
    missing = [t for t in EXPECTED_TABLES if t not in existing]
    return MigrationStatus(
        existing_tables=existing,
        missing_tables=missing,
        all_tables_exist=not missing,
        timestamp=get_datetime_utc(),
    )


@router.post("/migrations/run", response_model=MigrationStatus)
async def run_migrations(engine: EngineDep, migration_in: MigrationRequest) -> Any:
    if migration_in.secret != settings.MIGRATION_SECRET:
        raise HTTPException(status_code=401, detail="Invalid migration secret")
    logger.info("Running database migrations via API")
    await init_db(engine)
    return await migration_status(engine)
