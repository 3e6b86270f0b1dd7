"""Health and metrics endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from evalflow.database import get_db
from evalflow.models import EvaluationRow

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health(db: Annotated[AsyncSession, Depends(get_db)]):
    """Health check endpoint; reports whether the database answers."""
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        return {"status": "degraded", "database": "unavailable"}
    return {"status": "ok", "database": "ok"}


@router.get("/metrics")
async def metrics(db: Annotated[AsyncSession, Depends(get_db)]):
    """Evaluation counts by derived status."""
    result = await db.execute(
        select(EvaluationRow.status, func.count()).group_by(EvaluationRow.status)
    )
    return {
        "service": "evalflow",
        "version": "0.1.0",
        "evaluations_by_status": {row[0]: row[1] for row in result.all()},
    }
