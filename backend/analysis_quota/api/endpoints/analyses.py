from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from analysis_quota.core.database import get_db
from analysis_quota.core.errors import (
    InvalidPeriodState,
    NotAuthenticated,
    QuotaError,
    QuotaExceeded,
    StorageUnavailable,
)
from analysis_quota.core.security import CurrentUser, get_current_user
from analysis_quota.models.property_analysis import PropertyAnalysis
from analysis_quota.schemas.analysis import AnalysisCreate, AnalysisResponse, QuotaRejection, UsageResponse
from analysis_quota.services.enforcement_gate import authorize_analysis_creation, usage_summary
from analysis_quota.services.usage_ledger import release

logger = logging.getLogger(__name__)

router = APIRouter()


_REJECTION_STATUS: dict[str, int] = {
    QuotaExceeded.code: 402,
    NotAuthenticated.code: 401,
    StorageUnavailable.code: 503,
    InvalidPeriodState.code: 503,
}


@router.post("/analyses", response_model=AnalysisResponse, status_code=201)
async def create_analysis(
    body: AnalysisCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AnalysisResponse:
    decision = authorize_analysis_creation(db, current_user.id)
    if not decision.allowed:
        rejection = QuotaRejection(
            code=decision.reason or QuotaError.code,
            message=decision.message or QuotaError.public_message,
            hint=decision.hint,
            limit=decision.limit,
        )
        raise HTTPException(status_code=_REJECTION_STATUS.get(rejection.code, 503), detail=rejection.model_dump())

    analysis = PropertyAnalysis(
        user_id=current_user.id,
        property_address=(body.property_address or "").strip() or None,
        plan_at_time=decision.plan_at_time.value,
        inputs=body.inputs or None,
    )
    try:
        db.add(analysis)
        db.commit()
        db.refresh(analysis)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("analyses.create.persist_failed user_id=%s", current_user.id)
        try:
            release(db, current_user.id, decision.period)
        except QuotaError:
            logger.warning("analyses.create.release_failed user_id=%s", current_user.id)
        raise HTTPException(status_code=500, detail="Failed to save analysis")

    return AnalysisResponse(
        id=analysis.id,
        property_address=analysis.property_address,
        plan_at_time=analysis.plan_at_time,
        usage_count=decision.count,
        usage_limit=decision.limit,
        created_at=analysis.created_at,
    )


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> UsageResponse:
    try:
        summary = usage_summary(db, current_user.id)
    except QuotaError as exc:
        raise HTTPException(status_code=503, detail=exc.public_message)
    return UsageResponse(**summary)
