"""
Automation API Routes

Manual trigger, status, approval preview and recovery actions for the review automation.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from autoreply.models import ApprovalMode, ReviewStatus
from autoreply.schemas import (
    AutomationResult,
    AutomationStatus,
    ProcessRequest,
    RecoveryRequest,
)
from autoreply.services.auto_approval import approval_stats, preview_auto_approval
from autoreply.services.automation_service import (
    AutomationOrchestrator,
    BusinessNotFoundError,
    run_business_automation,
)
from autoreply.services.error_recovery import ErrorRecoveryService
from autoreply.services.store import ReviewStore, get_review_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/automation", tags=["automation"])

RECOVERY_ACTIONS = ("retry_failed", "clear_errors")


def get_orchestrator(store: ReviewStore = Depends(get_review_store)) -> AutomationOrchestrator:
    return AutomationOrchestrator(store)


def get_recovery(orchestrator: AutomationOrchestrator = Depends(get_orchestrator)) -> ErrorRecoveryService:
    return orchestrator.recovery


StoreDep = Depends(get_review_store)
OrchestratorDep = Depends(get_orchestrator)
RecoveryDep = Depends(get_recovery)


@router.post("/process", response_model=AutomationResult)
async def process_business(request: ProcessRequest, orchestrator: AutomationOrchestrator = OrchestratorDep):
    """Run the automation pipeline for one business now."""
    try:
        return await run_business_automation(
            request.business_id,
            request.user_id,
            request.slot_id,
            request.trigger_type,
            orchestrator=orchestrator,
        )
    except BusinessNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/status", response_model=AutomationStatus)
async def automation_status(
    business_id: str = Query(...),
    limit: int = Query(default=20, ge=1, le=200),
    store: ReviewStore = StoreDep,
    recovery: ErrorRecoveryService = RecoveryDep,
):
    """Health, recent activities and current settings of one business."""
    settings = await store.get_settings(business_id)
    if settings is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Business not found")
    return AutomationStatus(
        business_id=business_id,
        health=await recovery.get_automation_health(business_id),
        recent_activities=await store.list_activities(business_id, limit=limit),
        settings=settings,
    )


@router.get("/approval", response_model=dict)
async def approval_preview(
    business_id: str = Query(...),
    mode: ApprovalMode | None = Query(default=None),
    store: ReviewStore = StoreDep,
):
    """Approval counts for the business and what `mode` (default: the current one) would do to pending replies."""
    settings = await store.get_settings(business_id)
    if settings is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Business not found")
    reviews = await store.fetch_reviews(business_id)
    pending = [r for r in reviews if r.status == ReviewStatus.pending and r.reply_text]
    return {
        "business_id": business_id,
        "stats": approval_stats(reviews),
        "preview": preview_auto_approval(pending, mode or settings.approval_mode),
    }


@router.patch("/recovery", response_model=dict)
async def recovery_action(
    request: RecoveryRequest,
    store: ReviewStore = StoreDep,
    recovery: ErrorRecoveryService = RecoveryDep,
):
    """retry_failed: re-attempt failed generations/publications; clear_errors: empty the error history."""
    if request.action not in RECOVERY_ACTIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown action '{request.action}', expected one of {list(RECOVERY_ACTIONS)}",
        )
    if await store.get_settings(request.business_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Business not found")

    if request.action == "retry_failed":
        result = await recovery.retry_failed_automation(request.business_id)
        return {"action": request.action, **result.model_dump()}

    cleared = await recovery.clear_errors(request.business_id)
    logger.info(f"[automation] business={request.business_id} errors cleared via API")
    return {"action": request.action, "cleared": cleared}
