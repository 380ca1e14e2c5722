# reciply/app/routers/extract.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from reciply.app.container import Container
from reciply.app.deps import CurrentUser, get_container, get_current_user
from reciply.app.domain.errors import (
    InvalidUrlError,
    JobAccessDeniedError,
    JobNotFoundError,
    JobRepositoryError,
    QuotaExceededError,
)
from reciply.app.domain.models import ExtractionJob, TargetLanguage
from reciply.app.schemas.extract import ExtractRequest, ExtractResponse, JobStatusResponse

log = logging.getLogger("extract")
router = APIRouter(prefix="/extract", tags=["extract"])


def job_to_response(job: ExtractionJob) -> JobStatusResponse:
    return JobStatusResponse(
        id=job.id,
        status=job.status.value,
        progress=job.progress,
        statusMessage=job.status_message,
        recipeId=job.recipe_id,
        error=job.error,
        platform=job.platform.value,
        targetLanguage=job.target_language.value,
        createdAt=job.created_at,
        updatedAt=job.updated_at,
    )


@router.post("", response_model=ExtractResponse, response_model_exclude_none=True)
async def start_extraction(
    payload: ExtractRequest,
    current_user: CurrentUser = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    try:
        result = await container.extraction.submit(
            user_id=current_user.id,
            url=payload.url,
            target_language=TargetLanguage(payload.targetLanguage),
            telegram_chat_id=payload.telegramChatId,
        )
    except QuotaExceededError as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": str(exc),
                "used": exc.used,
                "limit": exc.limit,
                "planTier": exc.plan_tier,
            },
        )
    except InvalidUrlError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"error": exc.reason})
    except JobRepositoryError as exc:
        log.error("extract.submit_failed user=%s error=%s", current_user.id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to start extraction"},
        )

    if result.existing_recipe_id:
        return ExtractResponse(existingRecipeId=result.existing_recipe_id, message="Recipe already exists")

    job = result.job
    message = "Extraction already in progress" if result.reused_active_job else "Extraction started"
    return ExtractResponse(jobId=job.id, status=job.status.value, message=message)


@router.get("/{job_id}", response_model=JobStatusResponse)
async def get_extraction_job(
    job_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    """Poll this until status is completed or failed."""
    try:
        job = await container.extraction.get_job_for_user(job_id, current_user.id)
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"error": "Job not found"})
    except JobAccessDeniedError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"error": "Unauthorized"})

    return job_to_response(job)
