# reciply/app/routers/jobs.py
"""
Internal worker trigger: runs one pending job synchronously.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from reciply.app.container import Container
from reciply.app.deps import get_container, require_internal_token
from reciply.app.domain.errors import JobNotFoundError, JobNotPendingError
from reciply.app.domain.models import ExtractionStatus
from reciply.app.schemas.extract import ProcessJobRequest, ProcessJobResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(require_internal_token)])


@router.post("/process", response_model=ProcessJobResponse)
async def process_job(
    payload: ProcessJobRequest,
    container: Container = Depends(get_container),
):
    try:
        job = await container.extraction.run_job(payload.jobId)
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"error": "Job not found"})
    except JobNotPendingError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Job already processed", "status": exc.status},
        )

    logger.info("jobs.process job=%s status=%s", job.id, job.status.value)
    return ProcessJobResponse(
        success=job.status == ExtractionStatus.COMPLETED,
        status=job.status.value,
        recipeId=job.recipe_id,
        error=job.error,
    )
