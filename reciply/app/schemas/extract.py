from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class ExtractRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)
    targetLanguage: Literal["original", "en"] = "original"
    telegramChatId: Optional[int] = None


class ExtractResponse(BaseModel):
    jobId: Optional[str] = None
    status: Optional[str] = None
    existingRecipeId: Optional[str] = None
    message: str


class JobStatusResponse(BaseModel):
    id: str
    status: Literal["pending", "fetching_transcript", "analyzing", "completed", "failed"]
    progress: int = Field(..., ge=0, le=100)
    statusMessage: Optional[str] = None
    recipeId: Optional[str] = None
    error: Optional[str] = None
    platform: Optional[str] = None
    targetLanguage: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class ProcessJobRequest(BaseModel):
    jobId: str = Field(..., min_length=1)


class ProcessJobResponse(BaseModel):
    success: bool
    status: str
    recipeId: Optional[str] = None
    error: Optional[str] = None


class UsageResponse(BaseModel):
    used: int
    limit: int
    remaining: int
    planTier: Literal["free", "pro"]
    currentPeriodEnd: Optional[datetime] = None


class ResetUsageRequest(BaseModel):
    userId: str = Field(..., min_length=1)
    currentPeriodEnd: Optional[datetime] = None
