from __future__ import annotations


class ExtractionError(Exception):
    pass


class InvalidUrlError(ExtractionError):
    def __init__(self, reason: str = "Invalid URL"):
        super().__init__(reason)
        self.reason = reason


class QuotaExceededError(ExtractionError):
    def __init__(
        self,
        used: int,
        limit: int,
        plan_tier: str,
        message: str = "Extraction limit reached",
    ):
        super().__init__(message)
        self.used = used
        self.limit = limit
        self.plan_tier = plan_tier


class JobNotFoundError(ExtractionError):
    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobAccessDeniedError(ExtractionError):
    def __init__(self, job_id: str, user_id: str):
        super().__init__(f"User {user_id} does not own job {job_id}")
        self.job_id = job_id
        self.user_id = user_id


class JobNotPendingError(ExtractionError):
    def __init__(self, job_id: str, status: str):
        super().__init__(f"Job {job_id} already processed (status={status})")
        self.job_id = job_id
        self.status = status


class StageFailedError(ExtractionError):
    """A pipeline stage failed; ``user_message`` is safe to store on the job."""

    def __init__(self, stage: str, user_message: str):
        super().__init__(f"{stage} failed: {user_message}")
        self.stage = stage
        self.user_message = user_message


class JobRepositoryError(ExtractionError):
    def __init__(self, operation: str, reason: str):
        super().__init__(f"Repository error during {operation}: {reason}")
        self.operation = operation
        self.reason = reason


class PersistenceError(JobRepositoryError):
    pass


class WorkerConfigurationError(ExtractionError):
    def __init__(self, errors: list[str]):
        super().__init__(f"Worker configuration errors: {', '.join(errors)}")
        self.errors = errors
