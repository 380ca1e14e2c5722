# workers/extractor/main.py
"""
Run pending extraction jobs by id, outside the API process.

    python -m workers.extractor.main <job_id> [<job_id> ...]

Each job goes through the same pending check and orchestrator as
``POST /jobs/process``; exit status is non-zero when any job did not complete.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass, field
from typing import Optional, Sequence

from reciply.app.domain.errors import (
    JobNotFoundError,
    JobNotPendingError,
    WorkerConfigurationError,
)
from reciply.app.domain.models import ExtractionStatus
from reciply.app.services.extraction_service import ExtractionService
from workers.extractor.config import WorkerConfig, get_config

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("extractor-worker")


@dataclass
class RunSummary:
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped


class ExtractorWorker:
    def __init__(self, config: WorkerConfig, extraction_service: ExtractionService):
        self.config = config
        self.extraction = extraction_service

    async def run(self, job_ids: Sequence[str]) -> RunSummary:
        summary = RunSummary()
        logger.info("worker.started id=%s jobs=%d", self.config.worker_id, len(job_ids))

        for job_id in job_ids:
            try:
                job = await self.extraction.run_job(job_id)
            except JobNotFoundError:
                logger.warning("worker.job_not_found job=%s", job_id)
                summary.skipped.append(job_id)
            except JobNotPendingError as exc:
                logger.warning("worker.job_not_pending job=%s status=%s", job_id, exc.status)
                summary.skipped.append(job_id)
            else:
                if job.status == ExtractionStatus.COMPLETED:
                    logger.info("worker.job_completed job=%s recipe=%s", job_id, job.recipe_id)
                    summary.completed.append(job_id)
                else:
                    logger.error("worker.job_failed job=%s error=%s", job_id, job.error)
                    summary.failed.append(job_id)

            if not summary.ok and not self.config.continue_on_error:
                logger.info("worker.stopping_early after=%s", job_id)
                break

        logger.info(
            "worker.finished completed=%d failed=%d skipped=%d",
            len(summary.completed), len(summary.failed), len(summary.skipped),
        )
        return summary


def ensure_valid_config(config: WorkerConfig) -> None:
    errors = config.validate()
    if errors:
        raise WorkerConfigurationError(errors)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run pending recipe extraction jobs.")
    parser.add_argument("job_ids", nargs="+", metavar="JOB_ID", help="extraction job id(s) to run")
    return parser.parse_args(argv)


def create_default_service(config: WorkerConfig) -> ExtractionService:
    from reciply.app.config import settings
    from reciply.app.container import build_container

    run_settings = settings.model_copy(update={
        "STORAGE_BACKEND": config.storage_backend,
        "SUPABASE_URL": config.supabase_url or settings.SUPABASE_URL,
        "SUPABASE_SERVICE_ROLE_KEY": config.supabase_key or settings.SUPABASE_SERVICE_ROLE_KEY,
        "GEMINI_API_KEY": config.gemini_api_key or settings.GEMINI_API_KEY,
    })
    return build_container(run_settings).extraction


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    config = get_config()

    try:
        ensure_valid_config(config)
    except WorkerConfigurationError as exc:
        logger.error("worker.invalid_config %s", exc)
        return 2

    worker = ExtractorWorker(config, create_default_service(config))
    summary = asyncio.run(worker.run(args.job_ids))
    return 0 if summary.ok else 1


if __name__ == "__main__":
    sys.exit(main())
