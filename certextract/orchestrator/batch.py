"""
Concurrent extraction of independent documents.

Documents are independent runs; concurrency is bounded with a semaphore so a
large batch does not flood the AI providers. Results keep input order.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Union

from ..schemas.tiers import ExtractionOutcome
from .orchestrator import ExtractionOptions, TierOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class DocumentJob:
    certificate_id: str
    content: bytes
    mime_type: str
    filename: Optional[str] = None
    certificate_type: Optional[str] = None


async def extract_many(
    orchestrator: TierOrchestrator,
    jobs: list[DocumentJob],
    max_concurrent: int = 3,
    options: Optional[ExtractionOptions] = None,
    return_exceptions: bool = False,
) -> list[Union[ExtractionOutcome, BaseException]]:
    """
    Extract several documents concurrently.

    Args:
        orchestrator: Shared orchestrator (circuits and settings are shared)
        jobs: Documents to extract
        max_concurrent: Maximum simultaneous extractions
        options: Options applied to every run
        return_exceptions: If True, return exceptions in place of results

    Returns:
        One ExtractionOutcome (or exception) per job, in input order
    """
    if not jobs:
        return []

    semaphore = asyncio.Semaphore(max(1, max_concurrent))
    completed = 0

    async def process_job(job: DocumentJob) -> ExtractionOutcome:
        nonlocal completed
        async with semaphore:
            outcome = await orchestrator.extract(
                job.certificate_id,
                job.content,
                job.mime_type,
                filename=job.filename,
                certificate_type=job.certificate_type,
                options=options,
            )
            completed += 1
            logger.info(
                f"Batch progress: {completed}/{len(jobs)} "
                f"({job.certificate_id} -> {outcome.final_tier.value})"
            )
            return outcome

    return await asyncio.gather(
        *(process_job(job) for job in jobs),
        return_exceptions=return_exceptions,
    )
