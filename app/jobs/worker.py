"""
Background worker entrypoint.

Runs one registered job to completion and exits; an external scheduler
starts it once a day:

    event-scheduling-worker event_reminders
    WORKER_JOB=event_reminders python -m app.jobs.worker

The exit status is non-zero when the job reports failed deliveries or
events it could not expand, so the scheduler's own alerting picks them up.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from app.features.events.jobs.reminder_job import run_event_reminders
from app.infrastructure.observability.logging import get_logger, log_context, setup_logging

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[dict | None]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "event_reminders": run_event_reminders,
}

DEFAULT_JOB = "event_reminders"


def _resolve_job_name() -> str:
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", DEFAULT_JOB).strip().lower()


def _has_failures(result: dict | None) -> bool:
    if not result:
        return False
    failed = (result.get("totals") or {}).get("failed", 0)
    return bool(failed or result.get("expansion_failures"))


async def run_worker(job_name: str | None = None) -> dict | None:
    """Run the requested job and return its summary, if it produces one."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    with log_context(job=name):
        logger.info("Starting background job")
        result = await JOB_REGISTRY[name]()
        if isinstance(result, dict):
            logger.info(
                "Background job finished", **{k: v for k, v in result.items() if k != "results"}
            )
    return result


def main() -> None:
    setup_logging(log_level="INFO")
    result = asyncio.run(run_worker(_resolve_job_name()))
    if _has_failures(result):
        sys.exit(1)


if __name__ == "__main__":
    main()
