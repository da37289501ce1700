"""Entry point for the UPD background worker.

Run with: python -m upd_loader.queue.worker
Or: arq upd_loader.queue.tasks.WorkerSettings
"""

import logging

from arq import run_worker

from upd_loader.queue.tasks import WorkerSettings
from upd_loader.shared.config import get_settings
from upd_loader.shared.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    setup_logging(settings)
    logger.info(
        f"Starting UPD worker (redis: {settings.redis_url}, max jobs: {settings.queue_max_jobs}, "
        f"job timeout: {settings.queue_job_timeout}s)"
    )
    run_worker(WorkerSettings.configure(settings))  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
