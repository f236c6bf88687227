"""Health check file shared by the one-shot job runs."""

import json
import logging
import time
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

HEALTH_DIR = Path("/tmp/health")
HEALTH_FILE_NAME = "lifecycle_jobs_health.json"


def update_health_check(
    job_name: str,
    last_run: datetime,
    status: str,
    processed: int,
    errors: int,
    health_dir: Path = HEALTH_DIR,
) -> Path:
    """
    Update health check file with job statistics.

    Args:
        job_name: Name of the job
        last_run: Timestamp of job completion
        status: Health status ('healthy' or 'unhealthy')
        processed: Number of items processed
        errors: Number of errors encountered
        health_dir: Directory holding the health file

    Returns:
        Path of the health file
    """
    health_dir.mkdir(parents=True, exist_ok=True)
    health_file = health_dir / HEALTH_FILE_NAME
    temp_file = health_dir / f"lifecycle_jobs_health.{int(time.time())}.tmp"

    # Load existing health data
    health_data = {}
    if health_file.exists():
        try:
            health_data = json.loads(health_file.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Discarding unreadable health file {health_file}: {e}")

    health_data[job_name] = {
        "last_run": last_run.isoformat(),
        "status": status,
        "processed": processed,
        "errors": errors,
    }

    all_healthy = all(
        job.get("status") == "healthy"
        for job in health_data.values()
        if isinstance(job, dict)
    )
    health_data["overall_status"] = "healthy" if all_healthy else "unhealthy"
    health_data["last_updated"] = datetime.now(UTC).isoformat()

    try:
        temp_file.write_text(json.dumps(health_data, indent=2))
        temp_file.rename(health_file)
        logger.debug(f"Health check file updated: {health_file}")
    except OSError as e:
        logger.error(f"Failed to write health check file: {e}", exc_info=True)

    return health_file
