"""Job execution tracking and monitoring for scheduled jobs."""

import logging
from datetime import UTC, datetime
from typing import Any

from engage.core.config import Constants
from engage.core.redis_client import redis_client


logger = logging.getLogger(__name__)


class JobTracker:
    """Track job execution history and health status.

    State lives in Redis when it is configured and in process memory otherwise.
    """

    def __init__(self) -> None:
        """Initialize job tracker."""
        # Fallback in-memory storage when Redis is unavailable
        self._memory_storage: dict[str, dict[str, Any]] = {}

    @staticmethod
    def _key(job_name: str, field: str) -> str:
        return f"scheduler:job:{job_name}:{field}"

    async def record_job_start(self, job_name: str) -> None:
        """Record job execution start.

        Args:
            job_name: Name of the scheduled job
        """
        now = datetime.now(UTC)

        if redis_client.is_available:
            await redis_client.set(
                self._key(job_name, "current_run"),
                now.isoformat(),
                ttl_seconds=Constants.TRACKER_RUN_TTL_SECONDS,
            )
        else:
            self._memory_storage.setdefault(job_name, {})["current_run"] = now.isoformat()

    async def record_job_success(self, job_name: str) -> None:
        """Record successful job execution.

        Args:
            job_name: Name of the scheduled job
        """
        now = datetime.now(UTC)
        ttl = Constants.TRACKER_KEY_TTL_SECONDS

        if redis_client.is_available:
            await redis_client.set(self._key(job_name, "last_success"), now.isoformat(), ttl_seconds=ttl)
            await redis_client.set(self._key(job_name, "consecutive_failures"), "0", ttl_seconds=ttl)
            await redis_client.increment(self._key(job_name, "success_count"))
            await redis_client.expire(self._key(job_name, "success_count"), ttl)
            await redis_client.delete(self._key(job_name, "current_run"))
        else:
            job_data = self._memory_storage.setdefault(job_name, {})
            job_data["last_success"] = now.isoformat()
            job_data["consecutive_failures"] = 0
            job_data["success_count"] = job_data.get("success_count", 0) + 1
            job_data.pop("current_run", None)

    async def record_job_failure(self, job_name: str, error: str) -> int | None:
        """Record failed job execution.

        Args:
            job_name: Name of the scheduled job
            error: Error message

        Returns:
            The number of consecutive failures including this one
        """
        now = datetime.now(UTC)
        ttl = Constants.TRACKER_KEY_TTL_SECONDS
        truncated = error[: Constants.TRACKER_ERROR_MAX_LENGTH]

        if redis_client.is_available:
            await redis_client.set(self._key(job_name, "last_failure"), now.isoformat(), ttl_seconds=ttl)
            await redis_client.set(self._key(job_name, "last_error"), truncated, ttl_seconds=ttl)

            consecutive_key = self._key(job_name, "consecutive_failures")
            consecutive_failures = await redis_client.increment(consecutive_key)
            await redis_client.expire(consecutive_key, ttl)

            await redis_client.increment(self._key(job_name, "failure_count"))
            await redis_client.expire(self._key(job_name, "failure_count"), ttl)
            await redis_client.delete(self._key(job_name, "current_run"))
            return consecutive_failures

        job_data = self._memory_storage.setdefault(job_name, {})
        job_data["last_failure"] = now.isoformat()
        job_data["last_error"] = truncated
        consecutive_failures = job_data.get("consecutive_failures", 0) + 1
        job_data["consecutive_failures"] = consecutive_failures
        job_data["failure_count"] = job_data.get("failure_count", 0) + 1
        job_data.pop("current_run", None)

        logger.warning(
            "Recorded job failure",
            extra={"job_name": job_name, "consecutive_failures": consecutive_failures},
        )
        return consecutive_failures

    async def get_job_status(self, job_name: str) -> dict[str, Any]:
        """Get job execution status.

        Args:
            job_name: Name of the scheduled job

        Returns:
            Dict with job status information
        """
        if redis_client.is_available:
            fields = [
                "last_success",
                "last_failure",
                "last_error",
                "consecutive_failures",
                "success_count",
                "failure_count",
                "current_run",
            ]
            values = {field: await redis_client.get(self._key(job_name, field)) for field in fields}
            return {
                "job_name": job_name,
                "last_success": values["last_success"],
                "last_failure": values["last_failure"],
                "last_error": values["last_error"],
                "consecutive_failures": int(values["consecutive_failures"] or 0),
                "success_count": int(values["success_count"] or 0),
                "failure_count": int(values["failure_count"] or 0),
                "currently_running": values["current_run"] is not None,
                "current_run_started": values["current_run"],
            }

        job_data = self._memory_storage.get(job_name, {})
        return {
            "job_name": job_name,
            "last_success": job_data.get("last_success"),
            "last_failure": job_data.get("last_failure"),
            "last_error": job_data.get("last_error"),
            "consecutive_failures": job_data.get("consecutive_failures", 0),
            "success_count": job_data.get("success_count", 0),
            "failure_count": job_data.get("failure_count", 0),
            "currently_running": "current_run" in job_data,
            "current_run_started": job_data.get("current_run"),
        }

    def reset(self) -> None:
        """Forget in-memory job history."""
        self._memory_storage.clear()


# Global job tracker instance
job_tracker = JobTracker()
