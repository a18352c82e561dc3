"""Service for scheduling plugin fetches.

This module wraps APScheduler's ``AsyncIOScheduler`` with one cron job per
enabled plugin. Jobs run on the service event loop and call the plugin
runtime's guarded ``fetch_one``.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from topix.server.exceptions import FetchInProgressError, TopixError
from topix.server.plugins.reconcile import ReloadPlan
from topix.server.plugins.types import PluginRuntimeConfig

logger = logging.getLogger(__name__)

_DOW_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun"]


def plugin_job_id(plugin_id: str) -> str:
    return f"plugin_{plugin_id}"


def _crontab_day_of_week(field: str) -> str:
    """Translate numeric crontab weekdays (0 or 7 = Sunday) to names.

    APScheduler numbers weekdays from Monday, so numbers are converted to
    names. Ranges are expanded to explicit lists because Sunday sorts last
    in APScheduler and first in crontab.
    """
    parts = []
    for part in field.split(","):
        span, _, step = part.partition("/")
        if span == "*":
            parts.append(part)
            continue
        start, _, end = span.partition("-")
        if not start.isdigit() or (end and not end.isdigit()):
            parts.append(part)
            continue
        low = int(start)
        high = int(end) if end else (7 if step else low)
        if low > 7 or high > 7:
            raise ValueError(f"Day of week out of range: {part}")
        days = range(low, high + 1, int(step) if step else 1)
        for name in (_DOW_NAMES[d] for d in days):
            if name not in parts:
                parts.append(name)
    return ",".join(parts)


def parse_cron(expression: str) -> CronTrigger:
    """Build a cron trigger from a crontab expression.

    Accepts the standard 5 fields (minute hour day month weekday) or 6
    fields with leading seconds.

    Args:
        expression: Cron expression

    Returns:
        CronTrigger for the expression

    Raises:
        ValueError: If the expression is malformed
    """
    if not isinstance(expression, str):
        raise ValueError(f"Cron expression must be a string, got {type(expression).__name__}")
    fields = expression.split()
    if len(fields) == 5:
        second = "0"
        minute, hour, day, month, day_of_week = fields
    elif len(fields) == 6:
        second, minute, hour, day, month, day_of_week = fields
    else:
        raise ValueError(f"Wrong number of fields in cron expression {expression!r}: got {len(fields)}, expected 5 or 6")

    return CronTrigger(
        second=second,
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=_crontab_day_of_week(day_of_week),
    )


def is_valid_cron(expression: str) -> bool:
    try:
        parse_cron(expression)
        return True
    except ValueError:
        return False


class SchedulerService:
    """Service for managing plugin fetch jobs.

    Per-plugin state is ``unscheduled`` (no job), ``scheduled`` (job
    installed) or ``running`` (a fetch is in flight).

    Attributes:
        scheduler: APScheduler AsyncIOScheduler instance
        runtime: Plugin runtime whose ``fetch_one`` the jobs call
    """

    def __init__(self, runtime: Any, misfire_grace_time: int = 60):
        """Initialize scheduler service.

        Args:
            runtime: Plugin runtime (``fetch_one``, ``registry``, ``is_fetching``)
            misfire_grace_time: Seconds a late job may still run
        """
        self.runtime = runtime
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._job_defaults = {
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,
            "misfire_grace_time": misfire_grace_time,
        }
        self._inflight: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self, configs: Mapping[str, PluginRuntimeConfig]) -> int:
        """Start the scheduler and install one job per enabled plugin.

        Must be called from the event loop that will run the jobs. Enabled
        configurations with no loaded plugin are warned about and skipped.

        Args:
            configs: Applied configurations keyed by plugin id

        Returns:
            Number of jobs installed
        """
        if self.is_running:
            logger.warning("Scheduler already running")
            return len(self.scheduler.get_jobs())

        self.scheduler = AsyncIOScheduler(job_defaults=self._job_defaults)
        self.scheduler.start()
        logger.info("Scheduler started successfully")

        scheduled = 0
        for plugin_id, config in configs.items():
            if not config.enabled:
                continue
            if plugin_id not in self.runtime.registry:
                logger.warning(f"Plugin {plugin_id} is enabled but not loaded, not scheduling")
                continue
            if self.reschedule_plugin(plugin_id, config.schedule):
                scheduled += 1
        logger.info(f"Scheduled {scheduled} plugins")
        return scheduled

    def stop(self) -> None:
        """Cancel all jobs and shut the scheduler down.

        In-flight fetches are not awaited; they finish on their own.
        """
        if not self.is_running:
            return
        try:
            self.scheduler.remove_all_jobs()
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler shutdown successfully")
        except Exception as e:
            logger.error(f"Error during scheduler shutdown: {e}")
        finally:
            self.scheduler = None

    def reschedule_plugin(self, plugin_id: str, expression: str) -> bool:
        """Install or replace the job of a plugin.

        The expression is validated first; an invalid expression leaves the
        previous job (if any) in place. Replacement is a single
        ``replace_existing`` add, so no fire is lost or duplicated.

        Args:
            plugin_id: Plugin identifier
            expression: Cron expression

        Returns:
            True if the job was installed
        """
        try:
            trigger = parse_cron(expression)
        except ValueError as e:
            logger.warning(f"Invalid schedule {expression!r} for plugin {plugin_id}, keeping previous job: {e}")
            return False

        if not self.is_running:
            logger.warning(f"Scheduler not running, cannot schedule plugin {plugin_id}")
            return False

        self.scheduler.add_job(
            self._run_plugin,
            trigger=trigger,
            args=[plugin_id],
            id=plugin_job_id(plugin_id),
            name=f"Plugin: {plugin_id}",
            replace_existing=True,
        )
        logger.info(f"Scheduled plugin {plugin_id} with cron {expression!r}")
        return True

    def unschedule_plugin(self, plugin_id: str) -> bool:
        """Remove the job of a plugin. Idempotent.

        Returns:
            True if a job was removed
        """
        if not self.is_running or self.scheduler.get_job(plugin_job_id(plugin_id)) is None:
            return False
        self.scheduler.remove_job(plugin_job_id(plugin_id))
        logger.info(f"Unscheduled plugin {plugin_id}")
        return True

    def apply_plan(self, plan: ReloadPlan) -> None:
        """Apply the scheduling actions of a reload plan."""
        for plugin_id in plan.unschedule:
            self.unschedule_plugin(plugin_id)
        for plugin_id, expression in plan.schedule.items():
            self.reschedule_plugin(plugin_id, expression)

    def is_scheduled(self, plugin_id: str) -> bool:
        return self.is_running and self.scheduler.get_job(plugin_job_id(plugin_id)) is not None

    def get_plugin_state(self, plugin_id: str) -> str:
        if not self.is_scheduled(plugin_id):
            return "unscheduled"
        if self.runtime.is_fetching(plugin_id):
            return "running"
        return "scheduled"

    def get_next_run(self, plugin_id: str) -> Optional[datetime]:
        if not self.is_running:
            return None
        job = self.scheduler.get_job(plugin_job_id(plugin_id))
        return job.next_run_time if job else None

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status information.

        Returns:
            Dictionary with scheduler status details
        """
        if not self.is_running:
            return {"running": False, "jobs_count": 0, "jobs": []}

        jobs = self.scheduler.get_jobs()
        return {
            "running": True,
            "jobs_count": len(jobs),
            "jobs": [
                {
                    "id": job.id,
                    "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                }
                for job in jobs
            ],
        }

    async def _run_plugin(self, plugin_id: str) -> None:
        # Shielded so that shutting the scheduler down does not cancel an in-flight fetch
        task = asyncio.ensure_future(self._guarded_fetch(plugin_id))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        await asyncio.shield(task)

    async def _guarded_fetch(self, plugin_id: str) -> None:
        try:
            headlines = await self.runtime.fetch_one(plugin_id)
            logger.info(f"Scheduled fetch of {plugin_id} stored {len(headlines)} headlines")
        except FetchInProgressError:
            logger.info(f"Skipped scheduled fetch of {plugin_id}: previous fetch still running")
        except TopixError as e:
            logger.error(f"Scheduled fetch of {plugin_id} failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected error in scheduled fetch of {plugin_id}: {e}", exc_info=True)
