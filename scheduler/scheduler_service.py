"""
Scheduler service for periodic aggregate reconciliation.

This module provides:
- Daily (or interval) scheduling with APScheduler
- A single reconciliation job that never overlaps with itself
- A run-once mode for cron-style deployments
"""

import asyncio
import signal
from datetime import datetime
from typing import Dict

import structlog
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MAX_INSTANCES
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from catalog.database import MongoDBManager
from catalog.ratings import AggregateMaintainer
from scheduler.models import ReconciliationResult, SchedulerConfig
from scheduler.reconciler import AggregateReconciler

logger = structlog.get_logger(__name__)

JOB_ID = "aggregate_reconciliation"


class SchedulerService:
    """Runs aggregate reconciliation on a schedule."""

    def __init__(self, config: SchedulerConfig, db_manager: MongoDBManager):
        """
        Initialize scheduler service.

        Args:
            config: Scheduler configuration
            db_manager: Database manager instance
        """
        self.config = config
        self.db_manager = db_manager
        self.scheduler = AsyncIOScheduler(timezone=config.timezone)
        self.reconciler = AggregateReconciler(AggregateMaintainer(db_manager), config)
        self.logger = logger.bind(component="scheduler_service")
        self._stopped = asyncio.Event()

        self._setup_scheduler_listeners()

    def _setup_scheduler_listeners(self) -> None:
        """Setup scheduler event listeners."""
        def job_executed_listener(event):
            retval = event.retval
            self.logger.info(
                "Job executed",
                job_id=event.job_id,
                success=retval.success if retval else None,
                corrected=retval.total_corrected if retval else 0
            )

        def job_error_listener(event):
            self.logger.error(
                "Job execution failed",
                job_id=event.job_id,
                error=str(event.exception)
            )

        def job_skipped_listener(event):
            self.logger.warning("Previous run still in progress, skipping", job_id=event.job_id)

        self.scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)
        self.scheduler.add_listener(job_skipped_listener, EVENT_JOB_MAX_INSTANCES)

    def _setup_signal_handlers(self) -> None:
        """Stop gracefully on SIGINT and SIGTERM."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self._stopped.set)

    def add_jobs(self) -> None:
        """Register the reconciliation job with a cron or interval trigger."""
        if self.config.interval_minutes:
            trigger = IntervalTrigger(minutes=self.config.interval_minutes, timezone=self.config.timezone)
        else:
            trigger = CronTrigger(
                hour=self.config.schedule_hour,
                minute=self.config.schedule_minute,
                timezone=self.config.timezone
            )

        self.scheduler.add_job(
            func=self.reconciliation_job,
            trigger=trigger,
            id=JOB_ID,
            name="Aggregate Reconciliation",
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self.logger.info("Added reconciliation job", trigger=str(trigger))

    async def start(self, run_once: bool = False) -> None:
        """
        Connect to the database and run until stopped.

        Args:
            run_once: Reconcile immediately and return instead of scheduling
        """
        self.logger.info("Starting scheduler service", run_once=run_once)
        await self.db_manager.connect()

        try:
            if run_once:
                result = await self.reconciliation_job()
                self.logger.info("Run once mode completed", success=result.success)
                return

            if not self.config.enabled:
                self.logger.warning("Reconciliation is disabled; nothing to schedule")
                return

            self.add_jobs()
            self.scheduler.start()
            self._setup_signal_handlers()
            self.logger.info(
                "Scheduler service started",
                timezone=self.config.timezone,
                schedule_hour=self.config.schedule_hour,
                schedule_minute=self.config.schedule_minute,
                interval_minutes=self.config.interval_minutes
            )
            await self._stopped.wait()
        finally:
            self.stop()
            await self.db_manager.disconnect()

    def stop(self) -> None:
        """Stop the scheduler service."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self._stopped.set()
        self.logger.info("Scheduler service stopped")

    async def reconciliation_job(self) -> ReconciliationResult:
        """Recompute every aggregate from source."""
        self.logger.info("Starting reconciliation job")
        return await self.reconciler.run()

    def get_scheduler_status(self) -> Dict:
        """Get current scheduler status."""
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run_time": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger)
            })

        return {
            "running": self.scheduler.running,
            "timezone": self.config.timezone,
            "jobs": jobs,
            "job_count": len(jobs),
            "checked_at": datetime.utcnow().isoformat()
        }
