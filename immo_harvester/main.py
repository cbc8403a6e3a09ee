"""Immo Harvester — Main Entry Point.

Ties the components together: config, database, retrievers, providers,
the acquisition pipeline and the active-status reconciler. Scheduling is
external; each invocation performs one run and exits.

Usage:
    python -m immo_harvester.main run [--job JOB_ID]
    python -m immo_harvester.main reconcile
    python -m immo_harvester.main jobs
    python scripts/run.py run
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
import time
from pathlib import Path
from typing import Optional, Sequence

from immo_harvester.config import AppConfig, load_config
from immo_harvester.database import queries
from immo_harvester.database.db import Database
from immo_harvester.database.models import Job
from immo_harvester.errors import ConfigurationError
from immo_harvester.notifier.dispatcher import LoggingDispatcher, NotificationDispatcher
from immo_harvester.providers import RetrievalContext, build_providers
from immo_harvester.scraper.browser import BrowserRetriever
from immo_harvester.scraper.client import HttpRetriever
from immo_harvester.scraper.pipeline import AcquisitionPipeline, JobRunResult
from immo_harvester.scraper.reconciler import ActiveStatusReconciler, ReconcileResult
from immo_harvester.utils.logger import get_logger, set_console_level

logger = get_logger(__name__)

# ── Exit Codes ────────────────────────────────────────────
EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_UNKNOWN_JOB = 2
EXIT_PROVIDER_FAILURES = 3


class HarvesterApp:
    """Application container for one harvesting or reconciling run.

    Attributes:
        config: Full application configuration.
        db: Active database instance.
    """

    def __init__(
        self,
        settings_path: Optional[Path] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> None:
        self.settings_path = settings_path
        self.config: Optional[AppConfig] = None
        self.db: Optional[Database] = None
        self._dispatcher = dispatcher or LoggingDispatcher()
        self._http: Optional[HttpRetriever] = None
        self._pipeline: Optional[AcquisitionPipeline] = None
        self._reconciler: Optional[ActiveStatusReconciler] = None
        self._running = False

    async def start(self) -> None:
        """Load config, open the database and build the providers."""
        self._running = True

        logger.info("═══ Loading configuration ═══")
        self.config = load_config(self.settings_path)
        set_console_level(self.config.log_level)

        logger.info("═══ Initializing database ═══")
        self.db = Database(self.config.database_path)
        await self.db.initialize()

        logger.info("═══ Initializing providers ═══")
        self._http = HttpRetriever(self.config.http)
        context = RetrievalContext(
            http=self._http,
            browser=BrowserRetriever(self.config.browser),
            config=self.config,
        )
        providers = build_providers(context)
        logger.info("Providers: %s", ", ".join(providers))

        self._pipeline = AcquisitionPipeline(self.config, self.db, providers, self._dispatcher)
        self._reconciler = ActiveStatusReconciler(
            self.db, providers, concurrency=self.config.pipeline.reconcile_concurrency,
        )

    def request_stop(self) -> None:
        """Stop before the next job; the current one finishes."""
        self._running = False

    @property
    def stop_requested(self) -> bool:
        return not self._running

    async def run_jobs(self, job_id: Optional[str] = None) -> list[JobRunResult]:
        """Run one job by id, or every enabled job.

        Raises:
            LookupError: If ``job_id`` does not exist.
        """
        if job_id is not None:
            job = await queries.get_job(self.db, job_id)
            if job is None:
                raise LookupError(f"No job with id '{job_id}'")
            return [await self._pipeline.run_job(job)]
        return await self._pipeline.run_enabled_jobs(should_stop=lambda: self.stop_requested)

    async def list_jobs(self) -> list[Job]:
        """Log every stored job with its enabled providers."""
        jobs = await queries.get_jobs(self.db)
        for job in jobs:
            logger.info(
                "%s | %s | owner=%s | %s | providers: %s",
                job.id, job.name, job.user_id, "enabled" if job.enabled else "disabled",
                ", ".join(p.id for p in job.enabled_providers) or "-",
            )
        logger.info("%d job(s) stored", len(jobs))
        return jobs

    async def reconcile(self) -> ReconcileResult:
        return await self._reconciler.run()

    async def shutdown(self) -> None:
        """Close the HTTP client and the database."""
        logger.info("═══ Shutting down ═══")
        self._running = False
        if self._http is not None:
            await self._http.close()
        if self.db is not None:
            await self.db.close()
        logger.info("Shutdown complete")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Harvest real-estate listings and track whether they are still online",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to settings.yaml (defaults to config/settings.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run enabled jobs once")
    run_parser.add_argument(
        "--job",
        dest="job_id",
        default=None,
        help="Run only this job, even if it is not scheduled",
    )
    subparsers.add_parser("reconcile", help="Re-check stored listings and deactivate removed ones")
    subparsers.add_parser("jobs", help="List stored jobs and their providers")

    return parser.parse_args(argv)


async def _execute(app: HarvesterApp, args: argparse.Namespace) -> int:
    start_time = time.monotonic()
    try:
        await app.start()
        if args.command == "reconcile":
            await app.reconcile()
            return EXIT_OK
        if args.command == "jobs":
            await app.list_jobs()
            return EXIT_OK

        try:
            results = await app.run_jobs(args.job_id)
        except LookupError as e:
            logger.error("%s", e)
            return EXIT_UNKNOWN_JOB

        failed = sum(len(r.failed_providers) for r in results)
        new = sum(len(r.new_listings) for r in results)
        logger.info(
            "Run complete — %d job(s) | %d new listing(s) | %d provider failure(s) | %.1fs",
            len(results), new, failed, time.monotonic() - start_time,
        )
        return EXIT_PROVIDER_FAILURES if failed else EXIT_OK
    except (ConfigurationError, ValueError, FileNotFoundError) as e:
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG_ERROR
    finally:
        await app.shutdown()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Application entry point."""
    args = parse_args(argv)
    app = HarvesterApp(settings_path=args.config)

    def _signal_handler(sig, frame):
        logger.info("Signal %s received, stopping after the current step...", sig)
        app.request_stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        return asyncio.run(_execute(app, args))
    except KeyboardInterrupt:
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
