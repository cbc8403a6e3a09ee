"""Immo Harvester — Acquisition Pipeline.

Runs one job: for every enabled provider configuration it fetches raw
items, normalizes and filters them, computes identity hashes, drops
hashes already stored for (job, provider), persists the rest with
insert-or-ignore and hands the actually inserted listings to the
notification dispatcher.

Providers of a job run concurrently and fail independently: an exception
in one provider is recorded in its result and never aborts the others.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from immo_harvester.config import AppConfig
from immo_harvester.database import queries
from immo_harvester.database.db import Database
from immo_harvester.database.models import Job, Listing, ProviderConfig
from immo_harvester.notifier.dispatcher import NotificationDispatcher
from immo_harvester.providers.base import Provider, ProviderSettings
from immo_harvester.scraper.normalize import build_hash
from immo_harvester.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ProviderRunResult:
    """Outcome of one provider within a job run."""

    provider_id: str
    fetched: int = 0
    normalized: int = 0
    passed_filter: int = 0
    new_listings: list[Listing] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class JobRunResult:
    """Per-provider outcomes of one job run."""

    job_id: str
    providers: list[ProviderRunResult] = field(default_factory=list)
    skipped: bool = False
    duration_seconds: float = 0.0

    @property
    def new_listings(self) -> list[Listing]:
        return [listing for result in self.providers for listing in result.new_listings]

    @property
    def failed_providers(self) -> list[str]:
        return [result.provider_id for result in self.providers if not result.ok]


class AcquisitionPipeline:
    """Job-level acquisition orchestrator.

    Attributes:
        config: Full application configuration.
        db: Active database instance.
        providers: Provider instances keyed by provider id.
        dispatcher: Receiver of newly inserted listings, if any.
    """

    def __init__(
        self,
        config: AppConfig,
        db: Database,
        providers: Mapping[str, Provider],
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> None:
        self.config = config
        self.db = db
        self.providers = dict(providers)
        self.dispatcher = dispatcher

    async def run_enabled_jobs(
        self, should_stop: Optional[Callable[[], bool]] = None,
    ) -> list[JobRunResult]:
        """Run every enabled job, one after another.

        Args:
            should_stop: Checked before each job; a true result ends the run.
        """
        jobs = await queries.get_enabled_jobs(self.db)
        logger.info("Running %d enabled job(s)", len(jobs))
        results = []
        for job in jobs:
            if should_stop is not None and should_stop():
                logger.info("Stop requested, %d job(s) left unrun", len(jobs) - len(results))
                break
            results.append(await self.run_job(job))
        return results

    async def run_job(self, job: Job) -> JobRunResult:
        """Run all enabled providers of a job concurrently.

        Returns:
            JobRunResult with one entry per enabled provider configuration.
        """
        if not job.enabled:
            logger.info("Job '%s' is disabled, skipping", job.id)
            return JobRunResult(job_id=job.id, skipped=True)

        start_time = time.monotonic()
        provider_configs = job.enabled_providers
        logger.info(
            "═══ Job '%s' starting (%d provider(s)) ═══",
            job.name or job.id, len(provider_configs),
        )

        outcomes = await asyncio.gather(
            *(self._run_provider(job, pc) for pc in provider_configs)
        )
        result = JobRunResult(
            job_id=job.id,
            providers=list(outcomes),
            duration_seconds=round(time.monotonic() - start_time, 1),
        )

        logger.info("═══ Job '%s' complete ═══", job.name or job.id)
        for outcome in result.providers:
            if outcome.ok:
                logger.info(
                    "  %s: fetched %d | normalized %d | passed %d | new %d",
                    outcome.provider_id, outcome.fetched, outcome.normalized,
                    outcome.passed_filter, len(outcome.new_listings),
                )
            else:
                logger.warning("  %s: failed (%s)", outcome.provider_id, outcome.error)
        logger.info(
            "  Total new: %d | Failed providers: %d | Time: %.1fs",
            len(result.new_listings), len(result.failed_providers), result.duration_seconds,
        )
        return result

    async def _run_provider(self, job: Job, provider_config: ProviderConfig) -> ProviderRunResult:
        result = ProviderRunResult(provider_id=provider_config.id)
        provider = self.providers.get(provider_config.id)
        if provider is None:
            result.error = f"unknown provider '{provider_config.id}'"
            logger.error("Job '%s': %s", job.id, result.error)
            return result

        try:
            settings = provider.configure(provider_config, job.blacklist)
            raw_items = await provider.fetch_listings(settings.url)
            result.fetched = len(raw_items)

            candidates = self._prepare(provider, settings, raw_items, result)
            known = await queries.get_known_listing_hashes(self.db, job.id, provider.id)
            unseen = [listing for listing in candidates if listing.hash not in known]

            result.new_listings = await queries.store_listings(self.db, job.id, provider.id, unseen)
        except Exception as e:
            logger.exception("Job '%s': provider %s failed", job.id, provider_config.id)
            result.error = str(e) or type(e).__name__
            return result

        if result.new_listings and self.dispatcher is not None:
            try:
                await self.dispatcher.dispatch(job, provider.id, result.new_listings)
            except Exception as e:
                logger.error(
                    "Job '%s': notification for %s failed: %s", job.id, provider.id, e,
                )
        return result

    def _prepare(
        self,
        provider: Provider,
        settings: ProviderSettings,
        raw_items: list[dict[str, Any]],
        result: ProviderRunResult,
    ) -> list[Listing]:
        """Normalize, filter, hash and de-duplicate in fetch order."""
        normalized: list[Listing] = []
        for raw in raw_items:
            try:
                normalized.append(provider.normalize(raw))
            except Exception as e:
                logger.warning("%s: dropping item that failed to normalize: %s", provider.id, e)
        result.normalized = len(normalized)

        passed: list[Listing] = []
        for listing in normalized:
            try:
                if provider.filter(listing, settings):
                    passed.append(listing)
            except Exception as e:
                logger.warning("%s: dropping item that failed to filter: %s", provider.id, e)
        result.passed_filter = len(passed)

        seen: set[str] = set()
        unique: list[Listing] = []
        for listing in passed:
            listing.hash = build_hash(*provider.identity_parts(listing))
            if listing.hash is None:
                logger.debug("%s: dropping listing without identity", provider.id)
                continue
            if listing.hash in seen:
                continue
            seen.add(listing.hash)
            unique.append(listing)
        return unique
