from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence

import pytest

from immo_harvester.database import queries
from immo_harvester.database.models import Job, Listing, ProviderConfig
from immo_harvester.notifier.dispatcher import LoggingDispatcher, NotificationDispatcher, format_listing_line
from immo_harvester.providers.base import Provider, ProviderMeta
from immo_harvester.scraper.pipeline import AcquisitionPipeline
from tests.conftest import make_context, open_db, seed_job

pytestmark = pytest.mark.usefixtures("registered_test_providers")


class FakeProvider(Provider):
    """Serves a fixed list of raw items, or raises."""

    meta = ProviderMeta(id="fake", name="Fake", base_url="https://fake.example/")
    sort_by_date_param = "sort=newest"
    identity_fields = ("id", "price")

    def __init__(self, context, raw_items=None, error: Optional[Exception] = None) -> None:
        super().__init__(context)
        self.raw_items = list(raw_items or [])
        self.error = error
        self.fetched_urls: list[str] = []

    async def fetch_listings(self, url: str) -> list[dict[str, Any]]:
        self.fetched_urls.append(url)
        if self.error is not None:
            raise self.error
        return list(self.raw_items)

    def normalize(self, raw: dict[str, Any]) -> Listing:
        if raw.get("broken"):
            raise KeyError("price")
        return Listing(
            id=raw.get("id"),
            title=raw.get("title", f"Wohnung {raw.get('id')}"),
            price=raw.get("price"),
            link=f"https://fake.example/expose/{raw.get('id')}",
        )


class OtherProvider(FakeProvider):
    meta = ProviderMeta(id="other", name="Other", base_url="https://other.example/")


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self, fail: bool = False) -> None:
        self.calls: list[tuple[str, str, list[str]]] = []
        self.fail = fail

    async def dispatch(self, job: Job, provider_id: str, listings: Sequence[Listing]) -> None:
        self.calls.append((job.id, provider_id, [listing.id for listing in listings]))
        if self.fail:
            raise RuntimeError("channel down")


RAW_ITEMS = [
    {"id": "1", "price": "100.000 €"},
    {"id": "2", "price": "200.000 €"},
    {"id": "1", "price": "100.000 €"},
    {"id": "3", "price": "300.000 €", "title": "Wohnungstausch gesucht"},
    {"broken": True},
    {"id": None, "price": None},
    {"id": "4", "price": "400.000 €"},
]


def test_run_job_filters_dedups_stores_and_dispatches(app_config, db_path) -> None:
    async def scenario():
        db = await open_db(db_path)
        try:
            job = await seed_job(db, blacklist=["tausch"])
            provider = FakeProvider(make_context(app_config), RAW_ITEMS)
            dispatcher = RecordingDispatcher()
            pipeline = AcquisitionPipeline(app_config, db, {"fake": provider}, dispatcher)

            first = await pipeline.run_job(job)
            second = await pipeline.run_job(job)
            return provider, dispatcher, first, second
        finally:
            await db.close()

    provider, dispatcher, first, second = asyncio.run(scenario())
    outcome = first.providers[0]
    assert outcome.ok
    assert (outcome.fetched, outcome.normalized, outcome.passed_filter) == (7, 6, 5)
    assert [listing.id for listing in outcome.new_listings] == ["1", "2", "4"]
    assert provider.fetched_urls[0] == "https://example.com/search?sort=newest"

    assert second.new_listings == []
    assert dispatcher.calls == [("job-1", "fake", ["1", "2", "4"])]


class PickyProvider(FakeProvider):
    def filter(self, listing: Listing, settings) -> bool:
        if listing.price is None:
            raise TypeError("price is required")
        return super().filter(listing, settings)


def test_filter_error_drops_only_that_item(app_config, db_path) -> None:
    async def scenario():
        db = await open_db(db_path)
        try:
            job = await seed_job(db)
            provider = PickyProvider(make_context(app_config), [
                {"id": "1", "price": "1 €"},
                {"id": "2"},
                {"id": "3", "price": "3 €"},
            ])
            pipeline = AcquisitionPipeline(app_config, db, {"fake": provider})
            return await pipeline.run_job(job)
        finally:
            await db.close()

    outcome = asyncio.run(scenario()).providers[0]
    assert outcome.ok
    assert (outcome.normalized, outcome.passed_filter) == (3, 2)
    assert [listing.id for listing in outcome.new_listings] == ["1", "3"]


def test_price_change_counts_as_new_listing(app_config, db_path) -> None:
    async def scenario():
        db = await open_db(db_path)
        try:
            job = await seed_job(db)
            provider = FakeProvider(make_context(app_config), [{"id": "1", "price": "100.000 €"}])
            pipeline = AcquisitionPipeline(app_config, db, {"fake": provider})
            await pipeline.run_job(job)
            provider.raw_items = [{"id": "1", "price": "95.000 €"}]
            return await pipeline.run_job(job)
        finally:
            await db.close()

    result = asyncio.run(scenario())
    assert [listing.price for listing in result.new_listings] == ["95.000 €"]


def test_provider_failure_is_isolated(app_config, db_path) -> None:
    async def scenario():
        db = await open_db(db_path)
        try:
            job = await seed_job(db, providers=[
                ProviderConfig(id="fake", url="https://fake.example/search"),
                ProviderConfig(id="other", url="https://other.example/search"),
            ])
            # Stored before its provider left the registry.
            job.providers.append(ProviderConfig(id="unregistered", url="https://nowhere.example/"))
            context = make_context(app_config)
            pipeline = AcquisitionPipeline(app_config, db, {
                "fake": FakeProvider(context, error=RuntimeError("blocked")),
                "other": OtherProvider(context, [{"id": "9", "price": "1 €"}]),
            })
            result = await pipeline.run_job(job)
            stored = await queries.query_listings(db, is_admin=True)
            return result, stored
        finally:
            await db.close()

    result, stored = asyncio.run(scenario())
    by_id = {outcome.provider_id: outcome for outcome in result.providers}
    assert [outcome.provider_id for outcome in result.providers] == ["fake", "other", "unregistered"]
    assert by_id["fake"].error == "blocked"
    assert "unregistered" in by_id["unregistered"].error
    assert [listing.id for listing in by_id["other"].new_listings] == ["9"]
    assert result.failed_providers == ["fake", "unregistered"]
    assert [row["provider"] for row in stored["result"]] == ["other"]


def test_dispatch_failure_does_not_undo_storage(app_config, db_path) -> None:
    async def scenario():
        db = await open_db(db_path)
        try:
            job = await seed_job(db)
            provider = FakeProvider(make_context(app_config), [{"id": "1", "price": "1 €"}])
            pipeline = AcquisitionPipeline(app_config, db, {"fake": provider}, RecordingDispatcher(fail=True))
            result = await pipeline.run_job(job)
            known = await queries.get_known_listing_hashes(db, "job-1", "fake")
            return result, known
        finally:
            await db.close()

    result, known = asyncio.run(scenario())
    assert result.providers[0].ok
    assert len(known) == 1


def test_disabled_jobs_and_providers_are_skipped(app_config, db_path) -> None:
    async def scenario():
        db = await open_db(db_path)
        try:
            enabled_job = await seed_job(db, "job-a", providers=[
                ProviderConfig(id="fake", url="https://fake.example/search"),
                ProviderConfig(id="other", url="https://other.example/search", enabled=False),
            ])
            disabled_job = await seed_job(db, "job-b", enabled=False)
            context = make_context(app_config)
            fake = FakeProvider(context, [{"id": "1", "price": "1 €"}])
            other = OtherProvider(context, [{"id": "2", "price": "2 €"}])
            pipeline = AcquisitionPipeline(app_config, db, {"fake": fake, "other": other})
            results = await pipeline.run_enabled_jobs()
            skipped = await pipeline.run_job(disabled_job)
            return enabled_job, results, skipped, other
        finally:
            await db.close()

    enabled_job, results, skipped, other = asyncio.run(scenario())
    assert [result.job_id for result in results] == [enabled_job.id]
    assert [outcome.provider_id for outcome in results[0].providers] == ["fake"]
    assert other.fetched_urls == []
    assert skipped.skipped and skipped.providers == []


def test_stop_request_ends_run_between_jobs(app_config, db_path) -> None:
    async def scenario():
        db = await open_db(db_path)
        try:
            await seed_job(db, "job-a")
            await seed_job(db, "job-b")
            provider = FakeProvider(make_context(app_config), [{"id": "1", "price": "1 €"}])
            pipeline = AcquisitionPipeline(app_config, db, {"fake": provider})
            calls = []

            def should_stop() -> bool:
                calls.append(1)
                return len(calls) > 1

            return await pipeline.run_enabled_jobs(should_stop)
        finally:
            await db.close()

    results = asyncio.run(scenario())
    assert [result.job_id for result in results] == ["job-a"]


def test_concurrent_runs_of_one_job_store_each_listing_once(app_config, db_path) -> None:
    async def scenario():
        db = await open_db(db_path)
        try:
            job = await seed_job(db)
            provider = FakeProvider(make_context(app_config), [{"id": "1", "price": "1 €"}, {"id": "2", "price": "2 €"}])
            pipeline = AcquisitionPipeline(app_config, db, {"fake": provider})
            results = await asyncio.gather(pipeline.run_job(job), pipeline.run_job(job))
            stored = await queries.query_listings(db, is_admin=True)
            return results, stored
        finally:
            await db.close()

    results, stored = asyncio.run(scenario())
    assert stored["totalNumber"] == 2
    assert sum(len(result.new_listings) for result in results) == 2


def test_logging_dispatcher_and_listing_line() -> None:
    listing = Listing(
        id="1",
        title="Altbau",
        numeric_price=279000.0,
        numeric_size=73.0,
        price_per_sqm=3821.92,
        link="https://x/1",
    )
    assert format_listing_line(listing) == (
        "Altbau | 279.000,00 € | 73 m² | 3.821,92 €/m² | https://x/1"
    )
    assert format_listing_line(Listing(id="2", title="", price="VB")) == "? | VB"

    job = Job(id="job-1", user_id="user-1", name="Berlin")
    asyncio.run(LoggingDispatcher(max_lines=1).dispatch(job, "fake", [listing, listing]))
