from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from immo_harvester.database import queries
from immo_harvester.database.models import Listing
from immo_harvester.providers.base import ActiveStatus, Provider, ProviderMeta
from immo_harvester.scraper.reconciler import ActiveStatusReconciler
from tests.conftest import make_context, make_listing, open_db, seed_job

pytestmark = pytest.mark.usefixtures("registered_test_providers")


class ProbeProvider(Provider):
    """Answers active-status probes over HTTP; acquisition is unused here."""

    meta = ProviderMeta(id="fake", name="Fake", base_url="https://fake.example/")

    async def fetch_listings(self, url: str) -> list[dict[str, Any]]:
        return []

    def normalize(self, raw: dict[str, Any]) -> Listing:
        return Listing(id=raw["id"])


class ExplodingProvider(ProbeProvider):
    async def active_tester(self, link: str) -> ActiveStatus:
        raise RuntimeError("probe crashed")


def _probe_handler(probed: list[str]):
    def handler(request: httpx.Request) -> httpx.Response:
        probed.append(request.url.path)
        if request.url.path.endswith("/gone"):
            return httpx.Response(404)
        if request.url.path.endswith("/flaky"):
            raise httpx.ConnectTimeout("timed out", request=request)
        if request.url.path.endswith("/blocked"):
            return httpx.Response(403)
        return httpx.Response(200, text="<html>still online</html>")
    return handler


def test_only_not_found_listings_are_deactivated(app_config, db_path) -> None:
    probed: list[str] = []
    names = ["gone", "here", "flaky", "blocked", "retired"]

    async def scenario():
        db = await open_db(db_path)
        context = make_context(app_config, _probe_handler(probed))
        try:
            await seed_job(db)
            stored = await queries.store_listings(db, "job-1", "fake", [
                make_listing(name, link=f"https://fake.example/expose/{name}") for name in names
            ])
            by_name = {listing.id: listing.storage_id for listing in stored}
            await queries.deactivate_listings(db, [by_name["retired"]])

            reconciler = ActiveStatusReconciler(db, {"fake": ProbeProvider(context)}, concurrency=2)
            result = await reconciler.run()
            remaining = await queries.get_active_or_unknown_listings(db)
            return result, {row["hash"] for row in remaining}
        finally:
            await context.http.close()
            await db.close()

    result, remaining = asyncio.run(scenario())
    assert (result.checked, result.deactivated, result.unknown, result.skipped) == (4, 1, 2, 0)
    assert remaining == {"hash-here", "hash-flaky", "hash-blocked"}
    assert "/expose/retired" not in probed


def test_listings_of_unregistered_providers_are_skipped(app_config, db_path) -> None:
    async def scenario():
        db = await open_db(db_path)
        context = make_context(app_config, _probe_handler([]))
        try:
            await seed_job(db)
            await queries.store_listings(db, "job-1", "fake", [
                make_listing("gone", link="https://fake.example/expose/gone"),
                make_listing("nolink"),
            ])
            await queries.store_listings(db, "job-1", "retired-source", [
                make_listing("orphan", link="https://retired.example/1"),
            ])
            reconciler = ActiveStatusReconciler(db, {"fake": ProbeProvider(context)})
            return await reconciler.run()
        finally:
            await context.http.close()
            await db.close()

    result = asyncio.run(scenario())
    assert (result.checked, result.deactivated, result.skipped) == (1, 1, 2)


def test_probe_exceptions_leave_listings_unchanged(app_config, db_path) -> None:
    async def scenario():
        db = await open_db(db_path)
        try:
            await seed_job(db)
            await queries.store_listings(db, "job-1", "fake", [
                make_listing("1", link="https://fake.example/expose/1"),
            ])
            reconciler = ActiveStatusReconciler(db, {"fake": ExplodingProvider(make_context(app_config))})
            result = await reconciler.run()
            remaining = await queries.get_active_or_unknown_listings(db)
            return result, remaining
        finally:
            await db.close()

    result, remaining = asyncio.run(scenario())
    assert (result.checked, result.deactivated, result.unknown) == (1, 0, 1)
    assert [row["hash"] for row in remaining] == ["hash-1"]
