"""
Pytest configuration and shared fixtures.

Async code is driven with asyncio.run() inside each test. Anything that
owns asyncio primitives (Database, HttpRetriever) is created inside the
coroutine so it lives on the test's own event loop.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import httpx
import pytest

from immo_harvester.config import AppConfig, build_config
from immo_harvester.database import queries
from immo_harvester.database.db import Database
from immo_harvester.database.models import Job, Listing, ProviderConfig
from immo_harvester.providers import PROVIDER_TYPES
from immo_harvester.providers.base import Provider, ProviderMeta, RetrievalContext
from immo_harvester.scraper.client import HttpRetriever


def make_settings(**overrides: Any) -> dict[str, Any]:
    """Settings mapping with test-friendly timings (no waits, no throttling)."""
    settings: dict[str, Any] = {
        "database": {"path": "unused.db"},
        "logging": {"level": "DEBUG"},
        "http": {
            "timeout_seconds": 5,
            "max_retries": 2,
            "max_concurrency": 4,
            "rate_limit_calls": 0,
            "backoff_seconds": 0,
        },
        "browser": {"settle_delay_ms": [0, 0], "max_pages": 3},
        "pipeline": {"detail_concurrency": 3, "reconcile_concurrency": 2},
        "providers": {
            "immoscout": {"app_user_agent": "ImmoScout_27.3_26.0_._", "max_pages": 10},
            "kleinanzeigen": {"blacklisted_districts": []},
        },
    }
    for section, values in overrides.items():
        if isinstance(values, dict) and isinstance(settings.get(section), dict):
            settings[section] = {**settings[section], **values}
        else:
            settings[section] = values
    return settings


@pytest.fixture
def app_config() -> AppConfig:
    return build_config(make_settings())


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "harvester.db")


class StubProvider(Provider):
    """Registry placeholder so jobs may reference the test provider ids."""

    meta = ProviderMeta(id="fake", name="Fake", base_url="https://fake.example/")

    async def fetch_listings(self, url: str) -> list[dict[str, Any]]:
        return []

    def normalize(self, raw: dict[str, Any]) -> Listing:
        return Listing(id=raw.get("id"))


@pytest.fixture
def registered_test_providers(monkeypatch) -> None:
    """Register the "fake" and "other" ids used by the job fixtures."""
    for provider_id in ("fake", "other"):
        monkeypatch.setitem(PROVIDER_TYPES, provider_id, StubProvider)


def make_context(
    config: AppConfig,
    handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
    browser: Any = None,
) -> RetrievalContext:
    """Retrieval context whose HTTP traffic goes to ``handler``."""
    transport = httpx.MockTransport(handler or (lambda request: httpx.Response(404)))
    return RetrievalContext(
        http=HttpRetriever(config.http, transport=transport),
        browser=browser,
        config=config,
    )


async def open_db(path: str) -> Database:
    db = Database(path)
    await db.initialize()
    return db


async def seed_job(
    db: Database,
    job_id: str = "job-1",
    user_id: str = "user-1",
    providers: Optional[list[ProviderConfig]] = None,
    **kwargs: Any,
) -> Job:
    """Create the owning user and a job."""
    await queries.upsert_user(db, user_id, user_id)
    job = Job(
        id=job_id,
        user_id=user_id,
        name=kwargs.pop("name", job_id),
        providers=providers or [ProviderConfig(id="fake", url="https://example.com/search")],
        **kwargs,
    )
    return await queries.upsert_job(db, job, acting_user_id=user_id)


def make_listing(listing_id: str, hash_value: Optional[str] = None, **kwargs: Any) -> Listing:
    listing = Listing(id=listing_id, title=kwargs.pop("title", f"Wohnung {listing_id}"), **kwargs)
    listing.hash = hash_value or f"hash-{listing_id}"
    return listing
