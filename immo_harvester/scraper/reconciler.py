"""Immo Harvester — Active-Status Reconciler.

Re-probes every stored listing that is not known to be inactive and
deactivates exactly those whose provider reports INACTIVE. ACTIVE and
UNKNOWN leave the flag alone, so a listing never comes back to life
and a flaky probe never takes one offline.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Mapping

from immo_harvester.database import queries
from immo_harvester.database.db import Database
from immo_harvester.providers.base import ActiveStatus, Provider
from immo_harvester.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ReconcileResult:
    checked: int = 0
    deactivated: int = 0
    unknown: int = 0
    skipped: int = 0


class ActiveStatusReconciler:
    """Probes stored listings and flips confirmed-gone ones to inactive."""

    def __init__(
        self,
        db: Database,
        providers: Mapping[str, Provider],
        concurrency: int = 5,
    ) -> None:
        self.db = db
        self.providers = dict(providers)
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _probe(self, provider: Provider, row: dict[str, Any]) -> ActiveStatus:
        async with self._semaphore:
            try:
                return await provider.active_tester(row["link"])
            except Exception as e:
                logger.warning("Probe failed for %s listing %s: %s", provider.id, row.get("link"), e)
                return ActiveStatus.UNKNOWN

    async def run(self) -> ReconcileResult:
        result = ReconcileResult()
        rows = await queries.get_active_or_unknown_listings(self.db)
        logger.info("Reconciling %d listing(s)", len(rows))

        to_probe: list[tuple[Provider, dict[str, Any]]] = []
        for row in rows:
            provider = self.providers.get(row.get("provider"))
            if provider is None or not row.get("link"):
                result.skipped += 1
                continue
            to_probe.append((provider, row))

        statuses = await asyncio.gather(*(self._probe(p, row) for p, row in to_probe))
        result.checked = len(statuses)

        gone = []
        for (_, row), status in zip(to_probe, statuses):
            if status is ActiveStatus.INACTIVE:
                gone.append(row["id"])
            elif status is ActiveStatus.UNKNOWN:
                result.unknown += 1

        result.deactivated = await queries.deactivate_listings(self.db, gone)
        logger.info(
            "Reconcile complete — checked %d | deactivated %d | unknown %d | skipped %d",
            result.checked, result.deactivated, result.unknown, result.skipped,
        )
        return result
