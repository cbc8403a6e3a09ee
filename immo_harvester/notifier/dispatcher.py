"""Immo Harvester — Notification Dispatcher.

The seam between acquisition and delivery. The pipeline hands over the
listings that were actually inserted for a job; concrete dispatchers own
formatting, channels and their own failure handling. The default
dispatcher only writes a summary to the log.
"""

from __future__ import annotations

from typing import Sequence

from immo_harvester.database.models import Job, Listing
from immo_harvester.scraper.normalize import format_eur
from immo_harvester.utils.logger import get_logger

logger = get_logger(__name__)


def format_listing_line(listing: Listing) -> str:
    """One-line summary: title, price, size, price per m² and link."""
    parts = [listing.title or "?"]
    if listing.numeric_price is not None:
        parts.append(format_eur(listing.numeric_price))
    elif listing.price:
        parts.append(listing.price)
    if listing.numeric_size is not None:
        parts.append(f"{listing.numeric_size:g} m²")
    if listing.price_per_sqm is not None:
        parts.append(f"{format_eur(listing.price_per_sqm)}/m²")
    if listing.link:
        parts.append(listing.link)
    return " | ".join(parts)


class NotificationDispatcher:
    """Receives new listings per job and provider.

    Subclasses override dispatch(). Exceptions raised here are caught and
    logged by the pipeline; they never undo storage.
    """

    async def dispatch(self, job: Job, provider_id: str, listings: Sequence[Listing]) -> None:
        raise NotImplementedError


class LoggingDispatcher(NotificationDispatcher):
    """Writes new listings to the log. Used when no delivery is configured."""

    def __init__(self, max_lines: int = 10) -> None:
        self.max_lines = max_lines

    async def dispatch(self, job: Job, provider_id: str, listings: Sequence[Listing]) -> None:
        if not listings:
            return
        logger.info(
            "📬 %d new listing(s) for job '%s' from %s",
            len(listings), job.name or job.id, provider_id,
        )
        for listing in listings[:self.max_lines]:
            logger.info("  • %s", format_listing_line(listing))
        if len(listings) > self.max_lines:
            logger.info("  … and %d more", len(listings) - self.max_lines)
