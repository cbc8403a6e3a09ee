"""Immo Harvester — Immowelt Provider.

Immowelt renders its result list client-side, so it is read through the
scripted browser. Cards are extracted with the field extraction engine;
further pages are reached by clicking the "zu seite N" control and
waiting until the pager reports page N as current.
"""

from __future__ import annotations

import re
from typing import Any, Optional
from urllib.parse import urljoin

from immo_harvester.database.models import Listing
from immo_harvester.providers.base import Provider, ProviderMeta
from immo_harvester.scraper.browser import BrowserSession, PlaywrightError
from immo_harvester.scraper.fields import compile_fields, extract_items
from immo_harvester.scraper.normalize import build_hash, clean_text, extract_number, price_per_sqm
from immo_harvester.utils.logger import get_logger

logger = get_logger(__name__)

CARD_CONTAINER = 'div[data-testid^="classified-card-mfe-"]'

CARD_FIELDS = compile_fields({
    "id": 'a[data-testid="card-mfe-covering-link-testid"]@href',
    "price": 'div[data-testid="cardmfe-price-testid"] | removeNewline | trim',
    "size": 'div[data-testid="cardmfe-keyfacts-testid"] | removeNewline | trim',
    "title": 'a[data-testid="card-mfe-covering-link-testid"]@title',
    "link": 'a[data-testid="card-mfe-covering-link-testid"]@href',
    "description": 'div[data-testid="cardmfe-description-text-test-id"] > div:nth-of-type(2) | removeNewline | trim',
    "address": 'div[data-testid="cardmfe-description-box-address"] | removeNewline | trim',
    "image": 'div[data-testid="cardmfe-picture-box-opacity-layer-test-id"] img@src',
})

PAGE_BUTTON = 'button[aria-label="zu seite {page}"]'
CURRENT_PAGE_IS = """(pageNumber) => {
    const active = document.querySelector('button[aria-current="page"]');
    return !!active && active.textContent.trim() === String(pageNumber);
}"""

NO_TITLE = "No title available"

_EXPOSE_ID_RE = re.compile(r"/expose/([A-Za-z0-9-]+)")


def parse_price(raw: Optional[str]) -> tuple[Optional[str], Optional[float]]:
    """Split "Kaufpreis 279.000 € 3.822 €/m²" into display text and number."""
    if not raw:
        return raw, None
    numeric = extract_number(raw.split("€", 1)[0])
    return raw.replace("Kaufpreis ", ""), numeric


def parse_key_facts(raw: Optional[str]) -> tuple[Optional[float], Optional[float]]:
    """Parse "3,5 Zimmer·73 m²·3. Geschoss" into (rooms, size)."""
    rooms = size = None
    if not raw:
        return rooms, size
    for part in (p.strip() for p in raw.split("·")):
        if "Zimmer" in part:
            rooms = extract_number(part.replace("Zimmer", ""))
        elif "m²" in part:
            size = extract_number(part.replace("m²", ""))
    if size is None and rooms is None:
        size = extract_number(raw.replace("Wohnfläche ", ""))
    return rooms, size


def listing_id_from_link(link: Optional[str]) -> Optional[str]:
    if not link:
        return None
    match = _EXPOSE_ID_RE.search(link)
    return match.group(1) if match else None


class ImmoweltProvider(Provider):
    """Immowelt via the scripted browser with click-driven pagination."""

    meta = ProviderMeta(
        id="immowelt",
        name="Immowelt",
        base_url="https://www.immowelt.de/",
    )
    sort_by_date_param = "order=DateDesc"
    identity_fields = ("id", "price")
    requires_id = True

    async def _scrape_pages(self, session: BrowserSession, url: str, listings: list[dict[str, Any]]) -> None:
        """Collect cards page by page into ``listings``; stops at the page cap."""
        result = await session.goto(url, wait_for_selector=CARD_CONTAINER)
        if result.content is None:
            logger.warning("Immowelt: no content for first page of %s", url)
            return
        self._collect(result.content, 1, listings)

        max_pages = self.context.config.browser.max_pages
        for page_number in range(2, max_pages + 1):
            button = PAGE_BUTTON.format(page=page_number)
            if not await session.exists(button):
                logger.debug("Immowelt: no button for page %d, stopping", page_number)
                break
            if not await session.click_and_wait_for(button, CURRENT_PAGE_IS, page_number):
                logger.warning("Immowelt: could not switch to page %d, stopping", page_number)
                break
            await session.settle()
            await session.wait_for_selector(CARD_CONTAINER)
            content = await session.content()
            if content is None:
                break
            self._collect(content, page_number, listings)
        else:
            logger.debug("Immowelt: reached page cap of %d", max_pages)

    def _collect(self, html: str, page_number: int, listings: list[dict[str, Any]]) -> None:
        cards = extract_items(html, CARD_CONTAINER, CARD_FIELDS)
        logger.debug("Immowelt: %d listings on page %d", len(cards), page_number)
        listings.extend(cards)

    async def fetch_listings(self, url: str) -> list[dict[str, Any]]:
        """Scrape all result pages in one browser session.

        Whatever was captured before a browser failure is kept.
        """
        listings: list[dict[str, Any]] = []
        try:
            async with self.context.browser.session() as session:
                await self._scrape_pages(session, url, listings)
        except PlaywrightError as e:
            logger.error("Immowelt: browser failure for %s: %s", url, e)
        return listings

    def normalize(self, raw: dict[str, Any]) -> Listing:
        price, numeric_price = parse_price(raw.get("price"))
        numeric_rooms, numeric_size = parse_key_facts(raw.get("size"))
        size = raw["size"].replace("Wohnfläche ", "") if raw.get("size") else None

        title = raw.get("title") or NO_TITLE
        link = urljoin(self.meta.base_url, raw["link"]) if raw.get("link") else None
        listing_id = listing_id_from_link(raw.get("id") or link) or build_hash(title, price)

        return Listing(
            id=listing_id,
            title=title,
            link=link,
            price=price,
            size=size,
            description=clean_text(raw.get("description")),
            address_full=clean_text(raw.get("address")),
            image_url=raw.get("image"),
            numeric_price=numeric_price,
            numeric_size=numeric_size,
            numeric_rooms=numeric_rooms,
            price_per_sqm=price_per_sqm(numeric_price, numeric_size),
        )
