"""Immo Harvester — Kleinanzeigen Provider.

Server-rendered HTML fetched over plain HTTP. The result page only
yields links; each ad's detail page is fetched concurrently and carries
the richer field set (key/value detail list and feature check tags).
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import urljoin

from selectolax.parser import HTMLParser

from immo_harvester.database.models import Listing, ProviderConfig
from immo_harvester.providers.base import Provider, ProviderMeta, ProviderSettings
from immo_harvester.scraper.fields import compile_fields, extract
from immo_harvester.scraper.normalize import (
    extract_number,
    is_one_of,
    null_or_empty,
    parse_int,
    price_per_sqm,
)
from immo_harvester.utils.logger import get_logger

logger = get_logger(__name__)

RESULT_ITEMS = "#srchrslt-adtable .ad-listitem"
RESULT_LINK = compile_fields({"href": ".aditem-main .text-module-begin a@href"})

DETAIL_FIELDS = compile_fields({
    "ad_id": "#viewad-ad-id-box | collapse_whitespace | trim",
    "title": "#viewad-title | collapse_whitespace | trim",
    "price": "h2#viewad-price | collapse_whitespace | trim",
    "address_full": "#viewad-locality | collapse_whitespace | trim",
    "published_text": "#viewad-extra-info > div:first-child > span | trim",
})

DISTRICTS = "blacklisted_districts"

_AD_ID_RE = re.compile(r"\d+")

# Check tag text (lowercased) → Listing flag
FEATURE_FLAGS = {
    "balkon": "has_balcony",
    "garten": "has_garden",
    "einbauküche": "has_kitchen",
    "keller": "has_cellar",
    "aufzug": "has_lift",
    "stufenloser zugang": "is_barrier_free",
}


def parse_detail_page(html: str, url: str) -> dict[str, Any]:
    """Scrape one ad detail page into a raw item."""
    tree = HTMLParser(html)
    fields = extract(tree, DETAIL_FIELDS)

    ad_id = fields.pop("ad_id")
    if ad_id:
        match = _AD_ID_RE.search(ad_id)
        ad_id = match.group(0) if match else ad_id.replace("Anzeigennr.", "").strip()

    details: dict[str, str] = {}
    for row in tree.css("li.addetailslist--detail"):
        key = row.text(deep=False, strip=True).replace(":", "")
        value_node = row.css_first(".addetailslist--detail--value")
        value = value_node.text(strip=True) if value_node is not None else ""
        if key and value:
            details[key] = value

    features = [
        tag.text(strip=True).lower()
        for tag in tree.css("ul.checktaglist li.checktag")
    ]

    return {**fields, "id": ad_id, "link": url, "details": details, "features": features}


class KleinanzeigenProvider(Provider):
    """Kleinanzeigen via direct HTTP: result links, then detail pages."""

    meta = ProviderMeta(
        id="kleinanzeigen",
        name="Kleinanzeigen",
        base_url="https://www.kleinanzeigen.de/",
    )
    sort_by_date_param = None
    identity_fields = ("id",)
    requires_id = True

    def configure(
        self,
        source_config: ProviderConfig,
        blacklist: Iterable[str],
        extra_filter_lists: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> ProviderSettings:
        """Merge configured district blacklists into the job's extra lists."""
        extras = {name: list(values) for name, values in (extra_filter_lists or {}).items()}
        configured = self.options.get(DISTRICTS) or []
        extras[DISTRICTS] = [*extras.get(DISTRICTS, []), *configured]
        return super().configure(source_config, blacklist, extras)

    async def _fetch_detail(self, semaphore: asyncio.Semaphore, url: str) -> Optional[dict[str, Any]]:
        async with semaphore:
            result = await self.context.http.fetch(url)
        if result.content is None:
            logger.error("Failed to fetch Kleinanzeigen detail page %s (status %d)", url, result.status_code)
            return None
        return parse_detail_page(result.content, url)

    async def fetch_listings(self, url: str) -> list[dict[str, Any]]:
        logger.debug("Fetching Kleinanzeigen overview page: %s", url)
        result = await self.context.http.fetch(url)
        if result.content is None:
            logger.error("Failed to fetch Kleinanzeigen overview page (status %d)", result.status_code)
            return []

        tree = HTMLParser(result.content)
        links = []
        for item in tree.css(RESULT_ITEMS):
            href = extract(item, RESULT_LINK)["href"]
            if href:
                links.append(urljoin(self.meta.base_url, href))
        logger.debug("Kleinanzeigen: %d ad links on overview page", len(links))

        semaphore = asyncio.Semaphore(self.context.config.pipeline.detail_concurrency)
        details = await asyncio.gather(*(self._fetch_detail(semaphore, link) for link in links))
        return [d for d in details if d is not None and not null_or_empty(d.get("id"))]

    def normalize(self, raw: dict[str, Any]) -> Listing:
        details: dict[str, str] = raw.get("details") or {}
        features = set(raw.get("features") or [])
        price_text = raw.get("price")

        numeric_price = None
        if price_text and "vb" not in price_text.lower():
            numeric_price = extract_number(price_text)
        numeric_size = extract_number(details.get("Wohnfläche"))

        flags = {flag: tag in features for tag, flag in FEATURE_FLAGS.items()}
        return Listing(
            id=raw.get("id"),
            title=raw.get("title") or "",
            link=raw.get("link"),
            price=price_text,
            size=details.get("Wohnfläche"),
            address_full=raw.get("address_full"),
            numeric_price=numeric_price,
            numeric_size=numeric_size,
            price_per_sqm=price_per_sqm(numeric_price, numeric_size),
            numeric_rooms=extract_number(details.get("Zimmer")),
            year_built=parse_int(details.get("Baujahr")),
            flat_type=details.get("Wohnungstyp"),
            condition=details.get("Objektzustand"),
            service_charge=extract_number(details.get("Hausgeld")),
            published_text=raw.get("published_text"),
            **flags,
        )

    def filter(self, listing: Listing, settings: ProviderSettings) -> bool:
        if null_or_empty(listing.title) or null_or_empty(listing.id):
            return False
        if is_one_of(listing.title, settings.blacklist, settings.case_sensitive):
            return False
        districts = settings.extra(DISTRICTS)
        if districts and is_one_of(listing.address_full, districts, settings.case_sensitive):
            return False
        return True
