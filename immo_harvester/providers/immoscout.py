"""Immo Harvester — ImmoScout24 Provider.

Uses the (undocumented) mobile API instead of the bot-protected website:

  POST /search/list?{params}&pagenumber=N   → result list page (JSON)
  GET  /expose/{id}                         → full exposé (JSON)

The mobile API rejects requests without the app's User-Agent. Users still
paste ordinary web search URLs; they are translated to the mobile form.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Optional
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit

from immo_harvester.database.models import Listing
from immo_harvester.providers.base import Provider, ProviderMeta, append_query_param
from immo_harvester.scraper.normalize import (
    extract_number,
    format_decimal,
    format_eur,
    null_or_empty,
    parse_float,
    parse_int,
    price_per_sqm,
)
from immo_harvester.utils.logger import get_logger

logger = get_logger(__name__)

MOBILE_API_URL = "https://api.mobile.immobilienscout24.de"
DEFAULT_APP_USER_AGENT = "ImmoScout_27.3_26.0_._"
DEFAULT_MAX_PAGES = 50
SEARCH_BODY = {"supportedResultListTypes": [], "userData": {}}

NO_TITLE = "NO TITLE FOUND"

# Web URL path segment → mobile real estate type
REAL_ESTATE_TYPES = {
    "wohnung-mieten": "apartmentrent",
    "wohnung-kaufen": "apartmentbuy",
    "haus-mieten": "houserent",
    "haus-kaufen": "housebuy",
}

# Web query parameters the mobile API does not understand
_DROPPED_WEB_PARAMS = {"enteredFrom"}

_EXPOSE_ID_RE = re.compile(r"/expose/(\d+)")

# Exposé section titles and labels
_SECTION_STRUCTURE = "Bausubstanz & Energieausweis"
_SECTION_MAIN = "Hauptkriterien"
_SECTION_COSTS = "Kosten"


def convert_web_to_mobile(url: str) -> str:
    """Translate a web search URL into a mobile API search URL.

    ``https://www.immobilienscout24.de/Suche/de/berlin/berlin/wohnung-mieten?price=-1000.0``
    becomes
    ``https://api.mobile.immobilienscout24.de/search/list?searchType=region
    &realestatetype=apartmentrent&geocodes=%2Fde%2Fberlin%2Fberlin&price=-1000.0``.
    URLs already pointing at the mobile API are returned unchanged.

    Raises:
        ValueError: If the URL is not a recognizable search URL.
    """
    parts = urlsplit(url)
    if parts.netloc.startswith("api.mobile."):
        return url

    segments = [unquote(s) for s in parts.path.split("/") if s]
    if len(segments) < 2 or segments[0].lower() != "suche":
        raise ValueError(f"Not an ImmoScout search URL: {url}")

    type_segment = segments[-1].lower()
    real_estate_type = REAL_ESTATE_TYPES.get(type_segment)
    if real_estate_type is None:
        raise ValueError(f"Unsupported ImmoScout real estate type '{type_segment}' in {url}")

    geo_segments = segments[1:-1]
    params: list[tuple[str, str]] = []
    if geo_segments == ["radius"]:
        params.append(("searchType", "radius"))
    else:
        params.append(("searchType", "region"))
    params.append(("realestatetype", real_estate_type))
    if geo_segments and geo_segments != ["radius"]:
        params.append(("geocodes", "/" + "/".join(geo_segments)))

    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key not in _DROPPED_WEB_PARAMS:
            params.append((key, value))

    return f"{MOBILE_API_URL}/search/list?{urlencode(params)}"


def convert_listing_to_mobile(link: str) -> str:
    """Map a web exposé link to the mobile exposé endpoint."""
    match = _EXPOSE_ID_RE.search(link)
    if match is None:
        return link
    return f"{MOBILE_API_URL}/expose/{match.group(1)}"


def _find_section(expose: dict[str, Any], section_type: str) -> dict[str, Any]:
    for section in expose.get("sections") or []:
        if section.get("type") == section_type:
            return section
    return {}


def _find_attribute(expose: dict[str, Any], title: str, label: str) -> Optional[str]:
    """Text of a labelled attribute inside an ATTRIBUTE_LIST section."""
    for section in expose.get("sections") or []:
        if section.get("type") != "ATTRIBUTE_LIST" or section.get("title") != title:
            continue
        for attribute in section.get("attributes") or []:
            if attribute.get("label") == label:
                return attribute.get("text")
    return None


def _first_present(*values: Any) -> Any:
    for value in values:
        if not null_or_empty(value):
            return value
    return None


class ImmoscoutProvider(Provider):
    """ImmoScout24 via the mobile JSON API."""

    meta = ProviderMeta(
        id="immoscout",
        name="Immoscout",
        base_url="https://www.immobilienscout24.de/",
    )
    sort_by_date_param = "sorting=-firstactivation"
    identity_fields = ("id", "price")

    @property
    def app_user_agent(self) -> str:
        return str(self.options.get("app_user_agent") or DEFAULT_APP_USER_AGENT)

    @property
    def probe_headers(self) -> dict[str, str]:  # type: ignore[override]
        return {"User-Agent": self.app_user_agent}

    def prepare_url(self, url: str) -> str:
        return convert_web_to_mobile(url)

    def probe_url(self, link: str) -> str:
        return convert_listing_to_mobile(link)

    # ── Retrieval ─────────────────────────────────────────

    async def _fetch_page(self, url: str, page_number: int) -> Optional[dict[str, Any]]:
        page_url = append_query_param(url, f"pagenumber={page_number}")
        logger.debug("Fetching ImmoScout page %d...", page_number)
        data = await self.context.http.fetch_json(
            page_url,
            method="POST",
            headers={
                "User-Agent": self.app_user_agent,
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            json_body=SEARCH_BODY,
        )
        if not isinstance(data, dict):
            logger.error("ImmoScout page %d returned no usable data", page_number)
            return None
        return data

    async def _fetch_expose(self, semaphore: asyncio.Semaphore, item: dict[str, Any]) -> dict[str, Any]:
        expose: Any = None
        async with semaphore:
            expose = await self.context.http.fetch_json(
                f"{MOBILE_API_URL}/expose/{item.get('id')}",
                headers={"User-Agent": self.app_user_agent, "Accept": "application/json"},
            )
        if not isinstance(expose, dict):
            logger.warning("Could not load exposé for ImmoScout listing %s", item.get("id"))
            expose = {}
        return {"item": item, "expose": expose}

    async def fetch_listings(self, url: str) -> list[dict[str, Any]]:
        """Fetch every result page, then the exposé of each listing.

        The first page reports the page count; the rest are fetched
        concurrently and concatenated in page order.
        """
        first_page = await self._fetch_page(url, 1)
        if first_page is None:
            return []

        result_items = list(first_page.get("resultListItems") or [])
        max_pages = int(self.options.get("max_pages") or DEFAULT_MAX_PAGES)
        total_pages = min(int(first_page.get("numberOfPages") or 1), max_pages)

        if total_pages > 1:
            pages = await asyncio.gather(
                *(self._fetch_page(url, n) for n in range(2, total_pages + 1))
            )
            for page in pages:
                if page is not None:
                    result_items.extend(page.get("resultListItems") or [])
        logger.debug(
            "ImmoScout: %d raw result items from %d page(s)", len(result_items), total_pages,
        )

        exposes = [
            entry["item"] for entry in result_items
            if entry.get("type") == "EXPOSE_RESULT" and isinstance(entry.get("item"), dict)
        ]
        semaphore = asyncio.Semaphore(self.context.config.pipeline.detail_concurrency)
        return list(await asyncio.gather(*(self._fetch_expose(semaphore, item) for item in exposes)))

    # ── Normalization ─────────────────────────────────────

    def normalize(self, raw: dict[str, Any]) -> Listing:
        item: dict[str, Any] = raw["item"]
        expose: dict[str, Any] = raw.get("expose") or {}
        ad_params: dict[str, Any] = expose.get("adTargetingParameters") or {}
        header: dict[str, Any] = expose.get("header") or {}
        address: dict[str, Any] = item.get("address") or {}

        attributes = item.get("attributes") or []
        price_value = (attributes[0] or {}).get("value") if len(attributes) > 0 else None
        size_value = (attributes[1] or {}).get("value") if len(attributes) > 1 else None

        numeric_price = extract_number(price_value)
        numeric_size = extract_number(size_value)

        if null_or_empty(price_value):
            price = "Auf Anfrage"
        elif isinstance(price_value, (int, float)):
            price = format_eur(price_value)
        else:
            price = str(price_value)

        if null_or_empty(size_value):
            size = "k.A."
        elif isinstance(size_value, (int, float)):
            size = f"{format_decimal(size_value)} m²"
        else:
            size = str(size_value) if "m²" in str(size_value) else f"{size_value} m²"

        title = item.get("title")
        title = NO_TITLE if null_or_empty(title) else str(title).replace("NEU", "", 1).strip()

        listing_id = str(item["id"])
        street = _first_present(ad_params.get("obj_streetPlain"), address.get("street"))
        finance = _find_section(expose, "FINANCE_COSTS")
        price_info = _find_section(expose, "PRICE_INFO")
        # The labelled text is German-formatted, the targeting value is machine-formatted.
        hausgeld_text = _find_attribute(expose, _SECTION_COSTS, "Hausgeld:")
        if null_or_empty(hausgeld_text):
            service_charge = parse_float(ad_params.get("obj_serviceCharge"))
        else:
            service_charge = extract_number(hausgeld_text)

        return Listing(
            id=listing_id,
            title=title,
            link=f"{self.meta.base_url}expose/{listing_id}",
            price=price,
            size=size,
            address_full=address.get("line"),
            image_url=(item.get("titlePicture") or {}).get("preview"),
            numeric_price=numeric_price,
            numeric_size=numeric_size,
            price_per_sqm=price_per_sqm(numeric_price, numeric_size),
            numeric_rooms=parse_float(ad_params.get("obj_noRooms")) or None,
            year_built=parse_int(ad_params.get("obj_yearConstructed")),
            last_refurbishment_year=parse_int(ad_params.get("obj_lastRefurbish")),
            condition=_first_present(
                _find_attribute(expose, _SECTION_STRUCTURE, "Objektzustand:"),
                ad_params.get("obj_condition"),
            ),
            interior_quality=_first_present(
                _find_attribute(expose, _SECTION_STRUCTURE, "Qualität der Ausstattung:"),
                ad_params.get("obj_interiorQual"),
            ),
            flat_type=_first_present(
                _find_attribute(expose, _SECTION_MAIN, "Wohnungstyp:"),
                ad_params.get("obj_typeOfFlat"),
            ),
            heating_type=_first_present(
                _find_attribute(expose, _SECTION_STRUCTURE, "Heizungsart:"),
                ad_params.get("obj_heatingType"),
            ),
            energy_source=_first_present(
                _find_attribute(expose, _SECTION_STRUCTURE, "Wesentliche Energieträger:"),
                ad_params.get("obj_firingTypes"),
            ),
            energy_class=_first_present(
                ad_params.get("obj_energyEfficiencyClass"),
                header.get("energyEfficiencyClass"),
            ),
            street=str(street).replace("_", " ") if street is not None else None,
            zip_code=_first_present(ad_params.get("obj_zipCode"), address.get("postcode")),
            city=_first_present(ad_params.get("obj_regio2"), address.get("city")),
            service_charge=service_charge,
            additional_purchase_costs=parse_float(
                (finance.get("additionalCosts") or {}).get("value")
            ),
            has_balcony=ad_params.get("obj_balcony") == "y",
            has_garden=ad_params.get("obj_garden") == "y",
            has_kitchen=ad_params.get("obj_hasKitchen") == "y",
            has_cellar=ad_params.get("obj_cellar") == "y",
            has_lift=ad_params.get("obj_lift") == "y",
            is_barrier_free=ad_params.get("obj_barrierFree") == "y",
            price_indicator_percent=parse_float(
                (price_info.get("priceBar") or {}).get("priceIndicatorPositionInPercent")
            ),
            published_text=_first_present(header.get("published"), item.get("published")),
            is_private=item.get("isPrivate"),
        )
