"""Immo Harvester — Provider Contract.

Every source implements the same capability set:
  - configure():      per-job settings (search URL, blacklist, extra lists)
  - fetch_listings(): raw items, with source-specific pagination
  - normalize():      raw item → canonical Listing
  - filter():         blacklist and identity checks
  - active_tester():  ACTIVE / INACTIVE / UNKNOWN for one listing link

Providers hold no per-job state. Everything that differs between jobs
travels in the ProviderSettings value returned by configure(), so one
provider instance can serve concurrent job runs.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Iterable, Mapping, Optional
from urllib.parse import parse_qsl, urlsplit

from immo_harvester.database.models import Listing, ProviderConfig
from immo_harvester.scraper.normalize import is_one_of, null_or_empty
from immo_harvester.utils.logger import get_logger

if TYPE_CHECKING:
    from immo_harvester.config import AppConfig
    from immo_harvester.scraper.browser import BrowserRetriever
    from immo_harvester.scraper.client import HttpRetriever

logger = get_logger(__name__)


class ActiveStatus(enum.IntEnum):
    """Result of probing a stored listing's detail resource."""

    ACTIVE = 1
    INACTIVE = 0
    UNKNOWN = -1


@dataclass(frozen=True)
class ProviderMeta:
    id: str
    name: str
    base_url: str


@dataclass(frozen=True)
class ProviderSettings:
    """Per-job, per-provider configuration.

    Attributes:
        url: Search URL, already translated and sorted newest-first.
        blacklist: Substrings that reject a listing.
        extra_filters: Named additional reject lists (e.g. districts).
        case_sensitive: Whether blacklist matching respects case.
    """

    url: str
    blacklist: tuple[str, ...] = ()
    extra_filters: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    case_sensitive: bool = False

    def extra(self, name: str) -> tuple[str, ...]:
        return self.extra_filters.get(name, ())


@dataclass
class RetrievalContext:
    """Shared retrieval strategies and configuration handed to providers."""

    http: "HttpRetriever"
    browser: "BrowserRetriever"
    config: "AppConfig"


def append_query_param(url: str, param: Optional[str]) -> str:
    """Append ``key=value`` to a URL unless the key is already present."""
    if not param:
        return url
    key = param.split("=", 1)[0]
    existing = {k for k, _ in parse_qsl(urlsplit(url).query, keep_blank_values=True)}
    if key in existing:
        return url
    separator = "&" if urlsplit(url).query else ("" if url.endswith("?") else "?")
    return f"{url}{separator}{param}"


def status_to_active(status_code: int) -> ActiveStatus:
    """Map a probe's HTTP status to an ActiveStatus."""
    if 200 <= status_code < 300:
        return ActiveStatus.ACTIVE
    if status_code == 404:
        return ActiveStatus.INACTIVE
    return ActiveStatus.UNKNOWN


class Provider(ABC):
    """Base class for all listing sources.

    Subclasses set ``meta`` and implement fetch_listings() and normalize().
    """

    meta: ClassVar[ProviderMeta]
    sort_by_date_param: ClassVar[Optional[str]] = None
    identity_fields: ClassVar[tuple[str, ...]] = ("id",)
    requires_id: ClassVar[bool] = False
    probe_headers: ClassVar[Optional[dict[str, str]]] = None

    def __init__(self, context: RetrievalContext) -> None:
        self.context = context
        self.options: dict[str, Any] = context.config.provider_options(self.meta.id)

    @property
    def id(self) -> str:
        return self.meta.id

    # ── Configuration ─────────────────────────────────────

    def prepare_url(self, url: str) -> str:
        """Hook for sources whose user-facing URL differs from the fetched one."""
        return url

    def configure(
        self,
        source_config: ProviderConfig,
        blacklist: Iterable[str],
        extra_filter_lists: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> ProviderSettings:
        """Build the settings for one job run of this provider."""
        url = append_query_param(self.prepare_url(source_config.url), self.sort_by_date_param)
        extras = {
            name: tuple(values)
            for name, values in (extra_filter_lists or {}).items()
        }
        return ProviderSettings(
            url=url,
            blacklist=tuple(blacklist or ()),
            extra_filters=extras,
            case_sensitive=self.context.config.pipeline.blacklist_case_sensitive,
        )

    # ── Acquisition ───────────────────────────────────────

    @abstractmethod
    async def fetch_listings(self, url: str) -> list[dict[str, Any]]:
        """Retrieve all raw items for a search URL. Never raises on bad pages."""

    @abstractmethod
    def normalize(self, raw: dict[str, Any]) -> Listing:
        """Turn one raw item into a canonical Listing."""

    def filter(self, listing: Listing, settings: ProviderSettings) -> bool:
        """Reject blacklisted titles/descriptions and, if required, missing ids."""
        if self.requires_id and null_or_empty(listing.id):
            return False
        words = settings.blacklist
        if is_one_of(listing.title, words, settings.case_sensitive):
            return False
        if is_one_of(listing.description, words, settings.case_sensitive):
            return False
        return True

    def identity_parts(self, listing: Listing) -> tuple[Any, ...]:
        """Values that make up a listing's identity hash."""
        return tuple(getattr(listing, name) for name in self.identity_fields)

    # ── Reconciliation ────────────────────────────────────

    def probe_url(self, link: str) -> str:
        return link

    async def active_tester(self, link: str) -> ActiveStatus:
        """Probe a listing's detail resource."""
        result = await self.context.http.fetch(self.probe_url(link), headers=self.probe_headers)
        status = status_to_active(result.status_code)
        if status is ActiveStatus.UNKNOWN:
            logger.warning(
                "Unknown status %d for %s listing %s",
                result.status_code, self.meta.id, link,
            )
        return status

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.meta.id!r})"
