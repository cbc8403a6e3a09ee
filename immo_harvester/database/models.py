"""Immo Harvester — Data Models.

Dataclasses for the saved searches (jobs) the pipeline reads and the
canonical listing shape it produces and stores.

Each stored entity provides:
  - to_db_dict(): converts to a dict suitable for SQLite insertion
  - from_db_row(row): classmethod to reconstruct from a DB row dict
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from typing import Any, Optional


def _load_json(value: Any, default: Any) -> Any:
    """Decode a JSON column, tolerating already-decoded or empty values."""
    if value is None or value == "":
        return default
    if isinstance(value, (list, dict)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


def _to_flag(value: Optional[bool]) -> Optional[int]:
    """Convert a tri-state boolean to an SQLite integer (NULL stays NULL)."""
    if value is None:
        return None
    return 1 if value else 0


def _from_flag(value: Any) -> Optional[bool]:
    if value is None:
        return None
    return bool(value)


# ═══════════════════════════════════════════════════════════
# Job Models
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ProviderConfig:
    """One provider entry of a job: which source and which search URL.

    Attributes:
        id: Provider id from the compiled-in registry (e.g. "immoscout").
        url: Source-specific search URL as entered by the user.
        enabled: Whether this provider is queried when the job runs.
    """

    id: str
    url: str
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "url": self.url, "enabled": self.enabled}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderConfig":
        return cls(
            id=str(data["id"]),
            url=str(data.get("url", "")),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass
class Job:
    """A saved search spanning one or more providers.

    Attributes:
        id: Job identifier.
        user_id: Owning user identifier.
        name: Display name.
        enabled: Whether the job takes part in scheduled runs.
        blacklist: Ordered substrings rejected in titles/descriptions.
        providers: Ordered provider configurations.
        notification_adapter: Opaque notification settings, owned by the
            notification collaborator.
        shared_with: User ids the job is shared with.
    """

    id: str
    user_id: str
    name: str = ""
    enabled: bool = True
    blacklist: list[str] = field(default_factory=list)
    providers: list[ProviderConfig] = field(default_factory=list)
    notification_adapter: list[dict[str, Any]] = field(default_factory=list)
    shared_with: list[str] = field(default_factory=list)

    @property
    def enabled_providers(self) -> list[ProviderConfig]:
        return [p for p in self.providers if p.enabled]

    def to_db_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "enabled": int(self.enabled),
            "name": self.name,
            "blacklist": json.dumps(self.blacklist, ensure_ascii=False),
            "provider": json.dumps([p.to_dict() for p in self.providers], ensure_ascii=False),
            "notification_adapter": json.dumps(self.notification_adapter, ensure_ascii=False),
            "shared_with_user": json.dumps(self.shared_with, ensure_ascii=False),
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> "Job":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            name=row.get("name") or "",
            enabled=bool(row.get("enabled", 1)),
            blacklist=list(_load_json(row.get("blacklist"), [])),
            providers=[
                ProviderConfig.from_dict(p)
                for p in _load_json(row.get("provider"), [])
                if isinstance(p, dict) and p.get("id")
            ],
            notification_adapter=list(_load_json(row.get("notification_adapter"), [])),
            shared_with=list(_load_json(row.get("shared_with_user"), [])),
        )


# ═══════════════════════════════════════════════════════════
# Listing Model
# ═══════════════════════════════════════════════════════════


_BOOL_COLUMNS = (
    "has_balcony", "has_garden", "has_kitchen", "has_cellar",
    "has_lift", "is_barrier_free", "is_private",
)


@dataclass
class Listing:
    """The canonical, storage-ready representation of one classified ad.

    Providers fill the source-derived fields in normalize(); the
    orchestrator assigns job_id, provider, hash, storage id and
    created_at right before persisting.

    Attributes:
        id: Source-native listing identifier.
        hash: Identity hash, unique per job.
        storage_id: Surrogate primary key of the stored row.
        is_active: True, False, or None when unknown.
        price, size, title, description, address_full, link, image_url:
            Raw display strings as shown by the source.
        numeric_price, numeric_size, numeric_rooms, price_per_sqm:
            Parsed numbers, None when absent or unparsable.
    """

    id: Optional[str]
    title: str = ""
    link: Optional[str] = None
    price: Optional[str] = None
    size: Optional[str] = None
    description: Optional[str] = None
    address_full: Optional[str] = None
    image_url: Optional[str] = None

    numeric_price: Optional[float] = None
    numeric_size: Optional[float] = None
    price_per_sqm: Optional[float] = None
    numeric_rooms: Optional[float] = None
    year_built: Optional[int] = None
    last_refurbishment_year: Optional[int] = None
    condition: Optional[str] = None
    interior_quality: Optional[str] = None
    flat_type: Optional[str] = None
    street: Optional[str] = None
    zip_code: Optional[str] = None
    city: Optional[str] = None
    energy_class: Optional[str] = None
    heating_type: Optional[str] = None
    energy_source: Optional[str] = None
    service_charge: Optional[float] = None
    additional_purchase_costs: Optional[float] = None
    has_balcony: bool = False
    has_garden: bool = False
    has_kitchen: bool = False
    has_cellar: bool = False
    has_lift: bool = False
    is_barrier_free: bool = False
    price_indicator_percent: Optional[float] = None
    published_text: Optional[str] = None
    is_private: Optional[bool] = None

    # Assigned by the pipeline / store
    provider: Optional[str] = None
    job_id: Optional[str] = None
    hash: Optional[str] = None
    storage_id: Optional[str] = None
    created_at: Optional[int] = None
    is_active: Optional[bool] = True

    def to_db_dict(self) -> dict[str, Any]:
        """Convert to a dictionary keyed by listings-table column names."""
        return {
            "id": self.storage_id,
            "created_at": self.created_at,
            "hash": self.hash,
            "provider": self.provider,
            "job_id": self.job_id,
            "price": self.price,
            "size": self.size,
            "title": self.title,
            "image_url": self.image_url,
            "description": self.description,
            "address_full": self.address_full,
            "link": self.link,
            "numeric_price": self.numeric_price,
            "numeric_size": self.numeric_size,
            "price_per_sqm": self.price_per_sqm,
            "numeric_rooms": self.numeric_rooms,
            "year_built": self.year_built,
            "last_refurbishment_year": self.last_refurbishment_year,
            "condition": self.condition,
            "interior_quality": self.interior_quality,
            "flat_type": self.flat_type,
            "street": self.street,
            "zip_code": self.zip_code,
            "city": self.city,
            "energy_class": self.energy_class,
            "heating_type": self.heating_type,
            "energy_source": self.energy_source,
            "service_charge": self.service_charge,
            "additional_purchase_costs": self.additional_purchase_costs,
            "has_balcony": _to_flag(self.has_balcony),
            "has_garden": _to_flag(self.has_garden),
            "has_kitchen": _to_flag(self.has_kitchen),
            "has_cellar": _to_flag(self.has_cellar),
            "has_lift": _to_flag(self.has_lift),
            "is_barrier_free": _to_flag(self.is_barrier_free),
            "price_indicator_percent": self.price_indicator_percent,
            "published_text": self.published_text,
            "is_private": _to_flag(self.is_private),
            "is_active": _to_flag(self.is_active),
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> "Listing":
        """Construct a Listing from a listings-table row.

        The stored row does not keep the source-native id separately; the
        identity hash stands in for it.
        """
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {
            k: v for k, v in row.items()
            if k in known and k not in ("id", "is_active") and k not in _BOOL_COLUMNS
        }
        for column in _BOOL_COLUMNS:
            if column in row:
                flag = _from_flag(row[column])
                values[column] = flag if column == "is_private" else bool(flag)
        return cls(
            id=row.get("hash"),
            storage_id=row.get("id"),
            is_active=_from_flag(row.get("is_active")),
            **values,
        )
