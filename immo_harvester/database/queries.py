"""Immo Harvester — Database Query Operations.

All async database read/write operations. Every function:
  - Uses parameterized queries (never string-formatted user input)
  - Takes the Database instance as its first argument
  - Groups writes in Database.transaction()
  - Returns plain dictionaries or model dataclasses
  - Logs operations at DEBUG level
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Iterable, Optional, Sequence

from immo_harvester.database.db import Database
from immo_harvester.database.models import Job, Listing
from immo_harvester.errors import JobOwnershipError
from immo_harvester.providers import get_provider_type
from immo_harvester.utils.logger import get_logger

logger = get_logger(__name__)

# ── Listing query limits ─────────────────────────────────
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500

# Requested sort key → SQL expression. Anything else falls back to newest-first.
SORTABLE_FIELDS: dict[str, str] = {
    "created_at": "l.created_at",
    "price": "l.numeric_price",
    "size": "l.numeric_size",
    "provider": "l.provider",
    "title": "l.title",
    "job_name": "j.name",
    "is_active": "l.is_active",
    "is_watched": "is_watched",
}

_LISTING_COLUMNS = (
    "id", "created_at", "hash", "provider", "job_id", "price", "size", "title",
    "image_url", "description", "address_full", "link",
    "numeric_price", "numeric_size", "price_per_sqm", "numeric_rooms", "year_built",
    "last_refurbishment_year", "condition", "interior_quality", "flat_type",
    "street", "zip_code", "city", "energy_class", "heating_type", "energy_source",
    "service_charge", "additional_purchase_costs", "has_balcony", "has_garden",
    "has_kitchen", "has_cellar", "has_lift", "is_barrier_free",
    "price_indicator_percent", "published_text", "is_private", "is_active",
)

_INSERT_LISTING_SQL = (
    f"INSERT INTO listings ({', '.join(_LISTING_COLUMNS)}) "
    f"VALUES ({', '.join(':' + c for c in _LISTING_COLUMNS)}) "
    "ON CONFLICT(job_id, hash) DO NOTHING"
)


def _row_to_dict(row: Any) -> dict[str, Any]:
    """Convert an aiosqlite Row to a plain dictionary."""
    return dict(row)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


# ═══════════════════════════════════════════════════════════
# User & Job Operations
# ═══════════════════════════════════════════════════════════


async def upsert_user(
    db: Database, user_id: str, username: str, is_admin: bool = False,
) -> None:
    """Insert or update a user row (ownership lookups only)."""
    async with db.transaction() as conn:
        await conn.execute(
            """
            INSERT INTO users (id, username, is_admin) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET username = excluded.username,
                                          is_admin = excluded.is_admin
            """,
            (user_id, username, int(is_admin)),
        )
    logger.debug("Upserted user %s (admin=%s)", user_id, is_admin)


async def get_job(db: Database, job_id: str) -> Optional[Job]:
    """Retrieve a single job, or None if it does not exist."""
    conn = await db.get_connection()
    cursor = await conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,))
    row = await cursor.fetchone()
    logger.debug("get_job(%s) → %s", job_id, "found" if row else "not found")
    return Job.from_db_row(_row_to_dict(row)) if row else None


async def get_jobs(db: Database) -> list[Job]:
    """Return all jobs ordered by name."""
    conn = await db.get_connection()
    cursor = await conn.execute("SELECT * FROM jobs ORDER BY name, id")
    return [Job.from_db_row(_row_to_dict(r)) for r in await cursor.fetchall()]


async def get_enabled_jobs(db: Database) -> list[Job]:
    """Return all jobs that take part in pipeline runs."""
    conn = await db.get_connection()
    cursor = await conn.execute("SELECT * FROM jobs WHERE enabled = 1 ORDER BY name, id")
    jobs = [Job.from_db_row(_row_to_dict(r)) for r in await cursor.fetchall()]
    logger.debug("get_enabled_jobs → %d jobs", len(jobs))
    return jobs


def _ensure_may_change(job: Optional[Job], job_id: str, user_id: Optional[str], is_admin: bool) -> None:
    """Raise JobOwnershipError unless the user owns the job or is admin."""
    if job is None:
        return
    if is_admin or (user_id is not None and job.user_id == user_id):
        return
    raise JobOwnershipError(job_id, user_id)


async def upsert_job(
    db: Database, job: Job, acting_user_id: Optional[str], is_admin: bool = False,
) -> Job:
    """Create a job or update an existing one.

    An existing job keeps its owner; only the owner or an admin may
    change it. Every configured provider id must be registered.

    Raises:
        UnknownProviderError: If a provider id has no registered type.
        JobOwnershipError: If the acting user may not change the job.
    """
    for provider in job.providers:
        get_provider_type(provider.id)

    existing = await get_job(db, job.id)
    _ensure_may_change(existing, job.id, acting_user_id, is_admin)
    if existing is not None:
        job.user_id = existing.user_id

    d = job.to_db_dict()
    async with db.transaction() as conn:
        await conn.execute(
            """
            INSERT INTO jobs (id, user_id, enabled, name, blacklist, provider,
                              notification_adapter, shared_with_user)
            VALUES (:id, :user_id, :enabled, :name, :blacklist, :provider,
                    :notification_adapter, :shared_with_user)
            ON CONFLICT(id) DO UPDATE SET
                enabled = excluded.enabled,
                name = excluded.name,
                blacklist = excluded.blacklist,
                provider = excluded.provider,
                notification_adapter = excluded.notification_adapter,
                shared_with_user = excluded.shared_with_user
            """,
            d,
        )
    logger.debug("Upserted job %s (%s)", job.id, job.name)
    return job


async def set_job_enabled(
    db: Database, job_id: str, enabled: bool, acting_user_id: Optional[str], is_admin: bool = False,
) -> None:
    """Enable or disable a job.

    Raises:
        JobOwnershipError: If the acting user may not change the job.
    """
    _ensure_may_change(await get_job(db, job_id), job_id, acting_user_id, is_admin)
    async with db.transaction() as conn:
        await conn.execute("UPDATE jobs SET enabled = ? WHERE id = ?", (int(enabled), job_id))
    logger.debug("Job %s enabled → %s", job_id, enabled)


async def remove_job(
    db: Database, job_id: str, acting_user_id: Optional[str], is_admin: bool = False,
) -> None:
    """Delete a job; its listings are removed by the cascade.

    Raises:
        JobOwnershipError: If the acting user may not change the job.
    """
    _ensure_may_change(await get_job(db, job_id), job_id, acting_user_id, is_admin)
    async with db.transaction() as conn:
        await conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
    logger.debug("Removed job %s", job_id)


# ═══════════════════════════════════════════════════════════
# Listing Operations (pipeline)
# ═══════════════════════════════════════════════════════════


async def get_known_listing_hashes(db: Database, job_id: str, provider_id: str) -> set[str]:
    """Return the identity hashes already stored for a job and provider."""
    conn = await db.get_connection()
    cursor = await conn.execute(
        "SELECT hash FROM listings WHERE job_id = ? AND provider = ?",
        (job_id, provider_id),
    )
    hashes = {row["hash"] for row in await cursor.fetchall()}
    logger.debug("Known hashes for %s/%s: %d", job_id, provider_id, len(hashes))
    return hashes


async def store_listings(
    db: Database, job_id: str, provider_id: str, listings: Iterable[Listing],
) -> list[Listing]:
    """Persist listings with insert-or-ignore on (job_id, hash).

    Each listing gets a fresh storage id and creation timestamp. A row
    that already exists for the same job and hash is left untouched, so
    concurrent runs of one job store a given listing exactly once.

    Returns:
        The listings that were actually inserted by this call.
    """
    inserted: list[Listing] = []
    batch = list(listings)
    if not batch:
        return inserted

    async with db.transaction() as conn:
        for listing in batch:
            if not listing.hash:
                raise ValueError(f"Listing {listing.id!r} has no identity hash")
            listing.job_id = job_id
            listing.provider = provider_id
            listing.storage_id = uuid.uuid4().hex
            listing.created_at = _now_ms()
            if listing.is_active is None:
                listing.is_active = True
            cursor = await conn.execute(_INSERT_LISTING_SQL, listing.to_db_dict())
            if cursor.rowcount == 1:
                inserted.append(listing)

    logger.debug(
        "store_listings(%s/%s): %d offered, %d inserted",
        job_id, provider_id, len(batch), len(inserted),
    )
    return inserted


async def get_active_or_unknown_listings(db: Database) -> list[dict[str, Any]]:
    """Return listings whose activity flag is true or unknown, by provider."""
    conn = await db.get_connection()
    cursor = await conn.execute(
        """
        SELECT * FROM listings
        WHERE is_active IS NULL OR is_active = 1
        ORDER BY provider, created_at
        """
    )
    return [_row_to_dict(r) for r in await cursor.fetchall()]


async def deactivate_listings(db: Database, ids: Sequence[str]) -> int:
    """Set is_active = 0 for the given storage ids in one statement.

    Returns:
        Number of rows changed.
    """
    ids = list(dict.fromkeys(ids))
    if not ids:
        return 0
    async with db.transaction() as conn:
        cursor = await conn.execute(
            f"UPDATE listings SET is_active = 0 WHERE id IN ({_placeholders(ids)})",
            ids,
        )
    logger.debug("Deactivated %d listings", cursor.rowcount)
    return cursor.rowcount


async def delete_listings_by_job_id(db: Database, job_id: str) -> int:
    """Delete all listings of a job."""
    if not job_id:
        return 0
    async with db.transaction() as conn:
        cursor = await conn.execute("DELETE FROM listings WHERE job_id = ?", (job_id,))
    return cursor.rowcount


async def delete_listings_by_ids(db: Database, ids: Sequence[str]) -> int:
    """Delete listings by storage id."""
    ids = list(ids)
    if not ids:
        return 0
    async with db.transaction() as conn:
        cursor = await conn.execute(
            f"DELETE FROM listings WHERE id IN ({_placeholders(ids)})", ids,
        )
    return cursor.rowcount


async def toggle_watch(db: Database, listing_id: str, user_id: str) -> bool:
    """Add a listing to the user's watch list, or remove it if present.

    Returns:
        True if the listing is watched after the call.
    """
    async with db.transaction() as conn:
        cursor = await conn.execute(
            "DELETE FROM watch_list WHERE listing_id = ? AND user_id = ?",
            (listing_id, user_id),
        )
        if cursor.rowcount:
            return False
        await conn.execute(
            "INSERT INTO watch_list (listing_id, user_id, created_at) VALUES (?, ?, ?)",
            (listing_id, user_id, _now_ms()),
        )
    return True


async def get_listing_provider_stats(db: Database, job_id: str) -> dict[str, dict[str, int]]:
    """Map provider → {hash: created_at} for a job's listings."""
    conn = await db.get_connection()
    cursor = await conn.execute(
        "SELECT provider, hash, created_at FROM listings WHERE job_id = ?",
        (job_id,),
    )
    stats: dict[str, dict[str, int]] = {}
    for row in await cursor.fetchall():
        stats.setdefault(row["provider"], {})[row["hash"]] = row["created_at"]
    return stats


# ═══════════════════════════════════════════════════════════
# Listing Queries (management layer)
# ═══════════════════════════════════════════════════════════


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


async def query_listings(
    db: Database,
    *,
    page_size: Any = DEFAULT_PAGE_SIZE,
    page: Any = 1,
    activity_filter: Optional[bool] = None,
    job_name_filter: Optional[str] = None,
    job_id_filter: Optional[str] = None,
    provider_filter: Optional[str] = None,
    watch_list_filter: Optional[bool] = None,
    free_text_filter: Optional[str] = None,
    sort_field: Optional[str] = None,
    sort_dir: str = "asc",
    user_id: Optional[str] = None,
    is_admin: bool = False,
) -> dict[str, Any]:
    """Query listings with filtering, sorting and pagination.

    Non-admin callers only see listings of jobs they own or that are
    shared with them. Unknown sort fields fall back to newest-first.

    Returns:
        Dict with ``totalNumber``, ``page`` and ``result`` (row dicts with
        ``job_name`` and ``is_watched`` added).
    """
    try:
        safe_page_size = int(page_size)
    except (TypeError, ValueError):
        safe_page_size = DEFAULT_PAGE_SIZE
    if safe_page_size <= 0:
        safe_page_size = DEFAULT_PAGE_SIZE
    safe_page_size = min(MAX_PAGE_SIZE, safe_page_size)

    try:
        safe_page = max(1, int(page))
    except (TypeError, ValueError):
        safe_page = 1

    params: dict[str, Any] = {
        "limit": safe_page_size,
        "offset": (safe_page - 1) * safe_page_size,
        # NULL never matches, so anonymous callers watch nothing
        "user_id": user_id,
    }
    where: list[str] = []

    if not is_admin:
        where.append(
            "(j.user_id = :user_id OR EXISTS "
            "(SELECT 1 FROM json_each(j.shared_with_user) AS sw WHERE sw.value = :user_id))"
        )

    free_text = _clean(free_text_filter)
    if free_text:
        params["filter"] = f"%{free_text}%"
        where.append(
            "(l.title LIKE :filter OR l.address_full LIKE :filter "
            "OR l.provider LIKE :filter OR l.link LIKE :filter)"
        )

    if activity_filter is True:
        where.append("(l.is_active = 1)")

    job_id = _clean(job_id_filter)
    job_name = _clean(job_name_filter)
    if job_id:
        params["job_id"] = job_id
        where.append("(l.job_id = :job_id)")
    elif job_name:
        params["job_name"] = job_name
        where.append("(j.name = :job_name)")

    provider = _clean(provider_filter)
    if provider:
        params["provider"] = provider
        where.append("(l.provider = :provider)")

    if watch_list_filter is True:
        where.append("(wl.id IS NOT NULL)")

    where_sql = f"WHERE {' AND '.join(where)}" if where else ""

    sort_expr = SORTABLE_FIELDS.get(sort_field or "")
    if sort_expr is None:
        order_sql = "ORDER BY l.created_at DESC"
    else:
        direction = "DESC" if str(sort_dir).lower() == "desc" else "ASC"
        order_sql = f"ORDER BY {sort_expr} {direction}, l.created_at DESC"

    from_sql = """
        FROM listings l
        LEFT JOIN jobs j ON j.id = l.job_id
        LEFT JOIN watch_list wl ON wl.listing_id = l.id AND wl.user_id = :user_id
    """

    conn = await db.get_connection()
    cursor = await conn.execute(f"SELECT COUNT(1) AS cnt {from_sql} {where_sql}", params)
    total = (await cursor.fetchone())["cnt"]

    cursor = await conn.execute(
        f"""
        SELECT l.*,
               j.name AS job_name,
               CASE WHEN wl.id IS NOT NULL THEN 1 ELSE 0 END AS is_watched
        {from_sql}
        {where_sql}
        {order_sql}
        LIMIT :limit OFFSET :offset
        """,
        params,
    )
    rows = [_row_to_dict(r) for r in await cursor.fetchall()]
    logger.debug(
        "query_listings(page=%d, size=%d, user=%s) → %d/%d",
        safe_page, safe_page_size, user_id, len(rows), total,
    )
    return {"totalNumber": total, "page": safe_page, "result": rows}

