"""Batch readers for the per-month status tables.

Every table here is an append-only log; the current value for an
application is the most recent row. Resolvers never raise data-source
errors: they log them and return an empty mapping so the caller can carry
on with whatever else it managed to load.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Optional

from .conf import setting
from .constants import APPLICANT, CO_APPLICANT, CONTACT_TYPES, GUARANTOR, NOT_CALLED, REFERENCE
from .datasource import DataSourceError
from .dedup import RequestDeduplicator
from .utils import chunked, clean_ids, is_valid_period, month_range

logger = logging.getLogger(__name__)


def _not_older(candidate, current) -> bool:
    if candidate is None:
        return current is None
    if current is None:
        return True
    return candidate >= current


def latest_by(
    rows: Iterable[Mapping[str, Any]],
    key: Callable[[Mapping[str, Any]], Optional[Hashable]],
    timestamp_field: str = "created_at",
) -> Dict[Hashable, Mapping[str, Any]]:
    """Most recent row per key.

    Rows with equal timestamps: the one that comes later in ``rows`` wins.
    Rows without a timestamp lose to any row that has one.
    """
    latest: Dict[Hashable, Mapping[str, Any]] = {}
    for row in rows:
        row_key = key(row)
        if row_key is None:
            continue
        current = latest.get(row_key)
        if current is None or _not_older(row.get(timestamp_field), current.get(timestamp_field)):
            latest[row_key] = row
    return latest


_CONTACT_TYPE_ALIASES = {
    "applicant": APPLICANT,
    "coapplicant": CO_APPLICANT,
    "guarantor": GUARANTOR,
    "reference": REFERENCE,
}


def parse_contact_type(value) -> Optional[str]:
    """Map "Co-Applicant", "co_applicant", "coApplicant"... onto a role, or None."""
    letters = "".join(ch for ch in str(value or "").lower() if ch.isalpha())
    return _CONTACT_TYPE_ALIASES.get(letters)


def normalize_contact_type(value) -> str:
    return parse_contact_type(value) or REFERENCE


class BatchResolver:
    table: str = ""
    fields: List[str] = []
    timestamp_field = "created_at"
    requires_period = False

    def __init__(self, source, deduplicator: Optional[RequestDeduplicator] = None, ttl: Optional[float] = None):
        self.source = source
        self.deduplicator = deduplicator or RequestDeduplicator()
        self.ttl = ttl

    def cache_key(self, ids: List[str], period: Optional[str]) -> str:
        return f"{self.table}:{period or 'all'}:{','.join(sorted(ids))}"

    def filters(self, ids: List[str], period: Optional[str]) -> Dict[str, Any]:
        filters: Dict[str, Any] = {"application_id__in": ids}
        if period:
            filters["demand_date__range"] = month_range(period)
        return filters

    async def select(self, ids: List[str], period: Optional[str]) -> List[Dict[str, Any]]:
        return await self.source.select(
            self.table,
            filters=self.filters(ids, period),
            order=[f"-{self.timestamp_field}", "id"],
            fields=self.fields,
        )

    async def fetch_many(self, ids: Iterable[str], period: Optional[str] = None) -> Dict[str, Any]:
        valid = clean_ids(ids)
        if not valid:
            return {}
        if period is None and self.requires_period:
            logger.warning("No period given for %s, skipping fetch", self.table)
            return {}
        if period is not None and not is_valid_period(period):
            logger.warning("Invalid period %r for %s", period, self.table)
            return {}
        try:
            return await self.deduplicator.execute(
                self.cache_key(valid, period),
                lambda: self._fetch(valid, period),
                self.ttl,
            )
        except DataSourceError:
            logger.exception("Could not load %s for %s applications", self.table, len(valid))
            return {}

    async def _fetch(self, ids: List[str], period: Optional[str]) -> Dict[str, Any]:
        rows = await self.select(ids, period)
        return self.reduce(rows)

    def reduce(self, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
        raise NotImplementedError


class FieldStatusResolver(BatchResolver):
    """Latest field status per application. No period means across all months."""

    table = "field_status"
    fields = ["id", "application_id", "status", "demand_date", "created_at"]

    def reduce(self, rows):
        rows = [row for row in rows if row.get("status")]
        latest = latest_by(rows, lambda row: row.get("application_id"))
        return {app_id: row["status"] for app_id, row in latest.items()}


class CollectionStatusResolver(BatchResolver):
    """Latest LMS status per application for one demand month."""

    table = "collection"
    fields = ["id", "application_id", "lms_status", "demand_date", "created_at"]
    requires_period = True

    def __init__(self, source, deduplicator=None, ttl=None, batch_size: Optional[int] = None):
        super().__init__(source, deduplicator, ttl)
        self.batch_size = batch_size or setting("COLLECTION_BATCH_SIZE")

    async def _fetch(self, ids, period):
        chunks = list(chunked(ids, self.batch_size))
        results = await asyncio.gather(*(self.select(list(chunk), period) for chunk in chunks), return_exceptions=True)
        rows: List[Dict[str, Any]] = []
        failed = 0
        for index, result in enumerate(results):
            if isinstance(result, BaseException):
                failed += 1
                logger.error("Collection status chunk %s/%s failed: %s", index + 1, len(chunks), result)
                continue
            rows.extend(result)
        if failed == len(chunks):
            logger.error("All %s collection status chunks failed", len(chunks))
            return {}
        statuses = self.reduce(rows)
        logger.info(
            "Collection status loaded for %s applications (%s/%s chunks)",
            len(statuses),
            len(chunks) - failed,
            len(chunks),
        )
        return statuses

    def reduce(self, rows):
        rows = [row for row in rows if row.get("lms_status")]
        latest = latest_by(rows, lambda row: row.get("application_id"))
        return {app_id: row["lms_status"] for app_id, row in latest.items()}


class PtpDateResolver(BatchResolver):
    """Latest PTP date per application.

    A key mapped to ``None`` means the PTP was cleared; a missing key means
    nobody ever set one.
    """

    table = "ptp_dates"
    fields = ["id", "application_id", "ptp_date", "demand_date", "created_at"]

    def reduce(self, rows):
        latest = latest_by(rows, lambda row: row.get("application_id"))
        return {app_id: row.get("ptp_date") for app_id, row in latest.items()}


class CallingStatusResolver(BatchResolver):
    table = "contact_calling_status"
    fields = ["id", "application_id", "contact_type", "status", "demand_date", "updated_at"]
    timestamp_field = "updated_at"

    async def _fetch(self, ids, period):
        rows = await self.select(ids, period)
        latest = latest_by(
            rows,
            lambda row: (row["application_id"], normalize_contact_type(row.get("contact_type"))),
            self.timestamp_field,
        )
        statuses = {app_id: {role: NOT_CALLED for role in CONTACT_TYPES} for app_id in ids}
        for (app_id, role), row in latest.items():
            if app_id in statuses and row.get("status"):
                statuses[app_id][role] = row["status"]
        return statuses


class CommentResolver(BatchResolver):
    """The most recent comments per application, with author names resolved."""

    table = "comments"
    fields = ["id", "application_id", "content", "user_id", "demand_date", "created_at"]

    def __init__(self, source, profiles, deduplicator=None, ttl=None, limit: Optional[int] = None):
        super().__init__(source, deduplicator, ttl)
        self.profiles = profiles
        self.limit = limit or setting("LIST_COMMENT_LIMIT")

    def cache_key(self, ids, period):
        return f"{super().cache_key(ids, period)}:{self.limit}"

    async def select(self, ids, period):
        return await self.source.select(
            self.table,
            filters=self.filters(ids, period),
            order=["-created_at", "-id"],
            fields=self.fields,
        )

    async def _fetch(self, ids, period):
        rows = await self.select(ids, period)
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for row in rows:
            bucket = grouped.setdefault(row["application_id"], [])
            if len(bucket) < self.limit:
                bucket.append(row)
        await self.profiles.fetch({row["user_id"] for bucket in grouped.values() for row in bucket})
        return {
            app_id: [
                {
                    "id": row["id"],
                    "content": row["content"],
                    "created_at": row["created_at"],
                    "user_id": row["user_id"],
                    "user_name": self.profiles.display_name(row["user_id"]),
                }
                for row in bucket
            ]
            for app_id, bucket in grouped.items()
        }
