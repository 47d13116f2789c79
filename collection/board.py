import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from django.utils import timezone

from .analytics import status_counts
from .conf import setting
from .constants import CONTACT_TYPES, NOT_CALLED
from .datasource import DataSourceError, DjangoDataSource
from .dedup import RequestDeduplicator
from .filters import FilterEngine, ptp_bucket
from .profiles import ProfileCache
from .realtime import ChangeNotificationRouter
from .resolvers import (
    CallingStatusResolver,
    CollectionStatusResolver,
    CommentResolver,
    FieldStatusResolver,
    PtpDateResolver,
    latest_by,
)
from .status import StatusMerger
from .utils import chunked, is_valid_period, month_range, normalize_period

logger = logging.getLogger(__name__)

# columns a collection row carries per demand month
MONTH_COLUMNS = (
    "team_lead",
    "rm_name",
    "collection_rm",
    "repayment",
    "last_month_bounce",
    "emi_amount",
    "amount_collected",
    "demand_date",
    "lms_status",
)


@dataclass
class BoardSnapshot:
    period: str
    rows: List[Dict[str, Any]] = field(default_factory=list)
    available_options: Dict[str, List[str]] = field(default_factory=dict)
    status_counts: Dict[str, int] = field(default_factory=dict)
    total: int = 0
    stale: bool = False

    @property
    def ids(self) -> List[str]:
        return [row["applicant_id"] for row in self.rows]


def search_rows(rows: Iterable[Dict[str, Any]], search: Optional[str]) -> List[Dict[str, Any]]:
    rows = list(rows)
    needle = (search or "").strip().lower()
    if not needle:
        return rows
    return [
        row
        for row in rows
        if needle in str(row.get("applicant_name") or "").lower()
        or needle in str(row.get("applicant_id") or "").lower()
    ]


def sort_rows(rows: List[Dict[str, Any]], ordering: Optional[str]) -> List[Dict[str, Any]]:
    """Sort by ``field`` or ``-field``; rows without a value go last either way."""
    if not ordering:
        return rows
    name = ordering.lstrip("-")
    present = [row for row in rows if row.get(name) is not None]
    missing = [row for row in rows if row.get(name) is None]
    present.sort(key=lambda row: row[name], reverse=ordering.startswith("-"))
    return present + missing


def merge_month(application: Mapping[str, Any], record: Mapping[str, Any]) -> Dict[str, Any]:
    """Application row with the per-month columns of its collection row laid over it."""
    merged = dict(application)
    for name in MONTH_COLUMNS:
        if record.get(name) is not None:
            merged[name] = record[name]
    return merged


async def emi_months(source) -> List[str]:
    """Distinct demand months that have collection rows, latest first."""
    rows = await source.select("collection", filters={"demand_date__isnull": False}, fields=["demand_date"])
    return sorted({normalize_period(row["demand_date"]) for row in rows}, reverse=True)


class CollectionBoard:
    """State behind one dashboard view.

    Owns the request deduplicator, the profile cache, the resolvers and,
    while mounted, the change router. Build one per view, ``mount`` it when
    the view opens and ``unmount`` it when it closes.
    """

    def __init__(
        self,
        source=None,
        dedup_ttl: Optional[float] = None,
        throttle: Optional[float] = None,
        resume_delay: Optional[float] = None,
        comment_limit: Optional[int] = None,
    ):
        self.source = source or DjangoDataSource()
        self.deduplicator = RequestDeduplicator(ttl=dedup_ttl)
        self.profiles = ProfileCache(self.source)
        self.field_resolver = FieldStatusResolver(self.source, self.deduplicator)
        self.collection_resolver = CollectionStatusResolver(self.source, self.deduplicator)
        self.ptp_resolver = PtpDateResolver(self.source, self.deduplicator)
        self.calling_resolver = CallingStatusResolver(self.source, self.deduplicator)
        self.comment_resolver = CommentResolver(self.source, self.profiles, self.deduplicator, limit=comment_limit)
        self.merger = StatusMerger(self.field_resolver, self.collection_resolver)
        self.filter_engine = FilterEngine()
        self.throttle = throttle
        self.resume_delay = resume_delay

        self.snapshot: Optional[BoardSnapshot] = None
        self.router: Optional[ChangeNotificationRouter] = None
        self.on_refresh: Optional[Callable[[BoardSnapshot], Any]] = None
        self._view: Dict[str, Any] = {}
        self._alive = True

    @property
    def alive(self) -> bool:
        return self._alive

    async def _load_applications(self, period: str) -> List[Dict[str, Any]]:
        """Applications with a collection row in ``period``, carrying that month's values."""
        records = await self.source.select(
            "collection",
            filters={"demand_date__range": month_range(period)},
            order=["-created_at", "id"],
        )
        month_rows = latest_by(records, lambda row: row.get("application_id"))
        ids = sorted(month_rows)
        applications: List[Dict[str, Any]] = []
        for chunk in chunked(ids, setting("COLLECTION_BATCH_SIZE")):
            applications.extend(
                await self.source.select("applications", filters={"applicant_id__in": list(chunk)})
            )
        rows = [merge_month(application, month_rows[application["applicant_id"]]) for application in applications]
        rows.sort(key=lambda row: (row.get("applicant_name") or "", row["applicant_id"]))
        return rows

    async def load(
        self,
        period: str,
        criteria: Optional[Mapping[str, Iterable[str]]] = None,
        search: Optional[str] = None,
        ordering: Optional[str] = None,
        today: Optional[date] = None,
    ) -> BoardSnapshot:
        if not is_valid_period(period):
            logger.warning("Board requested for invalid period %r", period)
            return BoardSnapshot(period=period, stale=True)
        try:
            applications = await self._load_applications(period)
        except DataSourceError:
            logger.exception("Could not load applications for %s", period)
            if self.snapshot is not None and self.snapshot.period == period:
                self.snapshot.stale = True
                return self.snapshot
            return BoardSnapshot(period=period, stale=True)

        ids = [row["applicant_id"] for row in applications]
        statuses, ptp_dates, calling, comments = await asyncio.gather(
            self.merger.merge(ids, period),
            self.ptp_resolver.fetch_many(ids, period),
            self.calling_resolver.fetch_many(ids, period),
            self.comment_resolver.fetch_many(ids, period),
        )

        today = today or timezone.localdate()
        rows = []
        for application in applications:
            app_id = application["applicant_id"]
            ptp_date = ptp_dates.get(app_id)
            rows.append(
                {
                    **application,
                    "status": statuses.get(app_id),
                    "ptp_date": ptp_date,
                    "ptp_bucket": ptp_bucket(ptp_date, today),
                    "calling_status": calling.get(app_id) or {role: NOT_CALLED for role in CONTACT_TYPES},
                    "recent_comments": comments.get(app_id, []),
                }
            )

        result = self.filter_engine.apply(search_rows(rows, search), criteria)
        filtered = sort_rows(list(result.filtered), ordering)
        snapshot = BoardSnapshot(
            period=period,
            rows=filtered,
            available_options=result.available_options,
            status_counts=status_counts(filtered),
            total=len(rows),
        )
        if self._alive:
            self.snapshot = snapshot
        return snapshot

    async def mount(
        self,
        period: str,
        criteria: Optional[Mapping[str, Iterable[str]]] = None,
        on_refresh: Optional[Callable[[BoardSnapshot], Any]] = None,
        search: Optional[str] = None,
        ordering: Optional[str] = None,
    ) -> BoardSnapshot:
        self._alive = True
        self.on_refresh = on_refresh
        self._view = {"period": period, "criteria": criteria, "search": search, "ordering": ordering}
        snapshot = await self.load(**self._view)
        if self.router is not None:
            self.router.close()
        self.router = ChangeNotificationRouter(
            self.source,
            self.refresh,
            visible_ids=snapshot.ids,
            throttle=self.throttle,
            resume_delay=self.resume_delay,
        )
        self.router.start()
        return snapshot

    async def refresh(self) -> Optional[BoardSnapshot]:
        if not self._alive or not self._view:
            return None
        snapshot = await self.load(**self._view)
        if not self._alive:
            logger.debug("Board unmounted during refresh, discarding result")
            return None
        if self.router is not None:
            self.router.set_visible_ids(snapshot.ids)
        if self.on_refresh is not None:
            result = self.on_refresh(snapshot)
            if inspect.isawaitable(result):
                await result
        return snapshot

    def pause(self) -> bool:
        return self.router.pause() if self.router is not None else False

    def resume(self) -> bool:
        return self.router.resume() if self.router is not None else False

    async def unmount(self) -> None:
        self._alive = False
        if self.router is not None:
            self.router.close()
            self.router = None
        self.deduplicator.clear()
        self.profiles.clear()
        self.on_refresh = None
        self._view = {}
