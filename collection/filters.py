from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from django.utils import timezone

from .constants import (
    COLLECTION_RM_NONE,
    PTP_BUCKETS,
    PTP_FUTURE,
    PTP_NONE,
    PTP_OVERDUE,
    PTP_TODAY,
    PTP_TOMORROW,
    STATUSES,
    UNPAID,
    VEHICLE_STATUS_NONE,
)
from .utils import parse_date


def ptp_bucket(ptp_date, today: Optional[date] = None) -> str:
    """Bucket a PTP date relative to ``today``.

    Tomorrow has its own bucket; "Future" starts the day after tomorrow.
    """
    value = parse_date(ptp_date)
    if value is None:
        return PTP_NONE
    today = today or timezone.localdate()
    if value < today:
        return PTP_OVERDUE
    if value == today:
        return PTP_TODAY
    if value == today + timedelta(days=1):
        return PTP_TOMORROW
    return PTP_FUTURE


Extractor = Callable[[Mapping[str, Any]], Optional[str]]


def _column(name: str, missing: Optional[str] = None) -> Extractor:
    def extract(row):
        value = row.get(name)
        if value is None or value == "":
            return missing
        return str(value)

    return extract


def _collection_rm(row) -> str:
    value = row.get("collection_rm")
    if not value or value == "NA":
        return COLLECTION_RM_NONE
    return str(value)


def _bounce(row) -> str:
    return str(row.get("last_month_bounce") or 0)


def _ptp(row) -> str:
    return row.get("ptp_bucket") or PTP_NONE


@dataclass(frozen=True)
class Dimension:
    name: str
    extract: Extractor
    order: Optional[Sequence[str]] = None


DIMENSIONS = (
    Dimension("branch", _column("branch_name")),
    Dimension("team_lead", _column("team_lead")),
    Dimension("rm", _column("rm_name")),
    Dimension("collection_rm", _collection_rm),
    Dimension("dealer", _column("dealer_name")),
    Dimension("lender", _column("lender_name")),
    Dimension("status", _column("status", UNPAID), order=STATUSES),
    Dimension("repayment", _column("repayment")),
    Dimension("last_month_bounce", _bounce),
    Dimension("ptp_date", _ptp, order=PTP_BUCKETS),
    Dimension("vehicle_status", _column("vehicle_status", VEHICLE_STATUS_NONE)),
)


@dataclass
class FilterResult:
    filtered: List[Mapping[str, Any]]
    available_options: Dict[str, List[str]] = field(default_factory=dict)


class FilterEngine:
    """Cascading multi-select filters over already loaded rows.

    Criteria map a dimension name to the accepted values; a row must match
    every non-empty dimension. Options for a dimension come from the rows
    that pass all the *other* dimensions, so narrowing the branch narrows
    the RM list while the branch list still offers every branch.
    """

    def __init__(self, dimensions: Sequence[Dimension] = DIMENSIONS):
        self.dimensions = {dimension.name: dimension for dimension in dimensions}

    def active_criteria(self, criteria: Optional[Mapping[str, Iterable[str]]]) -> Dict[str, frozenset]:
        active = {}
        for name, values in (criteria or {}).items():
            if name not in self.dimensions or not values:
                continue
            accepted = frozenset(str(value) for value in values)
            if accepted:
                active[name] = accepted
        return active

    @staticmethod
    def _passes(values: Mapping[str, Optional[str]], active: Mapping[str, frozenset]) -> bool:
        return all(values[name] in accepted for name, accepted in active.items())

    @staticmethod
    def _ordered(dimension: Dimension, seen: List[str]) -> List[str]:
        if not dimension.order:
            return seen
        rank = {value: index for index, value in enumerate(dimension.order)}
        known = sorted((value for value in seen if value in rank), key=rank.__getitem__)
        return known + [value for value in seen if value not in rank]

    def apply(self, entities: Iterable[Mapping[str, Any]], criteria: Optional[Mapping[str, Iterable[str]]] = None) -> FilterResult:
        entities = list(entities)
        active = self.active_criteria(criteria)
        values = [
            {name: dimension.extract(entity) for name, dimension in self.dimensions.items()}
            for entity in entities
        ]
        filtered = [entity for entity, row in zip(entities, values) if self._passes(row, active)]

        options: Dict[str, List[str]] = {}
        for name, dimension in self.dimensions.items():
            others = {key: accepted for key, accepted in active.items() if key != name}
            seen: Dict[str, None] = {}
            for row in values:
                if row[name] is not None and self._passes(row, others):
                    seen.setdefault(row[name], None)
            options[name] = self._ordered(dimension, list(seen))
        return FilterResult(filtered=filtered, available_options=options)
