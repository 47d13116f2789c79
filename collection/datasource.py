import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from asgiref.sync import sync_to_async
from django.core.exceptions import FieldError, ValidationError
from django.db import DatabaseError, transaction

from .constants import EVENT_TYPES
from .models import (
    Application,
    AuditLog,
    CallingLog,
    CollectionRecord,
    Comment,
    ContactCallingStatus,
    FieldStatus,
    Profile,
    PtpDate,
    StatusChangeRequest,
)
from .realtime import ChangeFeed, Subscription, change_feed

logger = logging.getLogger(__name__)

MODELS = (
    Application,
    CollectionRecord,
    FieldStatus,
    PtpDate,
    ContactCallingStatus,
    CallingLog,
    Comment,
    AuditLog,
    Profile,
    StatusChangeRequest,
)
TABLES = {model._meta.db_table: model for model in MODELS}


class DataSourceError(Exception):
    """A query or mutation against the backing store failed."""


def as_row(instance) -> Dict[str, Any]:
    return {field.attname: field.value_from_object(instance) for field in instance._meta.concrete_fields}


@dataclass(frozen=True)
class Write:
    """One row to insert, or to upsert on ``conflict_key`` when it is given."""

    table: str
    row: Mapping[str, Any]
    conflict_key: Optional[Sequence[str]] = None


class DjangoDataSource:
    """Table-oriented query/mutation client over the Django ORM.

    Rows go in and out as plain dicts keyed by column (``application_id``,
    ``user_id``...). ``filters`` are Django lookups, ``order`` is a list of
    ``order_by`` terms, ``limit``/``offset`` select a range. ``write_all``
    applies several writes in one transaction. ``subscribe`` hands out
    change subscriptions from the shared ``ChangeFeed``.
    """

    def __init__(self, feed: Optional[ChangeFeed] = None):
        self.feed = feed or change_feed

    def _model(self, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise DataSourceError(f"Unknown table: {table}") from None

    def _select(self, table, filters, order, limit, offset, fields) -> List[Dict[str, Any]]:
        queryset = self._model(table).objects.filter(**(filters or {}))
        if order:
            queryset = queryset.order_by(*order)
        if limit is not None:
            queryset = queryset[offset:offset + limit]
        elif offset:
            queryset = queryset[offset:]
        return list(queryset.values(*(fields or ())))

    def _insert(self, table, row) -> Dict[str, Any]:
        instance = self._model(table)(**row)
        instance.save()
        return as_row(instance)

    def _upsert(self, table, row, conflict_key) -> Dict[str, Any]:
        lookup = {key: row[key] for key in conflict_key}
        defaults = {key: value for key, value in row.items() if key not in lookup}
        with transaction.atomic():
            instance, _ = self._model(table).objects.update_or_create(defaults=defaults, **lookup)
        return as_row(instance)

    def _write_all(self, writes) -> List[Dict[str, Any]]:
        with transaction.atomic():
            return [
                self._upsert(w.table, dict(w.row), tuple(w.conflict_key))
                if w.conflict_key
                else self._insert(w.table, dict(w.row))
                for w in writes
            ]

    async def _run(self, operation: str, table: str, func, *args):
        try:
            return await sync_to_async(func)(*args)
        except DataSourceError:
            raise
        except (DatabaseError, FieldError, ValidationError, TypeError, ValueError) as exc:
            logger.warning("%s on %s failed: %s", operation, table, exc)
            raise DataSourceError(f"{operation} on {table} failed: {exc}") from exc

    async def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        fields: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, Any]]:
        return await self._run("select", table, self._select, table, filters, order, limit, offset, fields)

    async def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._run("insert", table, self._insert, table, dict(row))

    async def upsert(self, table: str, row: Mapping[str, Any], conflict_key: Sequence[str]) -> Dict[str, Any]:
        missing = [key for key in conflict_key if key not in row]
        if missing:
            raise DataSourceError(f"upsert on {table} is missing conflict columns {missing}")
        return await self._run("upsert", table, self._upsert, table, dict(row), tuple(conflict_key))

    def subscribe(self, table: str, event_types: Iterable[str] = EVENT_TYPES) -> Subscription:
        self._model(table)
        return self.feed.subscribe(table, event_types)

    async def write_all(self, writes: Sequence[Write]) -> List[Dict[str, Any]]:
        """Apply every write in one transaction; any failure rolls all of them back."""
        writes = list(writes)
        for w in writes:
            missing = [key for key in (w.conflict_key or ()) if key not in w.row]
            if missing:
                raise DataSourceError(f"upsert on {w.table} is missing conflict columns {missing}")
        tables = ",".join(sorted({w.table for w in writes}))
        return await self._run("write", tables, self._write_all, writes)
