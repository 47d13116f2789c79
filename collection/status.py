import asyncio
import logging
from typing import Dict, Iterable, Optional

from .constants import PAID, UNPAID
from .utils import clean_ids

logger = logging.getLogger(__name__)


def resolve_status(collection_status: Optional[str], field_status: Optional[str]) -> str:
    """Reconcile the LMS status with the field team's status.

    A collection "Paid" is authoritative. Otherwise an explicit field update
    wins over the collection value, except the "Unpaid" default which would
    hide a partial collection.
    """
    if collection_status == PAID:
        return PAID
    if field_status and field_status != UNPAID:
        return field_status
    if collection_status:
        return collection_status
    return UNPAID


class StatusMerger:
    def __init__(self, field_resolver, collection_resolver):
        self.field_resolver = field_resolver
        self.collection_resolver = collection_resolver

    @staticmethod
    def _settled(result, source: str) -> Dict[str, str]:
        if isinstance(result, BaseException):
            logger.error("%s lookup failed, merging without it: %r", source, result)
            return {}
        return result or {}

    async def merge(self, ids: Iterable[str], period: Optional[str] = None) -> Dict[str, str]:
        ids = clean_ids(ids)
        if not ids:
            return {}

        field_result, collection_result = await asyncio.gather(
            self.field_resolver.fetch_many(ids, period),
            self.collection_resolver.fetch_many(ids, period),
            return_exceptions=True,
        )
        field_statuses = self._settled(field_result, "Field status")
        collection_statuses = self._settled(collection_result, "Collection status")

        merged = {
            app_id: resolve_status(collection_statuses.get(app_id), field_statuses.get(app_id))
            for app_id in ids
        }
        logger.info(
            "Merged status for %s applications (field=%s, collection=%s, paid from collection=%s)",
            len(merged),
            len(field_statuses),
            len(collection_statuses),
            sum(1 for status in collection_statuses.values() if status == PAID),
        )
        return merged
