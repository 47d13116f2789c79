import logging
import re
from typing import Any, Dict, Iterable, Mapping, Optional

from .datasource import DataSourceError

logger = logging.getLogger(__name__)

UNKNOWN_USER = "Unknown User"
_INVALID_NAMES = {"", "null", "unknown user"}


def _usable(value) -> bool:
    return isinstance(value, str) and value.strip().lower() not in _INVALID_NAMES


def email_local_part(email: str) -> str:
    return re.sub(r"[._-]+", " ", email.split("@")[0]).strip()


def resolve_display_name(profile: Optional[Mapping[str, Any]], fallback_email: Optional[str] = None) -> str:
    if profile:
        if _usable(profile.get("full_name")):
            return profile["full_name"].strip()
        if _usable(profile.get("email")) and email_local_part(profile["email"]):
            return email_local_part(profile["email"])
    if _usable(fallback_email) and email_local_part(fallback_email):
        return email_local_part(fallback_email)
    return UNKNOWN_USER


class ProfileCache:
    """Memoizes user id -> profile lookups for one dashboard view."""

    def __init__(self, source):
        self.source = source
        self._profiles: Dict[Any, Dict[str, Any]] = {}

    def __contains__(self, user_id) -> bool:
        return user_id in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    def get(self, user_id) -> Optional[Dict[str, Any]]:
        return self._profiles.get(user_id)

    async def fetch(self, user_ids: Iterable) -> Dict[Any, Dict[str, Any]]:
        wanted = {user_id for user_id in user_ids if user_id is not None}
        missing = [user_id for user_id in wanted if user_id not in self._profiles]
        if missing:
            try:
                rows = await self.source.select(
                    "profiles",
                    filters={"user_id__in": missing},
                    fields=["user_id", "full_name", "email"],
                )
            except DataSourceError:
                logger.exception("Could not fetch %s user profiles", len(missing))
                rows = []
            for row in rows:
                # profiles never change once fetched
                self._profiles.setdefault(row["user_id"], row)
        return {user_id: self._profiles[user_id] for user_id in wanted if user_id in self._profiles}

    def display_name(self, user_id, fallback_email: Optional[str] = None) -> str:
        return resolve_display_name(self._profiles.get(user_id), fallback_email)

    def clear(self) -> None:
        self._profiles.clear()
