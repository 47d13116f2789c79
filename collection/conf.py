from django.conf import settings

DEFAULTS = {
    "REQUEST_DEDUP_TTL": 5.0,
    "REALTIME_THROTTLE_SECONDS": 1.0,
    "REALTIME_RESUME_DELAY_SECONDS": 0.5,
    "COLLECTION_BATCH_SIZE": 50,
    "LIST_COMMENT_LIMIT": 2,
}


def setting(name: str):
    overrides = getattr(settings, "COLLECTION_DASHBOARD", {}) or {}
    return overrides.get(name, DEFAULTS[name])
