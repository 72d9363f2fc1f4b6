"""Freshness policy: intent-driven TTLs and validity checks.

Pure functions with no store dependency. All timestamps are epoch
milliseconds.
"""

from semcache.core.config import DAY_MS, HOUR_MS
from semcache.domain.models import CachedResult, QueryIntent, now_ms

TTL_PRESETS: dict[str, int] = {
    "static": 30 * DAY_MS,
    "semi_dynamic": 7 * DAY_MS,
    "dynamic": 1 * DAY_MS,
    "realtime": 2 * HOUR_MS,
}

# Facets whose answers change quickly (pricing, reviews, recency)
VOLATILE_FACETS = frozenset({"price", "review", "today", "news"})


def compute_ttl(intent: QueryIntent, base_ttl_ms: int, now: int | None = None) -> int:
    """Absolute expiry timestamp for a result produced for ``intent``.

    A temporal reference overrides the base TTL with the dynamic preset;
    a volatile facet clamps it to at most the dynamic preset. The shortest
    applicable TTL wins.
    """
    now = now_ms() if now is None else now
    ttl_ms = base_ttl_ms

    if intent.timebox:
        ttl_ms = TTL_PRESETS["dynamic"]

    if intent.facets & VOLATILE_FACETS:
        ttl_ms = min(ttl_ms, TTL_PRESETS["dynamic"])

    return now + ttl_ms


def is_expired(result: CachedResult, now: int) -> bool:
    return result.ttl_at <= now


def is_valid(result: CachedResult, current_model_revision: str, now: int) -> bool:
    """Both the model revision and the TTL must hold; either alone invalidates."""
    return result.model_revision == current_model_revision and result.ttl_at > now


def remaining_ttl_ms(result: CachedResult, now: int) -> int:
    return result.ttl_at - now


def needs_refresh(
    result: CachedResult, current_model_revision: str, now: int, near_expiry_ms: int
) -> bool:
    """True for an unexpired entry that should be refreshed in the background."""
    model_mismatch = result.model_revision != current_model_revision
    return model_mismatch or remaining_ttl_ms(result, now) < near_expiry_ms
