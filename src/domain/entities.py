"""
Helpers shared by every engine stage for working with entity dicts.

Entities are plain dicts produced by the upstream extractor. Stages key them
by their identity (display value, trimmed and lowercased) so a category never
holds two entries for the same entity.
"""

from typing import Dict, Iterable, List, Optional


# Display fields tried in order when an entity has no 'value'
IDENTITY_FIELDS = ('value', 'link', 'keyword', 'organization', 'code')

# Sentinels for appearance order
NEVER_APPEARED = -1
UNKNOWN_POSITION = 999

# Fields recomputed by the engine; never carried from one scope into another
TREND_FIELDS = (
    'trend',
    'mentions_trend', 'influence_trend', 'appearance_order_trend', 'unique_source_count_trend',
    'mentions_trend_vals', 'influence_trend_vals', 'appearance_order_trend_vals',
    'unique_source_count_trend_vals',
    'mentions_by_source_trend', 'mentions_by_source_trend_vals',
    'influence_by_source_trend', 'influence_by_source_trend_vals',
    'appearance_order_by_source_trend', 'appearance_order_by_source_trend_vals',
    'previous_mentions', 'mentions_change', 'change_percent', 'mentions_history',
    'first_seen', 'last_seen', 'volatility',
)


def entity_key(entity: dict) -> str:
    """Identity key: the display value trimmed and lowercased."""
    for field in IDENTITY_FIELDS:
        value = entity.get(field)
        if value is not None and str(value).strip():
            return str(value).strip().lower()
    return ''


def is_valid_order(order) -> bool:
    """True for a real ordinal position (not a sentinel)."""
    if isinstance(order, bool):
        return False
    return isinstance(order, (int, float)) and 1 <= order < UNKNOWN_POSITION


def positive_sources(mentions_by_source: Optional[Dict[str, int]]) -> List[str]:
    """Source ids with at least one mention, in insertion order."""
    return [source_id for source_id, count in (mentions_by_source or {}).items() if (count or 0) > 0]


def refresh_source_count(entity: dict) -> None:
    """Recompute source_count/unique_source_count from mentions_by_source."""
    count = len(positive_sources(entity.get('mentions_by_source')))
    entity['source_count'] = count
    entity['unique_source_count'] = count


def index_entities(entities: Iterable[dict]) -> Dict[str, dict]:
    """
    Build an identity-keyed map of entities.

    Duplicate keys within one snapshot are folded into the first occurrence:
    per-source mentions are summed, per-source appearance orders keep the
    earliest valid position, and mentions/appearance order are recomputed
    so question-scope invariants still hold.

    Entities without any display value are dropped.
    """
    indexed: Dict[str, dict] = {}

    for entity in entities:
        key = entity_key(entity)
        if not key:
            continue

        existing = indexed.get(key)
        if existing is None:
            indexed[key] = entity
            continue

        merged_mentions = dict(existing.get('mentions_by_source') or {})
        for source_id, count in (entity.get('mentions_by_source') or {}).items():
            merged_mentions[source_id] = merged_mentions.get(source_id, 0) + (count or 0)

        merged_orders = dict(existing.get('appearance_order_by_source') or {})
        for source_id, order in (entity.get('appearance_order_by_source') or {}).items():
            current = merged_orders.get(source_id)
            if is_valid_order(order) and (not is_valid_order(current) or order < current):
                merged_orders[source_id] = order
            elif current is None:
                merged_orders[source_id] = order

        existing['mentions_by_source'] = merged_mentions
        existing['appearance_order_by_source'] = merged_orders
        if merged_mentions:
            existing['mentions'] = sum(merged_mentions.values())
        else:
            existing['mentions'] = (existing.get('mentions') or 0) + (entity.get('mentions') or 0)
        existing['appearance_order'] = average_order(
            merged_orders.values(), existing['mentions']
        )
        refresh_source_count(existing)

    return indexed


def average_order(orders: Iterable, mentions: int) -> float:
    """
    Arithmetic mean of valid appearance orders.

    Falls back to UNKNOWN_POSITION when the entity was mentioned but no valid
    position is known, and NEVER_APPEARED when it has no mentions.
    """
    if not mentions:
        return NEVER_APPEARED

    samples = [order for order in orders if is_valid_order(order)]
    if not samples:
        return UNKNOWN_POSITION

    return sum(samples) / len(samples)
