"""
Per-category summary counts used by report views.
"""

from typing import Dict, List

from domain.trends import TrendIndicator


def summarize_category(entities: List[dict]) -> Dict:
    """
    Summarize one category snapshot.

    Returns:
        Dict with:
            - total_items: Number of entities
            - total_mentions: Sum of entity mentions
            - item_count_per_source: [{'id': source, 'count': n}] sorted by count desc
            - item_count_per_appearance_order_trend: [{'id': trend, 'count': n}] sorted by count desc
            - top_entities: Top 10 entities by influence as (value, influence) pairs
    """
    source_counts: Dict[str, int] = {}
    trend_counts: Dict[str, int] = {}

    for entity in entities:
        for source_id, mentions in (entity.get('mentions_by_source') or {}).items():
            if (mentions or 0) > 0:
                source_counts[source_id] = source_counts.get(source_id, 0) + 1

        trend = entity.get('appearance_order_trend') or TrendIndicator.UNKNOWN.value
        trend_counts[trend] = trend_counts.get(trend, 0) + 1

    ranked = sorted(entities, key=lambda e: (-(e.get('influence') or 0), str(e.get('value', ''))))

    return {
        'total_items': len(entities),
        'total_mentions': sum((e.get('mentions') or 0) for e in entities),
        'item_count_per_source': [
            {'id': source_id, 'count': count}
            for source_id, count in sorted(source_counts.items(), key=lambda x: (-x[1], x[0]))
        ],
        'item_count_per_appearance_order_trend': [
            {'id': trend, 'count': count}
            for trend, count in sorted(trend_counts.items(), key=lambda x: (-x[1], x[0]))
        ],
        'top_entities': [(e.get('value'), e.get('influence') or 0.0) for e in ranked[:10]],
    }
