"""
Temporal trend tracking for one category+scope.

Compares the current snapshot against up to K prior snapshots of the same scope
(same project, same question or the aggregate). The discrete trend of each
metric is decided only by the most recent prior snapshot; time series and
volatility use the whole window.
"""

import enum
import numpy as np
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from settings import TREND_WINDOW, TREND_WINDOW_MAX
from domain.entities import NEVER_APPEARED, entity_key, index_entities


class TrendIndicator(enum.Enum):
    """Trajectory of a metric versus the previous snapshot."""
    UP = "up"                    # current > previous
    DOWN = "down"                # current < previous
    STABLE = "stable"            # current == previous, both > 0
    NEW = "new"                  # no previous value, current > 0
    DISAPPEARED = "disappeared"  # previous > 0, current == 0
    UNKNOWN = "unknown"          # no data either side


# Metrics tracked at entity level: (field, per-source field or None)
TRACKED_METRICS = (
    ('mentions', 'mentions_by_source'),
    ('influence', 'influence_by_source'),
    ('appearance_order', 'appearance_order_by_source'),
    ('unique_source_count', None),
)


def calculate_trend(current, previous=None) -> TrendIndicator:
    """
    Classify current vs previous value.

    Examples:
        >>> calculate_trend(5, None)
        <TrendIndicator.NEW: 'new'>
        >>> calculate_trend(0, 7)
        <TrendIndicator.DISAPPEARED: 'disappeared'>
    """
    current = current or 0
    if previous is None or previous == 0:
        return TrendIndicator.NEW if current > 0 else TrendIndicator.UNKNOWN
    if current == 0 and previous > 0:
        return TrendIndicator.DISAPPEARED
    if current > previous:
        return TrendIndicator.UP
    if current < previous:
        return TrendIndicator.DOWN
    return TrendIndicator.STABLE


def calculate_change_percent(current: int, previous: int) -> float:
    """Percent change of mentions, 100 for a new entity, 0 when both are 0."""
    current = current or 0
    previous = previous or 0
    if previous > 0:
        return round((current - previous) / previous * 100, 1)
    if current > 0:
        return 100.0
    return 0.0


def calculate_volatility(values: Sequence[float]) -> float:
    """Population standard deviation; 0 with fewer than two points."""
    if len(values) < 2:
        return 0.0
    return round(float(np.std(np.asarray(values, dtype=float))), 2)


def _metric_value(entity: Optional[dict], field: str):
    """Value used for trend classification; absent or sentinel orders become 0."""
    if entity is None:
        return None
    value = entity.get(field)
    if field == 'unique_source_count' and value is None:
        value = entity.get('source_count')
    if field == 'appearance_order':
        return value if value is not None and value > 0 else 0
    return value or 0


def _series_value(entity: dict, field: str):
    """Value stored in *_trend_vals arrays (-1 for a missing appearance order)."""
    if field == 'appearance_order':
        value = entity.get(field)
        return value if value is not None and value > 0 else NEVER_APPEARED
    return _metric_value(entity, field)


def _source_value(entity: Optional[dict], field: str, source_id: str):
    if entity is None:
        return None
    value = (entity.get(field) or {}).get(source_id)
    if field == 'appearance_order_by_source':
        return value if value is not None and value > 0 else 0
    return value or 0


class TrendTracker:
    """Attach trend classifications and time-series fields to entities."""

    def __init__(self, window: int = TREND_WINDOW, max_window: int = TREND_WINDOW_MAX):
        """
        Initialize tracker.

        Args:
            window: Number of prior snapshots to compare against
            max_window: Hard cap on the window
        """
        self.window = max(0, min(window, max_window))

    def prepare_history(
        self,
        current_date: str,
        history: Iterable[Tuple[str, Optional[List[dict]]]]
    ) -> List[Tuple[str, Dict[str, dict]]]:
        """
        Filter, order and index prior snapshots.

        Drops dates on or after current_date and snapshots that are missing
        or unreadable, sorts newest first and keeps at most `window` entries.
        """
        usable = []
        seen_dates = set()
        for date, entities in history:
            if not date or date >= current_date or date in seen_dates:
                continue
            if not isinstance(entities, list):
                continue
            seen_dates.add(date)
            usable.append((date, entities))

        usable.sort(key=lambda pair: pair[0], reverse=True)
        usable = usable[:self.window]

        return [(date, index_entities(dict(e) for e in entities)) for date, entities in usable]

    def track(
        self,
        entities: List[dict],
        current_date: str,
        history: Iterable[Tuple[str, Optional[List[dict]]]],
        source_ids: Optional[Iterable[str]] = None
    ) -> List[dict]:
        """
        Compute trends for every entity in the current snapshot.

        Args:
            entities: Current snapshot entities (mutated in place)
            current_date: Date of the current snapshot (YYYY-MM-DD)
            history: (date, entities) pairs for prior snapshots; entities may be
                None for a date whose snapshot is missing or unreadable
            source_ids: Sources to build per-source trends for; defaults to every
                source seen in the entity and its history

        Returns:
            The same entity list.
        """
        prepared = self.prepare_history(current_date, history)
        most_recent = prepared[0][1] if prepared else None

        for entity in entities:
            key = entity_key(entity)
            if not key:
                continue

            matches = [
                (date, snapshot[key])
                for date, snapshot in prepared
                if key in snapshot
            ]
            previous = most_recent.get(key) if most_recent is not None else None

            self._apply_entity_trends(entity, previous, matches, current_date)
            self._apply_source_trends(entity, previous, matches, current_date, source_ids)
            self._apply_history_stats(entity, previous, matches, current_date)

        return entities

    def _apply_entity_trends(self, entity, previous, matches, current_date):
        for field, _ in TRACKED_METRICS:
            entity[f'{field}_trend_vals'] = [{'date': current_date, 'value': _series_value(entity, field)}] + [
                {'date': date, 'value': _series_value(prior, field)}
                for date, prior in matches
            ]
            trend = calculate_trend(_metric_value(entity, field), _metric_value(previous, field))
            entity[f'{field}_trend'] = trend.value

        entity['trend'] = entity['mentions_trend']

    def _apply_source_trends(self, entity, previous, matches, current_date, source_ids):
        if source_ids is None:
            ids = []
            for candidate in [entity] + [prior for _, prior in matches]:
                for _, by_source in TRACKED_METRICS:
                    if by_source is None:
                        continue
                    for source_id in candidate.get(by_source) or {}:
                        if source_id not in ids:
                            ids.append(source_id)
        else:
            ids = list(source_ids)

        for _, by_source in TRACKED_METRICS:
            if by_source is None:
                continue

            missing = NEVER_APPEARED if by_source == 'appearance_order_by_source' else 0
            trends = {}
            series = {}
            for source_id in ids:
                series[source_id] = [
                    {'date': date, 'value': (snapshot.get(by_source) or {}).get(source_id) or missing}
                    for date, snapshot in [(current_date, entity)] + matches
                ]
                trends[source_id] = calculate_trend(
                    _source_value(entity, by_source, source_id),
                    _source_value(previous, by_source, source_id)
                ).value

            entity[f'{by_source}_trend'] = trends
            entity[f'{by_source}_trend_vals'] = series

    def _apply_history_stats(self, entity, previous, matches, current_date):
        current_mentions = entity.get('mentions') or 0
        previous_mentions = (previous.get('mentions') or 0) if previous is not None else 0

        entity['previous_mentions'] = previous_mentions
        entity['mentions_change'] = current_mentions - previous_mentions
        entity['change_percent'] = calculate_change_percent(current_mentions, previous_mentions)

        entity['mentions_history'] = [{'date': current_date, 'mentions': current_mentions}] + [
            {'date': date, 'mentions': prior.get('mentions') or 0}
            for date, prior in matches
        ]
        entity['volatility'] = calculate_volatility([h['mentions'] for h in entity['mentions_history']])

        entity['last_seen'] = current_date
        entity['first_seen'] = matches[-1][0] if matches else current_date
