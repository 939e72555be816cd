"""
Influence scoring for one category of entities in one scope.

Influence rewards entities that are:
- mentioned by more sources, and by more heavily weighted sources
- mentioned earlier in those sources' answers (lower appearance order)
- mentioned more often

Per-source contribution = normalized source weight × prominence(appearance order),
and the sum of contributions is scaled by a mention factor normalized against the
largest mention count in the scope. The mention factor is logarithmic so one
outlier entity cannot compress every other score towards zero.

After raw scores are computed the whole scope is rescaled according to the
category kind:
- open categories: max influence == 1.0
- closed categories: sum of influence == 1.0 (market share)
"""

import math
import numpy as np
from typing import Dict, Iterable, List, Optional, Union

from domain.config import CategoryRegistry, SourceConfig
from domain.entities import (
    UNKNOWN_POSITION,
    index_entities,
    is_valid_order,
    positive_sources,
    refresh_source_count,
)
from domain.errors import MissingUpstreamDataError
from domain.source_weights import normalize_source_weights


def calculate_prominence(appearance_order) -> float:
    """
    Score how prominently an entity appears in an answer.

    Logarithmic decay: order 1 = 1.0, order 2 = 0.63, order 5 = 0.39.
    Missing or invalid orders count as UNKNOWN_POSITION, never as 0.
    """
    if not is_valid_order(appearance_order):
        appearance_order = UNKNOWN_POSITION
    return 1.0 / math.log2(appearance_order + 1)


def mention_factor(mentions: int, max_mentions: int) -> float:
    """Log-damped mention count normalized to 0.0-1.0 by the scope maximum."""
    if not mentions or not max_mentions or mentions <= 0:
        return 0.0
    return math.log1p(mentions) / math.log1p(max_mentions)


def _rescale(values: np.ndarray, closed: bool) -> np.ndarray:
    if values.size == 0:
        return values
    divisor = values.sum() if closed else values.max()
    if divisor <= 0:
        return np.zeros_like(values)
    return values / divisor


class InfluenceScorer:
    """Compute influence and influence_by_source for a category+scope."""

    def __init__(
        self,
        sources: Iterable[Union[SourceConfig, dict]],
        registry: Optional[CategoryRegistry] = None,
        weights: Optional[Dict[str, float]] = None
    ):
        """
        Initialize scorer.

        Args:
            sources: Configured sources with raw weights
            registry: Category registry deciding open/closed normalization
            weights: Pre-normalized weights (reused across categories of a date);
                computed from sources when omitted
        """
        self.sources = list(sources)
        self.registry = registry or CategoryRegistry()
        self.weights = weights if weights is not None else normalize_source_weights(self.sources)

    @staticmethod
    def _weight(source_id: str, weights: Dict[str, float]) -> float:
        # Without weights every source counts the same
        if not weights:
            return 1.0
        return weights.get(source_id, 0.0)

    def _raw_influence(self, entity: dict, max_mentions: int, weights: Dict[str, float]) -> float:
        mentions = entity.get('mentions') or 0
        factor = mention_factor(mentions, max_mentions)
        if factor == 0.0:
            return 0.0

        orders = entity.get('appearance_order_by_source') or {}
        mentioned_by = positive_sources(entity.get('mentions_by_source'))

        if not mentioned_by:
            # No per-source breakdown: average source weight, entity-level order
            average_weight = (1.0 / len(weights)) if weights else 1.0
            return factor * average_weight * calculate_prominence(entity.get('appearance_order'))

        contribution = sum(
            self._weight(source_id, weights) * calculate_prominence(orders.get(source_id))
            for source_id in mentioned_by
        )
        return factor * contribution

    def _raw_influence_by_source(
        self,
        entity: dict,
        max_by_source: Dict[str, int],
        weights: Dict[str, float]
    ) -> Dict[str, float]:
        orders = entity.get('appearance_order_by_source') or {}
        result = {}
        for source_id in positive_sources(entity.get('mentions_by_source')):
            count = entity['mentions_by_source'][source_id]
            result[source_id] = (
                self._weight(source_id, weights)
                * calculate_prominence(orders.get(source_id))
                * mention_factor(count, max_by_source.get(source_id, 0))
            )
        return result

    def score(self, entities: Optional[List[dict]], category: str, context: Optional[dict] = None) -> List[dict]:
        """
        Score all entities of one category+scope.

        Args:
            entities: Entity dicts for the scope (left untouched)
            category: Category name (must be registered as open or closed)
            context: Optional project/date/question for error messages

        Returns:
            The de-duplicated entity list with influence fields populated.

        Raises:
            MissingUpstreamDataError: entities is None
            ConfigurationGapError: category kind is unknown
        """
        context = context or {}
        if entities is None:
            raise MissingUpstreamDataError(
                "No entities to score",
                project=context.get('project'),
                date=context.get('date'),
                category=category,
                question=context.get('question')
            )

        closed = self.registry.is_closed(category)
        # Copies so rescoring the same snapshot folds duplicates only once
        items = list(index_entities(dict(entity) for entity in entities).values())
        if not items:
            return items

        # STEP 1: scope maxima
        max_mentions = max((item.get('mentions') or 0) for item in items)
        max_by_source: Dict[str, int] = {}
        for item in items:
            for source_id, count in (item.get('mentions_by_source') or {}).items():
                if (count or 0) > max_by_source.get(source_id, 0):
                    max_by_source[source_id] = count

        # STEP 2: raw scores
        raw = np.array([self._raw_influence(item, max_mentions, self.weights) for item in items], dtype=float)
        if raw.sum() <= 0 and max_mentions > 0:
            # Every mention came from zero-weight sources: score them equally
            raw = np.array([self._raw_influence(item, max_mentions, {}) for item in items], dtype=float)

        raw_by_source = [self._raw_influence_by_source(item, max_by_source, self.weights) for item in items]
        unweighted_by_source = None

        # STEP 3: rescale across the scope
        scaled = _rescale(raw, closed)

        column_ids = sorted({source_id for row in raw_by_source for source_id in row})
        columns = {}
        for source_id in column_ids:
            column = np.array([row.get(source_id, 0.0) for row in raw_by_source], dtype=float)
            if column.sum() <= 0:
                if unweighted_by_source is None:
                    unweighted_by_source = [
                        self._raw_influence_by_source(item, max_by_source, {}) for item in items
                    ]
                column = np.array([row.get(source_id, 0.0) for row in unweighted_by_source], dtype=float)
            columns[source_id] = _rescale(column, closed)

        for idx, item in enumerate(items):
            refresh_source_count(item)
            if not item.get('mentions'):
                item['influence'] = 0.0
                item['influence_by_source'] = {}
                continue

            item['influence'] = float(scaled[idx])
            item['influence_by_source'] = {
                source_id: float(columns[source_id][idx])
                for source_id in raw_by_source[idx]
            }

        return items


def calculate_mention_shares(entities: List[dict], source_ids: Optional[Iterable[str]] = None) -> List[dict]:
    """
    Add mentions_as_percent and mentions_as_percent_by_source (0.0-1.0).

    Shares are relative to the totals of the scope: overall mentions of all
    entities, and per source the mentions that source gave all entities.
    """
    if source_ids is None:
        seen = []
        for entity in entities:
            for source_id in (entity.get('mentions_by_source') or {}):
                if source_id not in seen:
                    seen.append(source_id)
        source_ids = seen
    source_ids = list(source_ids)

    total = sum((entity.get('mentions') or 0) for entity in entities)
    totals_by_source = {
        source_id: sum((entity.get('mentions_by_source') or {}).get(source_id, 0) for entity in entities)
        for source_id in source_ids
    }

    for entity in entities:
        entity['mentions_as_percent'] = (entity.get('mentions') or 0) / total if total > 0 else 0.0
        by_source = entity.get('mentions_by_source') or {}
        entity['mentions_as_percent_by_source'] = {
            source_id: (by_source.get(source_id, 0) / totals_by_source[source_id])
            if totals_by_source[source_id] > 0 else 0.0
            for source_id in source_ids
        }

    return entities
