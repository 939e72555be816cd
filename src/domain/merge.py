"""
Merge per-question entity snapshots into one project-level rollup.

Two mention totals are kept on purpose:
- mentions: sum over sources of the peak count each source gave the entity in
  any single question. A source repeating an entity across many unrelated
  questions does not inflate the score.
- mentions_by_source: straight sum across questions, for per-source views.
"""

import sys
from typing import Dict, Iterable, List, Optional, Union

from settings import SUSPICIOUS_MENTIONS_PER_SOURCE
from domain.config import CategoryRegistry, SourceConfig
from domain.entities import (
    TREND_FIELDS,
    average_order,
    entity_key,
    index_entities,
    is_valid_order,
    refresh_source_count,
)
from domain.errors import MissingUpstreamDataError, SuspiciousAggregate
from domain.influence import InfluenceScorer


# Per-scope fields that are recomputed for the rollup instead of copied
_RECOMPUTED_FIELDS = (
    'mentions', 'mentions_by_source', 'appearance_order', 'appearance_order_by_source',
    'influence', 'influence_by_source', 'source_count', 'unique_source_count',
    'excerpts_by_source', 'first_appearance_char_by_source', 'sources',
    'mentions_as_percent', 'mentions_as_percent_by_source',
) + TREND_FIELDS


class CrossQueryMerger:
    """Roll per-question snapshots of one category up to project level."""

    def __init__(
        self,
        sources: Iterable[Union[SourceConfig, dict]],
        registry: Optional[CategoryRegistry] = None,
        scorer: Optional[InfluenceScorer] = None,
        mentions_ceiling_per_source: int = SUSPICIOUS_MENTIONS_PER_SOURCE
    ):
        self.sources = list(sources)
        self.registry = registry or CategoryRegistry()
        self.scorer = scorer or InfluenceScorer(self.sources, self.registry)
        self.mentions_ceiling_per_source = mentions_ceiling_per_source

    def merge(
        self,
        snapshots: Dict[str, Optional[List[dict]]],
        category: str,
        question_texts: Optional[Dict[str, str]] = None,
        context: Optional[dict] = None,
        run_logger=None
    ) -> List[dict]:
        """
        Merge question snapshots and re-score the result.

        Args:
            snapshots: Question id -> entity list, in question order
            category: Category being merged
            question_texts: Question id -> question text, used to tag excerpts
            context: Optional project/date for error messages and warnings
            run_logger: Optional AggregationRunLogger collecting warnings

        Returns:
            Rolled-up entity list with influence recomputed on the merged set.

        Raises:
            MissingUpstreamDataError: a question's snapshot is None
        """
        context = context or {}
        question_texts = question_texts or {}

        # Fail before doing any work if a contributing snapshot is missing
        for question_id, entities in snapshots.items():
            if entities is None:
                raise MissingUpstreamDataError(
                    "Question snapshot missing for rollup",
                    project=context.get('project'),
                    date=context.get('date'),
                    category=category,
                    question=question_id
                )

        if not snapshots:
            return []

        # Validates the category before merging anything
        self.registry.kind_of(category)

        merged: Dict[str, dict] = {}
        peaks: Dict[str, Dict[str, int]] = {}

        for question_id, entities in snapshots.items():
            # Copies so the question snapshots are left untouched
            indexed = index_entities(dict(entity) for entity in entities)
            for key, item in indexed.items():
                entry = merged.get(key)
                if entry is None:
                    entry = self._seed(item)
                    merged[key] = entry
                    peaks[key] = {}

                self._fold(entry, peaks[key], item, question_id, question_texts.get(question_id, question_id))

        for key, entry in merged.items():
            self._finalize(entry, peaks[key])
        items = list(merged.values())

        self._check_ceiling(items, len(snapshots), category, context, run_logger)

        return self.scorer.score(items, category, context=context)

    def _seed(self, item: dict) -> dict:
        entry = {k: v for k, v in item.items() if k not in _RECOMPUTED_FIELDS}
        entry.update({
            'mentions': 0,
            'mentions_by_source': {},
            'mentions_by_question': {},
            'influence_by_question': {},
            'appearance_order_by_question': {},
            'mentions_by_source_by_question': {},
            'appearance_order_by_source_by_question': {},
            'excerpts_by_source': {},
        })
        return entry

    def _fold(self, entry: dict, peak: Dict[str, int], item: dict, question_id: str, question_text: str):
        by_source = item.get('mentions_by_source') or {}

        entry['mentions_by_question'][question_id] = item.get('mentions') or 0
        entry['influence_by_question'][question_id] = item.get('influence') or 0
        entry['appearance_order_by_question'][question_id] = item.get('appearance_order', -1)
        entry['mentions_by_source_by_question'][question_id] = dict(by_source)
        entry['appearance_order_by_source_by_question'][question_id] = dict(
            item.get('appearance_order_by_source') or {}
        )

        for source_id, count in by_source.items():
            count = count or 0
            peak[source_id] = max(peak.get(source_id, 0), count)
            entry['mentions_by_source'][source_id] = entry['mentions_by_source'].get(source_id, 0) + count

        # Entities without a per-source breakdown still count once per question
        if not by_source and (item.get('mentions') or 0) > 0:
            peak[''] = max(peak.get('', 0), item['mentions'])

        for source_id, excerpts in (item.get('excerpts_by_source') or {}).items():
            tagged = entry['excerpts_by_source'].setdefault(source_id, [])
            for excerpt in excerpts or []:
                tagged.append({**excerpt, 'question': question_text, 'question_id': question_id})

        # Member links of derived link categories
        for member in item.get('sources') or []:
            entry.setdefault('sources', []).append({**member, 'question_id': question_id})

    def _finalize(self, entry: dict, peak: Dict[str, int]):
        entry['mentions'] = sum(peak.values())
        entry['mentions_by_source'] = {
            source_id: count for source_id, count in entry['mentions_by_source'].items() if count > 0
        }
        refresh_source_count(entry)

        question_orders = entry['appearance_order_by_question'].values()
        entry['appearance_order'] = average_order(question_orders, entry['mentions'])

        samples: Dict[str, List[float]] = {}
        for orders in entry['appearance_order_by_source_by_question'].values():
            for source_id, order in orders.items():
                bucket = samples.setdefault(source_id, [])
                if is_valid_order(order):
                    bucket.append(order)

        order_by_source = {}
        for source_id in sorted(set(samples) | set(entry['mentions_by_source'])):
            mentions = entry['mentions_by_source'].get(source_id, 0)
            if not mentions and not samples.get(source_id):
                continue
            order_by_source[source_id] = average_order(samples.get(source_id, []), mentions)
        entry['appearance_order_by_source'] = order_by_source

        if not entry['excerpts_by_source']:
            del entry['excerpts_by_source']

    def _check_ceiling(self, items, question_count, category, context, run_logger):
        if self.sources:
            source_count = len(self.sources)
        else:
            source_count = len({s for item in items for s in item.get('mentions_by_source', {})})
        ceiling = max(source_count, 1) * question_count * self.mentions_ceiling_per_source

        for item in items:
            if item['mentions'] <= ceiling:
                continue

            warning = SuspiciousAggregate(
                key=entity_key(item),
                value=item.get('value'),
                mentions=item['mentions'],
                mentions_by_source=dict(item['mentions_by_source']),
                ceiling=ceiling,
                source_count=source_count,
                question_count=question_count
            )
            print(
                f"Warning: Suspiciously high mention count for \"{warning.value}\" in {category}: "
                f"{warning.mentions} mentions (max reasonable: {ceiling}; "
                f"sources: {source_count}, questions: {question_count}; "
                f"by source: {warning.mentions_by_source})",
                file=sys.stderr
            )
            if run_logger is not None:
                run_logger.add_warning(warning, category=category, context=context)
