"""
Convert first-appearance character offsets into ordinal appearance orders.

For every source, entities are ranked by where they first appear in that
source's answer (1 = first entity mentioned). The entity-level appearance
order is the average of its per-source ranks.
"""

from typing import Dict, Iterable, List, Optional

from domain.entities import (
    NEVER_APPEARED,
    UNKNOWN_POSITION,
    average_order,
    positive_sources,
)


def rank_appearance_order(entities: List[dict], source_ids: Optional[Iterable[str]] = None) -> List[dict]:
    """
    Populate appearance_order_by_source and appearance_order.

    Reads first_appearance_char_by_source (source id -> character offset,
    negative when not found). Entities mentioned by a source without a known
    offset get UNKNOWN_POSITION for that source; unmentioned entities get
    NEVER_APPEARED.

    Args:
        entities: Entities of one category in one question (mutated in place)
        source_ids: Sources to consider; defaults to every source seen

    Returns:
        The same entity list.
    """
    offsets_by_source: Dict[str, List[tuple]] = {}

    for idx, entity in enumerate(entities):
        for source_id, offset in (entity.get('first_appearance_char_by_source') or {}).items():
            # Offset 0 is a real match at the very start of the answer
            if offset is None or offset < 0:
                continue
            offsets_by_source.setdefault(source_id, []).append((offset, idx))

    ranks: Dict[int, Dict[str, int]] = {}
    for source_id, offsets in offsets_by_source.items():
        if source_ids is not None and source_id not in source_ids:
            continue
        # Ties broken by original entity order for determinism
        for position, (_, idx) in enumerate(sorted(offsets), start=1):
            ranks.setdefault(idx, {})[source_id] = position

    for idx, entity in enumerate(entities):
        mentions = entity.get('mentions') or 0
        by_source = dict(ranks.get(idx, {}))

        for source_id in positive_sources(entity.get('mentions_by_source')):
            by_source.setdefault(source_id, UNKNOWN_POSITION)

        if not mentions:
            entity['appearance_order_by_source'] = {}
            entity['appearance_order'] = NEVER_APPEARED
            continue

        entity['appearance_order_by_source'] = by_source
        entity['appearance_order'] = average_order(by_source.values(), mentions)

    return entities
