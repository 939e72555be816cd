"""
Normalize configured source weights into a distribution summing to 1.0.
"""

from typing import Dict, Iterable, Union

from domain.config import SourceConfig


def normalize_source_weights(sources: Iterable[Union[SourceConfig, dict]]) -> Dict[str, float]:
    """
    Normalize raw source weights so they sum to 1.0.

    Args:
        sources: SourceConfig objects (or dicts with 'id' and optional 'weight')

    Returns:
        Dict mapping source id -> normalized weight. Empty when no sources are
        given. When every raw weight is zero each source gets 1/N.
    """
    raw: Dict[str, float] = {}
    for source in sources:
        if not isinstance(source, SourceConfig):
            source = SourceConfig.model_validate(source)
        raw[source.id] = source.weight

    if not raw:
        return {}

    total = sum(raw.values())
    if total <= 0:
        equal = 1.0 / len(raw)
        return {source_id: equal for source_id in raw}

    return {source_id: weight / total for source_id, weight in raw.items()}
