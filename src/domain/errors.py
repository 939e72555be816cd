"""
Errors raised by the aggregation engine.

Fatal errors (missing upstream data, configuration gaps) abort processing of a
single category+scope and carry enough context for the caller to decide
whether to halt or skip. Missing historical data is recoverable and is only
raised by the snapshot store so the history loader can skip that date.
"""

from dataclasses import dataclass
from typing import Dict, Optional


class AggregationError(Exception):
    """Base class for aggregation engine errors."""

    def __init__(
        self,
        message: str,
        project: Optional[str] = None,
        date: Optional[str] = None,
        category: Optional[str] = None,
        question: Optional[str] = None
    ):
        self.project = project
        self.date = date
        self.category = category
        self.question = question
        self.reason = message
        super().__init__(self._format(message))

    def _format(self, message: str) -> str:
        parts = [
            f"{name}={value}"
            for name, value in (
                ('project', self.project),
                ('date', self.date),
                ('category', self.category),
                ('question', self.question),
            )
            if value is not None
        ]
        if not parts:
            return message
        return f"{message} ({', '.join(parts)})"

    @property
    def context(self) -> dict:
        return {
            'project': self.project,
            'date': self.date,
            'category': self.category,
            'question': self.question,
        }


class MissingUpstreamDataError(AggregationError):
    """A snapshot for the current date is missing; nothing to score or merge."""


class MissingHistoricalDataError(AggregationError):
    """A prior-date snapshot is absent or unreadable."""


class ConfigurationGapError(AggregationError):
    """A category has no open/closed classification."""


@dataclass
class SuspiciousAggregate:
    """Non-fatal rollup warning: mentions above the plausibility ceiling."""
    key: str  # Identity key
    value: Optional[str]  # Display value
    mentions: int  # Rolled-up (peak-per-source) mentions
    mentions_by_source: Dict[str, int]  # Summed per-source mentions
    ceiling: int  # sources x questions x per-source limit
    source_count: int
    question_count: int
