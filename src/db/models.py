"""
SQLAlchemy models for entity analytics.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, Float, JSON, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Snapshot(Base):
    """Entities of one category for one project/question/date."""
    __tablename__ = 'snapshots'

    id = Column(Integer, primary_key=True)
    project = Column(String(255), nullable=False, index=True)
    question = Column(String(255), nullable=False)   # Question id or '_aggregate'
    category = Column(String(64), nullable=False)    # products, links, linkTypes, ...
    date = Column(String(10), nullable=False)        # YYYY-MM-DD, sorts lexicographically

    # Entity list serialized as JSON text (parsed on read so corrupt rows can be skipped)
    entities = Column(Text, nullable=False)
    entity_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('project', 'question', 'category', 'date', name='uq_snapshot_scope_date'),
        Index('idx_snapshot_scope', 'project', 'question', 'category', 'date'),
        Index('idx_snapshot_project_date', 'project', 'date'),
    )

    def __repr__(self):
        return f"<Snapshot(project='{self.project}', question='{self.question}', category='{self.category}', date='{self.date}')>"


class AggregationRun(Base):
    """Log of aggregation pipeline runs."""
    __tablename__ = 'aggregation_runs'

    id = Column(Integer, primary_key=True)

    # Execution metadata
    project = Column(String(255), nullable=False, index=True)
    date = Column(String(10), nullable=False, index=True)
    started_at = Column(DateTime, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Counters
    questions_processed = Column(Integer, nullable=False, default=0)
    categories_processed = Column(Integer, nullable=False, default=0)
    entities_scored = Column(Integer, nullable=False, default=0)
    history_dates_skipped = Column(Integer, nullable=False, default=0)

    # Non-fatal warnings: [{"kind": "SuspiciousAggregate", "value": "...", "mentions": 120, ...}]
    warnings = Column(JSON, nullable=True)

    # Success/error tracking
    success = Column(Integer, nullable=False, default=1, index=True)  # 1=success, 0=error
    error_message = Column(Text, nullable=True)

    def __repr__(self):
        return f"<AggregationRun(project='{self.project}', date='{self.date}', success={self.success})>"
