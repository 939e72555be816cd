"""
Database package for entity analytics.
"""

from .models import Base, Snapshot, AggregationRun
from .database import Database

__all__ = ['Base', 'Snapshot', 'AggregationRun', 'Database']
