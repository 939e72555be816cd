"""
Aggregation run logging system.

Provides context manager and logger class for tracking pipeline runs,
including counts, timing, rollup warnings and errors.
"""

from contextlib import contextmanager
from dataclasses import asdict, is_dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional


class AggregationRunLogger:
    """
    Logger for aggregation pipeline runs.

    Tracks what a run processed, the non-fatal warnings raised while merging
    (suspicious rollup counts, skipped history) and the final status.
    """

    def __init__(self, project: str, date: str, db_path: Optional[str] = None):
        """
        Initialize logger.

        Args:
            project: Project name
            date: Snapshot date being processed (YYYY-MM-DD)
            db_path: Logs database path (defaults to LOGS_DB_PATH setting)
        """
        self.project = project
        self.date = date
        self.db_path = db_path

        # Timing
        self.started_at = datetime.utcnow()
        self.completed_at: Optional[datetime] = None
        self.duration_seconds: Optional[float] = None

        # Counters
        self.questions_processed = 0
        self.categories_processed = 0
        self.entities_scored = 0
        self.history_dates_skipped = 0

        # Warnings (list of dicts, JSON-serializable)
        self.warnings: List[Dict[str, Any]] = []

        # Status
        self.success: bool = True
        self.error_message: Optional[str] = None
        self.log_id: Optional[int] = None

    def add_warning(self, warning, category: Optional[str] = None, context: Optional[dict] = None):
        """Record a SuspiciousAggregate (or any dataclass/dict) warning."""
        if is_dataclass(warning):
            data = asdict(warning)
            data['kind'] = type(warning).__name__
        else:
            data = dict(warning)
            data.setdefault('kind', 'warning')
        data['category'] = category
        if context:
            data['question'] = context.get('question')
        self.warnings.append(data)

    def add_note(self, message: str, **details):
        """Record a free-form warning (e.g. a skipped history date)."""
        self.warnings.append({'kind': 'note', 'message': message, **details})

    def mark_success(self):
        """Mark run as successful and calculate duration."""
        self.completed_at = datetime.utcnow()
        self.duration_seconds = (self.completed_at - self.started_at).total_seconds()
        self.success = True

    def mark_error(self, error_message: str):
        """Mark run as failed with error message."""
        self.completed_at = datetime.utcnow()
        self.duration_seconds = (self.completed_at - self.started_at).total_seconds()
        self.success = False
        self.error_message = error_message

    def save(self):
        """
        Save log entry to the logs database.

        Uses its own engine and session so a failing pipeline transaction
        never prevents the run from being recorded.
        """
        from db import Database
        from db.models import AggregationRun
        from settings import LOGS_DB_PATH

        try:
            db = Database(self.db_path or LOGS_DB_PATH)
        except Exception as e:
            import sys
            print(f"Warning: Failed to open aggregation run log database: {e}", file=sys.stderr)
            return

        session = db.get_session()

        try:
            log_entry = AggregationRun(
                project=self.project,
                date=self.date,
                started_at=self.started_at,
                completed_at=self.completed_at,
                duration_seconds=self.duration_seconds,
                questions_processed=self.questions_processed,
                categories_processed=self.categories_processed,
                entities_scored=self.entities_scored,
                history_dates_skipped=self.history_dates_skipped,
                warnings=self.warnings if self.warnings else None,
                success=1 if self.success else 0,
                error_message=self.error_message
            )

            session.add(log_entry)
            session.commit()

            self.log_id = log_entry.id

        except Exception as e:
            # Logging shouldn't crash the pipeline
            session.rollback()
            import sys
            print(f"Warning: Failed to save aggregation run log: {e}", file=sys.stderr)

        finally:
            session.close()
            db.engine.dispose()


@contextmanager
def log_aggregation_run(project: str, date: str, db_path: Optional[str] = None):
    """
    Context manager for logging a pipeline run.

    Example:
        >>> with log_aggregation_run('acme', '2025-01-31') as run_logger:
        ...     aggregate_project_date(db, session, 'acme', '2025-01-31', config, run_logger=run_logger)
    """
    run_logger = AggregationRunLogger(project, date, db_path=db_path)

    try:
        yield run_logger
        run_logger.mark_success()
    except Exception as e:
        run_logger.mark_error(str(e))
        raise
    finally:
        run_logger.save()
