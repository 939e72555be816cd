"""
Database connection and snapshot store operations.
"""

import json
from pathlib import Path
from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from settings import DATA_DB_PATH
from domain.errors import MissingHistoricalDataError
from .models import Base, Snapshot


class Database:
    """Database manager for entity snapshots."""

    def __init__(self, db_path: str = DATA_DB_PATH):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        # Ensure data directory exists
        db_file = Path(db_path)
        db_file.parent.mkdir(parents=True, exist_ok=True)

        # Create engine and session
        self.engine = create_engine(f'sqlite:///{db_path}', echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine)

        # Create tables if they don't exist
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    def save_snapshot(
        self,
        session: Session,
        project: str,
        question: str,
        category: str,
        date: str,
        entities: List[dict]
    ) -> Snapshot:
        """
        Create or replace the snapshot for a scope and date.

        Args:
            session: Database session
            project: Project name
            question: Question id (or the aggregate pseudo-question)
            category: Category name
            date: Snapshot date (YYYY-MM-DD)
            entities: Entity dicts (must be JSON-serializable)

        Returns:
            Snapshot object
        """
        snapshot = session.query(Snapshot).filter_by(
            project=project, question=question, category=category, date=date
        ).first()

        payload = json.dumps(entities, ensure_ascii=False)

        if snapshot is None:
            snapshot = Snapshot(
                project=project,
                question=question,
                category=category,
                date=date,
                entities=payload,
                entity_count=len(entities)
            )
            session.add(snapshot)
        else:
            snapshot.entities = payload
            snapshot.entity_count = len(entities)
            snapshot.updated_at = datetime.utcnow()

        session.flush()
        return snapshot

    @staticmethod
    def load_entities(snapshot: Snapshot) -> List[dict]:
        """
        Parse the entity list of a snapshot row.

        Raises:
            MissingHistoricalDataError: The stored payload is not a JSON list
        """
        try:
            entities = json.loads(snapshot.entities)
        except (TypeError, ValueError) as e:
            raise MissingHistoricalDataError(
                f"Unreadable snapshot payload: {e}",
                project=snapshot.project,
                date=snapshot.date,
                category=snapshot.category,
                question=snapshot.question
            )

        if not isinstance(entities, list):
            raise MissingHistoricalDataError(
                "Snapshot payload is not a list of entities",
                project=snapshot.project,
                date=snapshot.date,
                category=snapshot.category,
                question=snapshot.question
            )

        return entities

    def get_snapshot(
        self,
        session: Session,
        project: str,
        question: str,
        category: str,
        date: str
    ) -> Optional[List[dict]]:
        """
        Get entities of one snapshot.

        Returns:
            Entity list, or None when no snapshot exists
        """
        snapshot = session.query(Snapshot).filter_by(
            project=project, question=question, category=category, date=date
        ).first()

        if snapshot is None:
            return None

        return self.load_entities(snapshot)

    def get_snapshot_history(
        self,
        session: Session,
        project: str,
        question: str,
        category: str,
        before_date: str,
        limit: int
    ) -> List[Tuple[str, Optional[List[dict]]]]:
        """
        Get prior snapshots of a scope, newest first.

        Unreadable snapshots are returned as (date, None) so callers can treat
        that date as having no data.

        Args:
            session: Database session
            project: Project name
            question: Question id (or the aggregate pseudo-question)
            category: Category name
            before_date: Only dates strictly before this one
            limit: Maximum number of snapshots

        Returns:
            List of (date, entities or None)
        """
        if limit <= 0:
            return []

        rows = session.query(Snapshot).filter(
            Snapshot.project == project,
            Snapshot.question == question,
            Snapshot.category == category,
            Snapshot.date < before_date
        ).order_by(Snapshot.date.desc()).limit(limit).all()

        history = []
        for row in rows:
            try:
                history.append((row.date, self.load_entities(row)))
            except MissingHistoricalDataError:
                history.append((row.date, None))

        return history

    def list_questions(self, session: Session, project: str, date: str, exclude: Optional[str] = None) -> List[str]:
        """Question ids with at least one snapshot on a date."""
        query = session.query(Snapshot.question).filter(
            Snapshot.project == project,
            Snapshot.date == date
        )
        if exclude:
            query = query.filter(Snapshot.question != exclude)

        return sorted({row[0] for row in query.distinct().all()})

    def list_categories(self, session: Session, project: str, question: str, date: str) -> List[str]:
        """Categories stored for a question on a date."""
        rows = session.query(Snapshot.category).filter(
            Snapshot.project == project,
            Snapshot.question == question,
            Snapshot.date == date
        ).distinct().all()

        return sorted(row[0] for row in rows)

    def list_snapshots(self, session: Session, project: str, date: Optional[str] = None) -> List[Snapshot]:
        """Snapshots of a project, newest date first."""
        query = session.query(Snapshot).filter(Snapshot.project == project)
        if date:
            query = query.filter(Snapshot.date == date)

        return query.order_by(Snapshot.date.desc(), Snapshot.question, Snapshot.category).all()
