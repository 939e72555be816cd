"""Shared test fixtures for pytest suite.

Provides fixtures for:
- tmp_db: Fresh snapshot store backed by a temp SQLite file
- session: Session on tmp_db, closed after the test
- sources: Two weighted AI sources
- project_config: ProjectConfig using the default categories
- make_entity: Factory for extractor-shaped entity dicts
"""
import pytest

from db import Database
from domain.config import ProjectConfig, SourceConfig


@pytest.fixture
def tmp_db(tmp_path):
    """Create a fresh Database backed by a temp file."""
    db = Database(db_path=str(tmp_path / "test.db"))
    yield db
    db.engine.dispose()


@pytest.fixture
def session(tmp_db):
    s = tmp_db.get_session()
    yield s
    s.close()


@pytest.fixture
def sources():
    return [
        SourceConfig(id="gpt", name="GPT-4o", weight=3.0),
        SourceConfig(id="claude", name="Claude", weight=1.0),
    ]


@pytest.fixture
def project_config(sources):
    return ProjectConfig(
        name="acme",
        sources=sources,
        link_type_names={"doc": "Documentation", "news": "News"},
        questions={"q1": "Best CRM tools?", "q2": "Top CRM vendors?"},
    )


@pytest.fixture
def make_entity():
    """Build an entity dict the way the upstream extractor emits it.

    mentions and appearance_order are derived from the per-source maps
    unless given explicitly.
    """
    def _make(value, mentions_by_source=None, orders=None, **extra):
        mentions_by_source = dict(mentions_by_source or {})
        orders = dict(orders or {})
        entity = {
            "value": value,
            "mentions_by_source": mentions_by_source,
            "appearance_order_by_source": orders,
        }
        entity["mentions"] = extra.pop("mentions", sum(mentions_by_source.values()))
        if "appearance_order" in extra:
            entity["appearance_order"] = extra.pop("appearance_order")
        elif entity["mentions"] == 0:
            entity["appearance_order"] = -1
        elif orders:
            entity["appearance_order"] = sum(orders.values()) / len(orders)
        else:
            entity["appearance_order"] = 999
        entity.update(extra)
        return entity

    return _make
