"""
Run the entity analytics pipeline for one project and date.

This module provides the main orchestration function that:
1. Loads every question's category snapshots for the date
2. Rebuilds derived link categories and scores influence per question
3. Tracks trends of each question against its own history
4. Merges all questions into the aggregate rollup, re-scores it and tracks its trends
5. Saves every updated snapshot back to the store
"""

from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy.orm import Session

from settings import TREND_WINDOW, TREND_WINDOW_MAX
from db.database import Database
from domain.appearance_order import rank_appearance_order
from domain.config import ProjectConfig
from domain.errors import MissingHistoricalDataError, MissingUpstreamDataError
from domain.influence import InfluenceScorer, calculate_mention_shares
from domain.links import build_link_domains, build_link_types
from domain.merge import CrossQueryMerger
from domain.source_weights import normalize_source_weights
from domain.trends import TrendTracker


AGGREGATE_QUESTION = '_aggregate'

LINKS_CATEGORY = 'links'
LINK_TYPES_CATEGORY = 'linkTypes'
LINK_DOMAINS_CATEGORY = 'linkDomains'


def _build_derived(category: str, snapshot: Dict[str, List[dict]], config: ProjectConfig) -> Optional[List[dict]]:
    links = snapshot.get(LINKS_CATEGORY)
    if links is None:
        return None
    if category == LINK_TYPES_CATEGORY:
        return build_link_types(links, config.link_type_names)
    if category == LINK_DOMAINS_CATEGORY:
        return build_link_domains(links, config.link_type_names)
    return None


def _track(
    db: Database,
    session: Session,
    tracker: TrendTracker,
    entities: List[dict],
    project: str,
    question: str,
    category: str,
    date: str,
    source_ids: List[str],
    run_logger=None
) -> List[dict]:
    history = db.get_snapshot_history(session, project, question, category, date, tracker.window)

    skipped = [prior_date for prior_date, prior in history if prior is None]
    if skipped and run_logger is not None:
        run_logger.history_dates_skipped += len(skipped)
        run_logger.add_note(
            "Unreadable history skipped",
            project=project, question=question, category=category, dates=skipped
        )

    return tracker.track(entities, date, history, source_ids=source_ids or None)


def process_question(
    db: Database,
    session: Session,
    project: str,
    question: str,
    date: str,
    config: ProjectConfig,
    scorer: InfluenceScorer,
    tracker: TrendTracker,
    run_logger=None
) -> Dict[str, List[dict]]:
    """
    Score and trend every category of one question.

    Returns:
        Dict mapping category -> processed entities (also saved to the store)

    Raises:
        MissingUpstreamDataError: The question has no readable snapshot for the date
        ConfigurationGapError: A stored category has no open/closed classification
    """
    registry = config.registry
    stored = db.list_categories(session, project, question, date)

    # Every stored category must be classified before anything is written
    for category in stored:
        registry.kind_of(category)

    if not stored:
        raise MissingUpstreamDataError(
            "No snapshots for current date",
            project=project, date=date, question=question
        )

    snapshot: Dict[str, List[dict]] = {}
    for category in registry.names:
        derived_from = registry.get(category).derived_from
        if derived_from and derived_from in stored:
            # Rebuilt below from the source category
            continue
        if category not in stored:
            continue

        try:
            entities = db.get_snapshot(session, project, question, category, date)
        except MissingHistoricalDataError as e:
            raise MissingUpstreamDataError(
                f"Unreadable snapshot for current date: {e.reason}",
                project=project, date=date, category=category, question=question
            ) from e
        snapshot[category] = entities

    for category in registry.names:
        if category in snapshot:
            continue
        derived = _build_derived(category, snapshot, config)
        if derived is not None:
            snapshot[category] = derived

    # Keep registry order so saves and rollups are deterministic
    snapshot = {name: snapshot[name] for name in registry.names if name in snapshot}

    context = {'project': project, 'date': date, 'question': question}
    results = {}
    for category, entities in snapshot.items():
        # Extractor output with raw character offsets still needs ordinal ranking
        if any('first_appearance_char_by_source' in e for e in entities):
            rank_appearance_order(entities, config.source_ids or None)

        scored = scorer.score(entities, category, context=context)
        calculate_mention_shares(scored, config.source_ids or None)
        tracked = _track(db, session, tracker, scored, project, question, category, date,
                         config.source_ids, run_logger)

        db.save_snapshot(session, project, question, category, date, tracked)
        results[category] = tracked

        if run_logger is not None:
            run_logger.categories_processed += 1
            run_logger.entities_scored += len(tracked)

    return results


def aggregate_project_date(
    db: Database,
    session: Session,
    project: str,
    date: str,
    config: ProjectConfig,
    window: int = TREND_WINDOW,
    max_window: int = TREND_WINDOW_MAX,
    run_logger=None
) -> Dict:
    """
    Run the full pipeline for one project and date.

    Args:
        db: Database instance
        session: SQLAlchemy session (committed on success)
        project: Project name
        date: Snapshot date (YYYY-MM-DD)
        config: Project configuration (sources, categories)
        window: Number of prior snapshots used for trends
        max_window: Upper bound for window
        run_logger: Optional AggregationRunLogger

    Returns:
        Dict with statistics:
            - questions: Question ids processed
            - categories: Categories in the rollup
            - entities_by_category: Rollup entity count per category
            - warnings: Number of warnings recorded
            - duration_seconds: Time taken
    """
    start_time = datetime.utcnow()

    registry = config.registry
    # Weights are shared by every category and question of the date
    weights = normalize_source_weights(config.sources)
    scorer = InfluenceScorer(config.sources, registry, weights=weights)
    tracker = TrendTracker(window=window, max_window=max_window)
    merger = CrossQueryMerger(config.sources, registry, scorer=scorer)

    questions = db.list_questions(session, project, date, exclude=AGGREGATE_QUESTION)
    if not questions:
        raise MissingUpstreamDataError(
            "No question snapshots found for date",
            project=project, date=date
        )

    # STEP 1: per-question scoring and trends
    per_question: Dict[str, Dict[str, List[dict]]] = {}
    for question in questions:
        per_question[question] = process_question(
            db, session, project, question, date, config, scorer, tracker, run_logger
        )
        if run_logger is not None:
            run_logger.questions_processed += 1

    # STEP 2: rollup (runs only after every question is done)
    categories = [
        name for name in registry.names
        if any(name in results for results in per_question.values())
    ]

    entities_by_category = {}
    context = {'project': project, 'date': date, 'question': AGGREGATE_QUESTION}
    for category in categories:
        snapshots = {
            question: results[category]
            for question, results in per_question.items()
            if category in results
        }
        merged = merger.merge(
            snapshots,
            category,
            question_texts=config.questions,
            context=context,
            run_logger=run_logger
        )
        calculate_mention_shares(merged, config.source_ids or None)
        tracked = _track(db, session, tracker, merged, project, AGGREGATE_QUESTION, category, date,
                         config.source_ids, run_logger)

        db.save_snapshot(session, project, AGGREGATE_QUESTION, category, date, tracked)
        entities_by_category[category] = len(tracked)

        if run_logger is not None:
            run_logger.categories_processed += 1
            run_logger.entities_scored += len(tracked)

    session.commit()

    end_time = datetime.utcnow()

    return {
        'questions': questions,
        'categories': categories,
        'entities_by_category': entities_by_category,
        'warnings': len(run_logger.warnings) if run_logger is not None else 0,
        'duration_seconds': (end_time - start_time).total_seconds()
    }
