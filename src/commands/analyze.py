"""
Aggregation pipeline commands.
"""

import json
import click
from pydantic import ValidationError
from sqlalchemy import desc
from tabulate import tabulate

from settings import LOGS_DB_PATH, TREND_WINDOW, TREND_WINDOW_MAX
from db import Database
from db.models import AggregationRun
from domain.aggregate_project import AGGREGATE_QUESTION, aggregate_project_date
from domain.config import ProjectConfig
from domain.entities import IDENTITY_FIELDS
from domain.errors import AggregationError
from domain.logging import log_aggregation_run
from domain.summary import summarize_category
from commands.snapshot import validate_date


def load_project_config(path: str) -> ProjectConfig:
    """
    Load and validate a project configuration file.

    Raises:
        click.ClickException: File is not valid JSON or fails validation
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return ProjectConfig.model_validate(json.load(f))
    except ValidationError as e:
        raise click.ClickException(f"Invalid project configuration {path}:\n{e}")
    except ValueError as e:
        raise click.ClickException(f"Invalid JSON in {path}: {e}")


def echo_aggregation_error(error: AggregationError):
    """Print an engine error with its scope."""
    click.echo(click.style(f"✗ {type(error).__name__}: {error.reason}", fg="red"), err=True)
    for name, value in error.context.items():
        if value is not None:
            click.echo(f"  {name}: {click.style(str(value), fg='yellow')}", err=True)


def _label(entity: dict) -> str:
    for field in IDENTITY_FIELDS:
        if entity.get(field):
            return str(entity[field])
    return ''


def _format_order(value) -> str:
    if value is None or value < 0:
        return '-'
    if value >= 999:
        return '?'
    return f"{value:.1f}"


@click.group()
def analyze():
    """Run and inspect entity aggregation."""
    pass


@analyze.command()
@click.argument('project')
@click.argument('date', callback=validate_date)
@click.option('--config', '-c', 'config_path', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Project configuration JSON (sources, weights, categories)')
@click.option('--window', '-w', type=click.IntRange(0, TREND_WINDOW_MAX), default=TREND_WINDOW,
              help=f'Prior snapshots used for trends (default: {TREND_WINDOW})')
def run(project, date, config_path, window):
    """
    Score, trend and roll up every question of a project for one date.

    Examples:
        entity-analytics analyze run acme 2025-01-31 --config acme.json
        entity-analytics analyze run acme 2025-01-31 --config acme.json --window 5
    """
    config = load_project_config(config_path)

    db = Database()
    session = db.get_session()

    click.echo(click.style(f"Aggregating {project} for {date}...\n", fg="cyan", bold=True))

    try:
        with log_aggregation_run(project, date) as run_logger:
            stats = aggregate_project_date(
                db=db,
                session=session,
                project=project,
                date=date,
                config=config,
                window=window,
                run_logger=run_logger
            )

    except AggregationError as e:
        session.rollback()
        echo_aggregation_error(e)
        raise SystemExit(1)

    finally:
        session.close()

    click.echo(click.style("✓ Aggregation completed\n", fg="green", bold=True))
    click.echo(f"   • Questions: {click.style(str(len(stats['questions'])), fg='green')} "
               f"({', '.join(stats['questions'])})")
    time_str = click.style(f"{stats['duration_seconds']:.2f}s", fg='cyan')
    click.echo(f"   • Processing time: {time_str}")

    if stats['warnings']:
        click.echo(f"   • Warnings: {click.style(str(stats['warnings']), fg='yellow')}")

    click.echo()
    click.echo(tabulate(
        [[category, count] for category, count in stats['entities_by_category'].items()],
        headers=['Category', 'Rollup entities'],
        tablefmt='simple'
    ))
    click.echo()
    click.echo("View the rollup with:")
    click.echo(f"   entity-analytics analyze show {project} {date} <category>")


@analyze.command()
@click.argument('project')
@click.argument('date', callback=validate_date)
@click.argument('category')
@click.option('--question', '-q', default=AGGREGATE_QUESTION,
              help='Question id (default: the cross-question rollup)')
@click.option('--limit', '-l', type=int, default=20, help='Number of entities to show (default: 20)')
@click.option('--order-by', '-o', type=click.Choice(['influence', 'mentions'], case_sensitive=False),
              default='influence', help='Order by influence or mentions')
@click.option('--no-pager', is_flag=True, help='Disable pagination')
def show(project, date, category, question, limit, order_by, no_pager):
    """
    Show scored entities of one category.

    Examples:
        entity-analytics analyze show acme 2025-01-31 products
        entity-analytics analyze show acme 2025-01-31 links --question q1
        entity-analytics analyze show acme 2025-01-31 organizations --order-by mentions --limit 50
    """
    db = Database()
    session = db.get_session()

    try:
        try:
            entities = db.get_snapshot(session, project, question, category, date)
        except AggregationError as e:
            echo_aggregation_error(e)
            raise SystemExit(1)

        if entities is None:
            click.echo(click.style(
                f"No snapshot for {project} / {question} / {category} / {date}", fg="yellow"
            ))
            return

        summary = summarize_category(entities)

        ranked = sorted(
            entities,
            key=lambda e: (-(e.get(order_by.lower()) or 0), _label(e))
        )[:limit]

        scope = 'all questions' if question == AGGREGATE_QUESTION else f"question {question}"
        output_lines = [
            click.style(f"{category} for {project} on {date} ({scope})", bold=True),
            f"Entities: {summary['total_items']}   Mentions: {summary['total_mentions']}",
        ]
        if summary['item_count_per_source']:
            per_source = ', '.join(f"{s['id']}={s['count']}" for s in summary['item_count_per_source'])
            output_lines.append(f"Entities per source: {per_source}")
        output_lines.append("")

        table_data = []
        for i, entity in enumerate(ranked, 1):
            table_data.append([
                i,
                _label(entity),
                entity.get('mentions') or 0,
                f"{entity.get('influence') or 0:.4f}",
                _format_order(entity.get('appearance_order')),
                entity.get('unique_source_count') or 0,
                entity.get('trend') or '-',
                f"{entity['change_percent']:+.1f}%" if 'change_percent' in entity else '-',
            ])
        output_lines.append(tabulate(
            table_data,
            headers=['#', 'Value', 'Mentions', 'Influence', 'Order', 'Sources', 'Trend', 'Change'],
            tablefmt='simple'
        ))

        output_text = "\n".join(output_lines)

        if len(ranked) > 20 and not no_pager:
            click.echo_via_pager(output_text)
        else:
            click.echo(output_text)

    finally:
        session.close()


@analyze.command()
@click.option('--limit', '-l', type=int, default=20, help='Number of runs to show (default: 20)')
@click.option('--project', '-p', help='Filter by project')
@click.option('--show-warnings', is_flag=True, help='Print the warnings of each run')
def runs(limit, project, show_warnings):
    """List recent aggregation runs."""
    db = Database(LOGS_DB_PATH)
    session = db.get_session()

    try:
        query = session.query(AggregationRun).order_by(desc(AggregationRun.started_at))
        if project:
            query = query.filter(AggregationRun.project == project)

        entries = query.limit(limit).all()

        if not entries:
            click.echo(click.style("No aggregation runs found.", fg='yellow'))
            return

        table_data = []
        for entry in entries:
            status = click.style('✓', fg='green') if entry.success else click.style('✗', fg='red')
            duration = f"{entry.duration_seconds:.2f}s" if entry.duration_seconds is not None else 'N/A'
            table_data.append([
                entry.id,
                status,
                entry.project,
                entry.date,
                entry.questions_processed,
                entry.categories_processed,
                entry.entities_scored,
                len(entry.warnings or []),
                duration,
                entry.started_at.strftime('%Y-%m-%d %H:%M:%S'),
            ])

        click.echo()
        click.echo(tabulate(
            table_data,
            headers=['ID', '✓', 'Project', 'Date', 'Questions', 'Categories', 'Entities',
                     'Warnings', 'Duration', 'Started'],
            tablefmt='simple'
        ))
        click.echo()

        for entry in entries:
            if entry.error_message:
                click.echo(click.style(f"#{entry.id}: {entry.error_message}", fg='red'))
            if show_warnings and entry.warnings:
                click.echo(click.style(f"#{entry.id} warnings:", fg='yellow'))
                for warning in entry.warnings:
                    if warning.get('kind') == 'SuspiciousAggregate':
                        click.echo(f"  {warning.get('category')}: \"{warning.get('value')}\" "
                                   f"{warning.get('mentions')} mentions (ceiling {warning.get('ceiling')})")
                    else:
                        click.echo(f"  {warning.get('message', warning)}")

        click.echo(click.style(f"Showing {len(entries)} most recent run(s)", fg='cyan'))
        click.echo()

    finally:
        session.close()
