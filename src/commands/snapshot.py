"""
Snapshot store commands.
"""

import json
import click
from datetime import datetime
from tabulate import tabulate

from db import Database


def validate_date(ctx, param, value):
    """Click callback: accept only YYYY-MM-DD dates."""
    if value is None:
        return value
    try:
        datetime.strptime(value, '%Y-%m-%d')
    except ValueError:
        raise click.BadParameter(f"'{value}' is not a YYYY-MM-DD date")
    return value


def read_extractor_output(path: str) -> dict:
    """
    Read an extractor output file: {category: [entity, ...]}.

    Raises:
        click.ClickException: File is not valid JSON or has the wrong shape
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except ValueError as e:
        raise click.ClickException(f"Invalid JSON in {path}: {e}")

    if not isinstance(data, dict):
        raise click.ClickException(f"{path} must contain an object mapping category -> entity list")

    for category, entities in data.items():
        if not isinstance(entities, list) or not all(isinstance(e, dict) for e in entities):
            raise click.ClickException(f"Category '{category}' in {path} must be a list of objects")

    return data


@click.group()
def snapshot():
    """Manage stored entity snapshots."""
    pass


@snapshot.command(name='import')
@click.argument('project')
@click.argument('date', callback=validate_date)
@click.argument('question')
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
def import_snapshot(project, date, question, file):
    """
    Import extractor output for one question and date.

    FILE is a JSON object mapping each category to its entity list.
    Existing snapshots for the same project/question/category/date are replaced.

    Examples:
        entity-analytics snapshot import acme 2025-01-31 q1 output/q1.json
    """
    if question.startswith('_'):
        click.echo(click.style(f"✗ Question ids starting with '_' are reserved: {question}", fg="red"))
        raise click.Abort()

    data = read_extractor_output(file)

    db = Database()
    session = db.get_session()

    try:
        table_data = []
        for category, entities in data.items():
            db.save_snapshot(session, project, question, category, date, entities)
            table_data.append([category, len(entities)])

        session.commit()

        click.echo(click.style(
            f"✓ Imported {len(data)} categories for {project} / {question} / {date}",
            fg="green"
        ))
        if table_data:
            click.echo()
            click.echo(tabulate(table_data, headers=['Category', 'Entities'], tablefmt='simple'))

    except Exception as e:
        session.rollback()
        click.echo(click.style(f"✗ Error importing snapshot: {str(e)}", fg="red"))
        raise

    finally:
        session.close()


@snapshot.command(name='list')
@click.argument('project')
@click.option('--date', '-d', callback=validate_date, help='Only snapshots of this date')
@click.option('--no-pager', is_flag=True, help='Disable pagination')
def list_snapshots(project, date, no_pager):
    """
    List stored snapshots of a project.

    Examples:
        entity-analytics snapshot list acme
        entity-analytics snapshot list acme --date 2025-01-31
    """
    db = Database()
    session = db.get_session()

    try:
        snapshots = db.list_snapshots(session, project, date)

        if not snapshots:
            click.echo(click.style(f"No snapshots found for {project}", fg="yellow"))
            return

        table_data = [
            [s.date, s.question, s.category, s.entity_count, s.updated_at.strftime('%Y-%m-%d %H:%M:%S')]
            for s in snapshots
        ]
        output_text = tabulate(
            table_data,
            headers=['Date', 'Question', 'Category', 'Entities', 'Updated'],
            tablefmt='simple'
        )

        if len(snapshots) > 50 and not no_pager:
            click.echo_via_pager(output_text)
        else:
            click.echo(output_text)
            click.echo()
            click.echo(click.style(f"{len(snapshots)} snapshot(s)", fg='cyan'))

    finally:
        session.close()
