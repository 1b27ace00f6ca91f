# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/dairyledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to dairyledger (PowerShell: $env:FLASK_APP="dairyledger").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger inspection/import:
# - python -m flask ledger list orders
#   List documents of a collection (inventory, orders, payments, customers).
# - python -m flask ledger import-json customers profiles.json
#   Insert every object of a JSON array as a raw document (no side effects).
#
# Side-effect outbox:
# - python -m flask outbox list --status FAILED
#   List recorded side effects, newest first.
# - python -m flask outbox retry --limit 100
#   Replay FAILED inventory adjustments and payment creations.

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db, get_propagator, get_store
from .services import outbox_service
from .services.ledger_store import COLLECTIONS, NATURAL_KEY_FIELDS, LedgerStoreError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    from . import models  # noqa: F401

    db.create_all()
    click.echo("OK Database tables ready")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("BUILD  Creating all tables...")
    db.create_all()
    click.echo("OK Database reset complete")


@click.group('ledger')
def ledger_group():
    """Ledger document inspection and import."""


@ledger_group.command('list')
@click.argument('collection', type=click.Choice(COLLECTIONS))
@click.option('--limit', default=50, show_default=True, help='Maximum documents to print')
@with_appcontext
def list_documents(collection, limit):
    """List documents of COLLECTION, newest first."""
    documents = get_store().list_all(collection)
    if not documents:
        click.echo(f"No {collection} documents.")
        return

    click.echo(f"{collection}: {len(documents)} document(s)")
    for doc in documents[:limit]:
        click.echo(json.dumps(doc, sort_keys=True, default=str))


@ledger_group.command('import-json')
@click.argument('collection', type=click.Choice(COLLECTIONS))
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def import_json(collection, path):
    """
    Insert each object of the JSON array in PATH into COLLECTION.

    Documents are stored verbatim; no inventory or payment side effects run.
    Inventory records are keyed by date and payments by orderId, so a
    second document for the same day or order is skipped.
    """
    with open(path, encoding='utf-8') as fh:
        try:
            documents = json.load(fh)
        except json.JSONDecodeError as e:
            raise click.ClickException(f"Invalid JSON: {e}")

    if isinstance(documents, dict):
        documents = [documents]
    if not isinstance(documents, list):
        raise click.ClickException("Expected a JSON array of objects")

    store = get_store()
    key_field = NATURAL_KEY_FIELDS.get(collection)
    imported = 0
    skipped = 0
    for doc in documents:
        if not isinstance(doc, dict):
            skipped += 1
            continue
        key = None
        if key_field:
            key = str(doc.get(key_field) or "").strip() or None
        try:
            store.insert(collection, doc, key=key)
        except LedgerStoreError as e:
            current_app.logger.warning("Skipped %s document during import: %s", collection, e)
            skipped += 1
            continue
        imported += 1

    click.echo(f"OK Imported {imported} {collection} document(s), skipped {skipped}")


@click.group('outbox')
def outbox_group():
    """Side-effect outbox inspection and replay."""


@outbox_group.command('list')
@click.option(
    '--status',
    type=click.Choice([outbox_service.STATUS_PENDING, outbox_service.STATUS_DONE, outbox_service.STATUS_FAILED]),
    help='Filter by status',
)
@click.option('--limit', default=50, show_default=True)
@with_appcontext
def list_outbox(status, limit):
    """List recorded side effects."""
    events = outbox_service.list_events(status=status, limit=limit)
    if not events:
        click.echo("No outbox events found.")
        return

    for event in events:
        line = f"#{event.id} {event.event_type:<16} {event.status:<8} order={event.order_id} attempts={event.attempts}"
        if event.last_error:
            line += f" error={event.last_error}"
        click.echo(line)


@outbox_group.command('retry')
@click.option('--limit', default=100, show_default=True)
@with_appcontext
def retry_outbox(limit):
    """Replay FAILED side effects."""
    result = get_propagator().retry_failed_side_effects(limit=limit)
    click.echo(
        f"Retried {result['retried']}: {result['succeeded']} succeeded, {result['failed']} failed"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(outbox_group)
