# Overview: Flask CLI command groups for bootstrap, rollover and ledger maintenance.

# backend/hpstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates the two default stock locations.
# - python -m flask system reset-data --confirm "RESET DATA" [--actor NAME]
#   Wipe every ledger event and stock row (reference data and audit trail stay).
#
# Stock maintenance:
# - python -m flask stock rollover [--date 2024-01-06]
#   Open the day's stock rows from the previous day's closing stock. Safe to repeat.
# - python -m flask stock rebuild 123456789012
#   Replay one IMEI's full ledger into stock_entries.
# - python -m flask stock unit 123456789012
#   Print the unit's folded status and its daily rows.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Location
from .services import reference_service, rollover_service, stock_service
from .time_utils import parse_iso_date
from .validation import StockError

DEFAULT_LOCATIONS = (
    ("A", "Main shop"),
    ("B", "Second shop"),
)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create the default stock locations if they do not exist."""
    click.echo("START Initializing stock locations...")
    for name, description in DEFAULT_LOCATIONS:
        existing = reference_service.find_location_by_name(name)
        if existing:
            click.echo(f"PASS Using existing location: {existing.name} (ID: {existing.id})")
            continue
        location = reference_service.create_location(name, description)
        click.echo(f"PASS Created location: {location.name} (ID: {location.id})")
    click.echo(f"DONE {db.session.query(Location).count()} locations configured")


@system_group.command('reset-data')
@click.option('--confirm', 'confirmation', required=True, help='Type the reset confirmation phrase')
@click.option('--actor', default=None, help='Operator name recorded in the audit trail')
@with_appcontext
def reset_data(confirmation, actor):
    """Delete every stock event and stock row in one transaction."""
    try:
        summary = stock_service.reset_all(confirmation_token=confirmation, actor=actor or "cli")
    except StockError as e:
        raise click.ClickException(str(e))
    click.echo(
        f"PASS Reset complete: {summary['events_deleted']} events, "
        f"{summary['rows_deleted']} stock rows deleted"
    )


@click.group('stock')
def stock_group():
    """Daily rollover and ledger maintenance."""


@stock_group.command('rollover')
@click.option('--date', 'day', default=None, help='Business date to open (YYYY-MM-DD), default today')
@with_appcontext
def rollover(day):
    try:
        today = stock_service.resolve_today(parse_iso_date(day))
    except ValueError:
        raise click.BadParameter("date must be YYYY-MM-DD", param_hint="--date")

    result = rollover_service.rollover_if_needed(today)
    click.echo(
        f"PASS Rollover {today.isoformat()}: {len(result.seeded_units)} unit rows seeded, "
        f"{len(result.rerolled)} aggregates re-rolled"
    )


@stock_group.command('rebuild')
@click.argument('imei')
@with_appcontext
def rebuild(imei):
    """Replay an IMEI's ledger into stock_entries."""
    try:
        results = stock_service.rebuild(imei)
    except StockError as e:
        raise click.ClickException(str(e))

    days = sum(len(r.touched_days) for r in results)
    flagged = sum(len(r.flagged_days) for r in results)
    click.echo(f"PASS Rebuilt {imei}: {days} unit rows refolded across {len(results)} keys")
    if flagged:
        click.echo(f"WARN {flagged} rows flagged inconsistent (negative stock clamped)")
        current_app.logger.warning("Rebuild of %s left %s inconsistent rows", imei, flagged)


@stock_group.command('unit')
@click.argument('imei')
@with_appcontext
def show_unit(imei):
    unit = stock_service.get_unit(imei)
    if unit is None:
        raise click.ClickException(f"IMEI {imei} has no ledger events")

    click.echo(
        f"{unit.imei}  status={unit.status}  location_id={unit.location_id}  "
        f"phone_model_id={unit.phone_model_id}  entry={unit.entry_date}  "
        f"closed={unit.transaction_date}  cost={unit.cost_price}"
    )
    for row in stock_service.unit_rows(imei):
        flag = "  !" if row.is_inconsistent else ""
        click.echo(
            f"  {row.date}  loc={row.location_id}  morning={row.morning_stock}  in={row.incoming}  "
            f"add={row.add_stock}  ret={row.returns}  sold={row.sold}  adj={row.adjustment}  "
            f"night={row.night_stock}{flag}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
