# Overview: Flask CLI command groups for bootstrap, billing runs and contract maintenance.

# backend/aquavida/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "aquavida:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Billing:
# - python -m flask billing generate --month 3 --year 2025 --plan-id 1 [--student-id 4 --student-id 7]
#   Create the period's charges for every active student on the plan (or the listed students).
# - python -m flask billing refresh-overdue
#   Mark past-due pending charges overdue and recompute interest.
#
# Contracts:
# - python -m flask contracts expire
#   Flip active contracts whose end date has passed to expired.
# - python -m flask contracts verify 12
#   Recompute a contract's integrity hash and compare with the stored one.
#
# Classes:
# - python -m flask classes roster 3
#   Print the enrolled students and the waitlist of a class.

import click
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db
from .models import SwimClass
from .services import class_service, contract_service, payment_service
from .services import entity_store


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation prompt')
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

    click.echo("PASS Database reset complete.")


# =============================================================================
# BILLING
# =============================================================================

@click.group('billing')
def billing_group():
    """Charge generation and overdue maintenance."""


@billing_group.command('generate')
@click.option('--month', type=click.IntRange(1, 12), required=True)
@click.option('--year', type=int, required=True)
@click.option('--plan-id', type=int, required=True)
@click.option('--student-id', 'student_ids', type=int, multiple=True, help='Limit to these students')
@with_appcontext
def generate_charges(month, year, plan_id, student_ids):
    """Create one charge per student for a billing period."""
    try:
        result = payment_service.generate_bulk_charges(
            month, year, plan_id, list(student_ids) if student_ids else None,
        )
    except DomainError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Created {len(result['created'])} charges for {month:02d}/{year}")
    if result["skipped_existing"]:
        click.echo(f"SKIP Already charged: {', '.join(str(i) for i in result['skipped_existing'])}")
    if result["skipped_inactive"]:
        click.echo(f"SKIP Inactive students: {', '.join(str(i) for i in result['skipped_inactive'])}")


@billing_group.command('refresh-overdue')
@with_appcontext
def refresh_overdue():
    """Apply the overdue refresh to every open charge."""
    changed = payment_service.refresh_all_overdue()
    click.echo(f"PASS Updated {changed} payments")


# =============================================================================
# CONTRACTS
# =============================================================================

@click.group('contracts')
def contracts_group():
    """Contract maintenance."""


@contracts_group.command('expire')
@with_appcontext
def expire_contracts():
    count = contract_service.expire_contracts()
    click.echo(f"PASS Expired {count} contracts")


@contracts_group.command('verify')
@click.argument('contract_id', type=int)
@with_appcontext
def verify_contract(contract_id):
    """Exit with status 1 when the stored hash does not match the content."""
    try:
        report = contract_service.verify_integrity(contract_id)
    except DomainError as e:
        raise click.ClickException(e.message)

    click.echo(f"stored:   {report.stored_hash}")
    click.echo(f"computed: {report.computed_hash}")
    if report.valid:
        click.echo(f"PASS Contract {contract_id} is intact")
    else:
        click.echo(f"FAIL Contract {contract_id} content does not match its hash")
        raise SystemExit(1)


# =============================================================================
# CLASSES
# =============================================================================

@click.group('classes')
def classes_group():
    """Class inspection."""


@classes_group.command('roster')
@click.argument('class_id', type=int)
@with_appcontext
def show_roster(class_id):
    try:
        swim_class = entity_store.get(SwimClass, class_id)
    except DomainError as e:
        raise click.ClickException(e.message)

    summary = class_service.class_summary(swim_class)
    click.echo(
        f"{swim_class.name} [{summary['status']}] "
        f"{len(summary['student_ids'])}/{swim_class.capacity} seats, {summary['available_seats']} open"
    )
    for student in class_service.roster(class_id):
        click.echo(f"  {student.id:>5}  {student.name}")

    candidate = class_service.next_waitlist_candidate(class_id)
    if swim_class.waitlist:
        click.echo(f"Waitlist: {len(swim_class.waitlist)} (next: student {candidate.student_id})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(billing_group)
    app.cli.add_command(contracts_group)
    app.cli.add_command(classes_group)
