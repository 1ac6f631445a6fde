# goldshop/cli.py
import json

import click
from flask import current_app

from .extensions import db
from .models import User
from .services.otp import normalize_phone
from .services.reconciler import lookback_start, sync_pending_payments


@click.command("init-db")
def init_db():
    """Create tables directly (use `flask db upgrade` once migrations exist)."""
    db.create_all()
    click.echo("Database tables created")


@click.command("create-admin")
@click.option("--phone", required=True)
@click.option("--name", required=True)
@click.option("--email", default=None)
def create_admin(phone, name, email):
    phone = normalize_phone(phone)
    user = User.query.filter_by(phone_number=phone).first()
    if user and user.is_admin:
        click.echo("Admin already exists"); return
    if user:
        user.role = "admin"
    else:
        user = User(phone_number=phone, full_name=name, email=email, role="admin")
        db.session.add(user)
    db.session.commit()
    click.echo(f"Admin ready: {user.id} {user.phone_number}")


@click.command("sync-payments")
@click.option("--hours", type=int, default=None,
              help="Only orders created in the last N hours (0 = all). Defaults to SYNC_LOOKBACK_HOURS.")
def sync_payments(hours):
    """Reconcile pending gateway orders with Stripe."""
    if hours is None:
        hours = current_app.config.get("SYNC_LOOKBACK_HOURS", 48)
    results = sync_pending_payments(since=lookback_start(hours))
    click.echo(json.dumps(results.to_dict(), indent=2, default=str))
    if results.failed:
        raise SystemExit(1)


def register_cli(app):
    app.cli.add_command(init_db)
    app.cli.add_command(create_admin)
    app.cli.add_command(sync_payments)
