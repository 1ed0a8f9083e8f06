import click
from flask import current_app
from flask.cli import AppGroup

from edublog import credentials
from edublog.password_reset import PasswordResetService
from edublog.sessions import prune_sessions

auth_cli = AppGroup("auth", help="Maintenance commands for sessions and password resets.")

DEMO_EMAIL = "demo@example.com"
DEMO_PASSWORD = "password123"


@auth_cli.command("prune")
def prune_command():
    """Delete expired sessions, throttle entries and reset tokens.

    Optional housekeeping: validation already rejects expired rows on its own.
    """
    service = PasswordResetService.from_app(current_app)
    sessions = prune_sessions()
    throttles = service.limiter.prune()
    tokens = service.prune_expired()
    click.echo(f"Removed {sessions} sessions, {throttles} throttle entries, {tokens} reset tokens.")


@auth_cli.command("seed-demo")
@click.option("--email", default=DEMO_EMAIL, show_default=True)
@click.option("--password", default=DEMO_PASSWORD, show_default=True)
def seed_demo_command(email, password):
    """Create or refresh the demo account."""
    user = credentials.find_by_email(email)
    if user is None:
        user = credentials.create_user("Demo User", email, password)
        click.echo(f"Created {email} (password: {password})")
    else:
        credentials.update_password(user, password)
        click.echo(f"Reset password for {email} (password: {password})")
