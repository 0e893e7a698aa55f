import click
from flask.cli import with_appcontext

from rxfinancials.jobs.process_payouts import process_due_payouts


@click.command("process-payouts")
@with_appcontext
def process_payouts_command():
    """Process pending payouts whose hold period has elapsed."""
    counts = process_due_payouts()
    click.echo(f"processed={counts['processed']} failed={counts['failed']} skipped={counts['skipped']}")


def register_commands(app):
    app.cli.add_command(process_payouts_command)


__all__ = ["process_due_payouts", "register_commands"]
