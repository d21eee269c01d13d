"""
Command line interface.

Commands:
- daily / weekly / monthly: run one tier once
- run-scheduler / stop-scheduler: manage the background runner process
- scheduler-loop: run the runner in the foreground
- status: show backup status (read-only)
- install-cron / remove-cron: manage crontab entries
"""

import json
import logging
import sys

import click
from flask import current_app
from flask.cli import FlaskGroup, with_appcontext

from rotavault.backup.tiers import TIER_ORDER, build_policies
from rotavault.crontab import CronUnavailable, build_cron_lines, install_cron_jobs, remove_cron_jobs


logger = logging.getLogger(__name__)

TRIGGERS = ['manual', 'cron', 'scheduler']


def _cron_command() -> str:
    return f"{sys.executable} -m rotavault"


def _make_tier_command(tier: str) -> click.Command:
    @click.command(tier, help=f"Perform {tier} backup and retention cleanup.")
    @click.option('--trigger', type=click.Choice(TRIGGERS), default='manual', hidden=True)
    @with_appcontext
    def command(trigger):
        from rotavault.backup.executor import execute_tier

        result = execute_tier(tier, trigger=trigger)

        click.echo(
            f"{tier} backup {result.status}: "
            f"{len(result.succeeded)} succeeded, {len(result.failed)} failed, "
            f"{result.deleted} old backups deleted"
        )
        for unit, error in result.errors.items():
            click.echo(f"  - {unit}: {error}", err=True)

        if not result.ok:
            click.get_current_context().exit(1)

    return command


@click.command('run-scheduler')
@with_appcontext
def run_scheduler_command():
    """Start the background scheduler process."""
    from rotavault.scheduler import SchedulerError, SchedulerAlreadyRunning, start_background_runner

    config = current_app.config

    try:
        pid = start_background_runner(
            config['SCHEDULER_PID_FILE'],
            config['SCHEDULER_LOG_FILE'],
            config['CONFIG_NAME']
        )
    except SchedulerAlreadyRunning as e:
        logger.warning(str(e))
        click.echo(str(e))
        return
    except SchedulerError as e:
        logger.error(str(e))
        click.echo(str(e), err=True)
        click.get_current_context().exit(1)

    logger.info(f"Background scheduler started with PID {pid}")
    click.echo(f"Background scheduler started with PID {pid}")
    for policy in build_policies(config).values():
        click.echo(f"  - {policy.name.capitalize()} backup: {policy.describe()}")
    click.echo(f"Logs are saved to: {config['SCHEDULER_LOG_FILE']}")


@click.command('stop-scheduler')
@with_appcontext
def stop_scheduler_command():
    """Stop the background scheduler process."""
    from rotavault.scheduler import SchedulerError, SchedulerNotRunning, stop_background_runner

    try:
        pid = stop_background_runner(current_app.config['SCHEDULER_PID_FILE'])
    except SchedulerNotRunning as e:
        logger.warning(str(e))
        click.echo(str(e))
        return
    except SchedulerError as e:
        logger.error(str(e))
        click.echo(str(e), err=True)
        click.get_current_context().exit(1)

    logger.info(f"Background scheduler stopped (PID {pid})")
    click.echo(f"Background scheduler stopped (PID {pid})")


@click.command('scheduler-loop')
@with_appcontext
def scheduler_loop_command():
    """Run the scheduler in the foreground until SIGTERM."""
    from rotavault.scheduler import run_foreground

    run_foreground(current_app._get_current_object())


@click.command('status')
@click.option('--json', 'as_json', is_flag=True, help='Print status as JSON.')
@with_appcontext
def status_command(as_json):
    """Show backup status."""
    from rotavault.status import collect_status

    status = collect_status(current_app.config)

    if as_json:
        click.echo(json.dumps(status, indent=2, default=str))
        return

    click.echo("Backup configuration:")
    for tier in TIER_ORDER:
        info = status['tiers'][tier]
        click.echo(f"  - {tier.capitalize()} backups: keep last {info['retention']}, {info['schedule']}")

    click.echo("")
    click.echo("Current backup counts:")
    for tier in TIER_ORDER:
        click.echo(f"{tier.capitalize()} backups:")
        for unit, counts in status['tiers'][tier]['units'].items():
            click.echo(
                f"  - {unit}: {counts['application']} application backups, "
                f"{counts['database']} database backups"
            )

    click.echo("Temporary backups in main directory:")
    for unit, counts in status['staging']['units'].items():
        click.echo(
            f"  - {unit}: {counts['application']} application backups, "
            f"{counts['database']} database backups"
        )

    click.echo("")
    if status['cron_installed']:
        click.echo("Backup cron jobs are installed")
    else:
        click.echo("Backup cron jobs are NOT installed")

    runner = status['runner']
    if runner['running']:
        click.echo(f"Background scheduler is running with PID {runner['pid']}")
    elif runner['pid'] is not None:
        click.echo("Background scheduler PID file exists but process is not running")
    else:
        click.echo("Background scheduler is not running")

    for tier in TIER_ORDER:
        run = status['last_runs'][tier]
        if run:
            click.echo(f"Last {tier} run: {run['status']} at {run['started_at']}")


@click.command('install-cron')
@with_appcontext
def install_cron_command():
    """Install cron jobs for automated backups."""
    policies = build_policies(current_app.config)

    try:
        installed = install_cron_jobs(policies, _cron_command())
    except CronUnavailable:
        logger.warning("Crontab command not available. Cannot install cron jobs automatically.")
        click.echo("Add these entries to your crontab manually:")
        for line in build_cron_lines(policies, _cron_command()):
            click.echo(line)
        return

    if installed:
        click.echo("Cron jobs installed successfully:")
        for policy in policies.values():
            click.echo(f"  - {policy.name.capitalize()} backup: {policy.describe()}")
    else:
        click.echo("Backup cron jobs are already installed")


@click.command('remove-cron')
@with_appcontext
def remove_cron_command():
    """Remove backup cron jobs."""
    try:
        removed = remove_cron_jobs()
    except CronUnavailable:
        logger.warning("Crontab command not available. Cannot remove cron jobs automatically.")
        click.echo("Remove these entries from your crontab manually:")
        for line in build_cron_lines(build_policies(current_app.config), _cron_command()):
            click.echo(line)
        return

    if removed:
        click.echo("Backup cron jobs removed successfully")
    else:
        click.echo("No backup cron jobs found")


def register_commands(app):
    """Register all commands on the app's CLI group."""
    for tier in TIER_ORDER:
        app.cli.add_command(_make_tier_command(tier))

    app.cli.add_command(run_scheduler_command)
    app.cli.add_command(stop_scheduler_command)
    app.cli.add_command(scheduler_loop_command)
    app.cli.add_command(status_command)
    app.cli.add_command(install_cron_command)
    app.cli.add_command(remove_cron_command)


def _create_app():
    from rotavault import create_app
    # Only the web worker hosts the embedded poller, never a CLI process
    return create_app(config_overrides={'EMBEDDED_SCHEDULER': False})


cli = FlaskGroup(create_app=_create_app, add_default_commands=False,
                 help="Tiered backup scheduling and retention.")


def main():
    cli.main(prog_name='rotavault')
