"""Command line interface for rotabackup."""

import sys
import logging
from datetime import datetime

import click

from rotabackup import create_app
from rotabackup.errors import BackupError, ConfigurationMissing, FatalBackupError
from rotabackup.backup.executor import execute_backup, EXIT_FATAL
from rotabackup.backup.lock import clear_stale_lock
from rotabackup.backup.periods import StagingArea, resolve_period


logger = logging.getLogger(__name__)


def _load_app(ctx):
    try:
        return create_app(ctx.obj['env'], config_file=ctx.obj['config'])
    except ConfigurationMissing as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FATAL)


@click.group()
@click.option('--config', '-c', default=None, envvar='ROTABACKUP_CONFIG',
              help='Configuration file (default: backup.conf.py)')
@click.option('--env', default=None, type=click.Choice(['development', 'production']),
              help='Configuration profile')
@click.pass_context
def cli(ctx, config, env):
    """Periodic backup of directories and git repositories with off-host rotation."""
    ctx.ensure_object(dict)
    ctx.obj['config'] = config
    ctx.obj['env'] = env


@cli.command('run')
@click.pass_context
def run_command(ctx):
    """Run one backup cycle.

    Exit status: 0 on success, 1 on a fatal error, 2 if some sources or
    periods failed.
    """
    app = _load_app(ctx)
    with app.app_context():
        try:
            summary = execute_backup()
        except FatalBackupError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(EXIT_FATAL)

    sys.exit(summary.exit_code)


@cli.command('schedule')
@click.option('--now', 'run_now', is_flag=True, help='Also run one cycle immediately')
@click.pass_context
def schedule_command(ctx, run_now):
    """Run backups periodically on SCHEDULE_CRON (foreground)."""
    from rotabackup.scheduler import init_scheduler, start_scheduler, get_scheduled_jobs

    app = _load_app(ctx)
    try:
        init_scheduler(app, run_now=run_now)
    except ValueError as e:
        click.echo(f"Error: invalid SCHEDULE_CRON {app.config['SCHEDULE_CRON']!r}: {e}", err=True)
        sys.exit(EXIT_FATAL)

    for job in get_scheduled_jobs():
        click.echo(f"Scheduled: {job['name']} ({job['trigger']})")

    start_scheduler()


@cli.command('clear-lock')
@click.option('--force', is_flag=True, help='Remove the lock even if its owner looks alive')
@click.pass_context
def clear_lock_command(ctx, force):
    """Remove a stale lock file left by a killed run."""
    app = _load_app(ctx)
    lock_file = app.config['LOCK_FILE']
    try:
        removed = clear_stale_lock(lock_file, force=force)
    except BackupError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FATAL)

    if removed:
        click.echo(f"Removed lock file {lock_file}")
    else:
        click.echo(f"No lock file at {lock_file}")


@cli.command('period')
@click.pass_context
def period_command(ctx):
    """Show the current period tag and staging paths."""
    app = _load_app(ctx)
    tag = resolve_period(datetime.now(), app.config.get('BACKUP_PERIOD'))
    staging = StagingArea(app.config['LOCAL_BACKUP_DIR'], tag)
    click.echo(f"Period:       {tag}")
    click.echo(f"Repositories: {staging.repositories_dir}")
    click.echo(f"Resources:    {staging.resources_dir}")


@cli.command('history')
@click.option('--limit', '-n', default=10, show_default=True, help='Number of runs to show')
@click.pass_context
def history_command(ctx, limit):
    """List recent runs and rotated archives."""
    from rotabackup.models import RunRecord

    app = _load_app(ctx)
    with app.app_context():
        runs = RunRecord.query.order_by(RunRecord.started_at.desc()).limit(limit).all()
        if not runs:
            click.echo("No runs recorded")
            return

        for run in runs:
            started = run.started_at.strftime('%Y-%m-%d %H:%M:%S')
            click.echo(
                f"#{run.id} {started} {run.status:<8} period={run.period_tag or '-'} errors={run.error_count}"
            )
            if run.error_message:
                click.echo(f"    error: {run.error_message}")
            for archive in run.archives:
                click.echo(f"    {archive.period_tag}: {archive.outcome}")


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
