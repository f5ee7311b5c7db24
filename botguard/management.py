"""
Management commands for configuration checks and security maintenance
"""
import json
import os

import click
from flask import current_app
from flask.cli import with_appcontext

from .config_schema import build_checklist_sections, resolve_settings
from .services.bot_detection import SecurityReportService
from .services.bot_detection.reporting import TIME_RANGES


def _active_env_name() -> str:
    return str(current_app.config.get("ENV") or current_app.config.get("FLASK_ENV") or "development")


@click.command('config-check')
@click.option('--env', 'env_name', default=None, help='Environment to validate against (defaults to the active one)')
@click.option('--strict', is_flag=True, help='Exit non-zero when any warning is reported')
@with_appcontext
def config_check_command(env_name, strict):
    """Print the resolved configuration checklist with warnings"""
    env_name = env_name or _active_env_name()
    _, _, warnings = resolve_settings(os.environ, env_name)

    click.echo(f"Configuration checklist ({env_name})")
    for section in build_checklist_sections(os.environ, env_name):
        click.echo("")
        click.echo(f"== {section['title']} ==")
        if section["note"]:
            click.echo(f"   {section['note']}")
        for row in section["rows"]:
            marker = "x" if row["present"] else ("!" if row["required"] else " ")
            click.echo(f"[{marker}] {row['key']} = {row['value']!r} ({row['source']})")

    diagnostics = current_app.config.get("ENV_DIAGNOSTICS") or {}
    warnings = list(diagnostics.get("warnings", ())) + warnings
    if warnings:
        click.echo("")
        click.echo("Warnings:")
        for warning in warnings:
            click.echo(f"  - {warning}")
        if strict:
            raise SystemExit(1)
    else:
        click.echo("")
        click.echo("✅ No configuration warnings.")


@click.command('detection-summary')
@click.option('--range', 'range_key', type=click.Choice(list(TIME_RANGES)), default='24h', show_default=True)
@with_appcontext
def detection_summary_command(range_key):
    """Show bot detection statistics for a time range"""
    summary = SecurityReportService.summarize(range_key)
    click.echo(f"Bot detection summary (last {summary['range']})")
    click.echo(f"   - Total requests: {summary['totalRequests']}")
    click.echo(f"   - Blocked: {summary['blockedRequests']} ({summary['blockRate']}% block rate)")
    click.echo(f"   - Suspicious: {summary['suspiciousRequests']}")
    click.echo(f"   - Clean: {summary['cleanRequests']}")
    click.echo(f"   - Active rate-limit blocks: {summary['activeRateLimitBlocks']}")
    if summary["topBlockedIps"]:
        click.echo("Top blocked IPs:")
        for entry in summary["topBlockedIps"]:
            click.echo(f"   {entry['ip']}: {entry['count']}")


@click.command('block-status')
@click.argument('ip')
@with_appcontext
def block_status_command(ip):
    """Show the active detection block and limiter state for an IP"""
    status = SecurityReportService.block_status(ip.strip())
    click.echo(json.dumps(status, indent=2))


@click.command('purge-detection-logs')
@click.option('--days', type=click.IntRange(min=1), default=30, show_default=True,
              help='Delete detection log rows older than this many days')
@click.option('--yes', is_flag=True, help='Skip the confirmation prompt')
@with_appcontext
def purge_detection_logs_command(days, yes):
    """Delete detection log rows past the retention window"""
    if not yes:
        click.confirm(f"Delete detection log rows older than {days} days?", abort=True)
    try:
        deleted = SecurityReportService.purge_detection_logs(days)
    except Exception as e:
        click.echo(f'❌ Error purging detection logs: {e}')
        raise
    click.echo(f"✅ Deleted {deleted} detection log rows older than {days} days.")


def register_commands(app):
    """Register CLI commands"""
    app.cli.add_command(config_check_command)

    # Security maintenance
    app.cli.add_command(detection_summary_command)
    app.cli.add_command(block_status_command)
    app.cli.add_command(purge_detection_logs_command)
