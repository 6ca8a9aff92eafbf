"""
Click CLI for Deploy Memory.
"""

import json
import logging
import os
import sys
from typing import Any, Dict, Optional

import click
from botocore.exceptions import BotoCoreError, ClientError

from .config import get_settings
from .errors import CollectorError, ConfigError, StoreError
from .memory import AnalysisResult, DeployMemory
from .playbook import get_all_playbooks, get_playbook


def _json_output(data: Any) -> None:
    """Output data as JSON."""
    print(json.dumps(data, indent=2))


def _result_output(result: AnalysisResult) -> None:
    _json_output(result.to_dict())
    if result.store_error is not None:
        click.echo(f"Warning: event not recorded: {result.store_error}", err=True)


def _memory(ctx: click.Context) -> DeployMemory:
    return ctx.obj['memory']


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.option('--backend', type=click.Choice(['dynamodb', 'local']), help='Override DEPLOY_MEMORY_BACKEND')
@click.pass_context
def main(ctx, verbose: bool, backend: Optional[str]):
    """Deploy Memory - fingerprint deploy failures and recommend remediation."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)

    environ: Dict[str, str] = {}
    if backend:
        environ = dict(os.environ, DEPLOY_MEMORY_BACKEND=backend)

    try:
        settings = get_settings(environ or None)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    ctx.obj['settings'] = settings
    ctx.obj['memory'] = DeployMemory(settings=settings)


@main.command('classify')
@click.argument('source', type=click.File('r'), default='-')
@click.option('--stack', 'stack_name', help='Stack name to record with the event')
@click.option('--record/--no-record', default=False, help='Append the classification to the store')
@click.pass_context
def classify_cmd(ctx, source, stack_name: Optional[str], record: bool):
    """Classify CDK console output read from SOURCE (default: stdin)."""
    result = _memory(ctx).analyze_cdk_output(source.read(), stack_name=stack_name, record=record)
    _result_output(result)


@main.command('collect')
@click.argument('stack_name')
@click.option('--record/--no-record', default=True, help='Append the classification to the store')
@click.pass_context
def collect_cmd(ctx, stack_name: str, record: bool):
    """Collect and classify failures from STACK_NAME's recent events."""
    try:
        result = _memory(ctx).analyze_stack(stack_name, record=record)
    except CollectorError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except (ClientError, BotoCoreError) as e:
        click.echo(f"AWS error: {e}", err=True)
        sys.exit(1)
    _result_output(result)


@main.command('history')
@click.argument('fingerprint_id')
@click.option('--limit', type=int, default=10, show_default=True, help='Maximum events to show')
@click.pass_context
def history_cmd(ctx, fingerprint_id: str, limit: int):
    """Show recent events for FINGERPRINT_ID, most recent first."""
    try:
        events = _memory(ctx).store.query_by_fingerprint(fingerprint_id, limit=limit)
    except (StoreError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except (ClientError, BotoCoreError) as e:
        click.echo(f"AWS error: {e}", err=True)
        sys.exit(1)
    _json_output([event.to_dict() for event in events])


@main.command('stats')
@click.argument('fingerprint_id')
@click.pass_context
def stats_cmd(ctx, fingerprint_id: str):
    """Show occurrence statistics for FINGERPRINT_ID."""
    try:
        stats = _memory(ctx).store.get_event_stats(fingerprint_id)
    except (StoreError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except (ClientError, BotoCoreError) as e:
        click.echo(f"AWS error: {e}", err=True)
        sys.exit(1)
    _json_output(stats.to_dict())


@main.command('playbook')
@click.argument('fingerprint_or_class', required=False)
@click.option('--all', 'show_all', is_flag=True, help='List all playbooks')
def playbook_cmd(fingerprint_or_class: Optional[str], show_all: bool):
    """Show the playbook for a playbook id or error class."""
    if show_all:
        _json_output([p.to_dict() for p in get_all_playbooks()])
        return

    if not fingerprint_or_class:
        click.echo("Provide a playbook id or error class, or use --all", err=True)
        sys.exit(1)

    _json_output(get_playbook(fingerprint_or_class).to_dict())


if __name__ == "__main__":
    main()
