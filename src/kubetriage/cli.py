"""
Command-line interface for kubetriage

Provides CLI commands for:
- Running the webhook server: kubetriage serve --config kubetriage.yml
- Inspecting configuration: kubetriage config --show
- Summarizing recorded feedback: kubetriage feedback-stats
- Checking LLM routers: kubetriage llm-check
"""

import json
from typing import Optional

import click
import yaml

from . import __version__
from .config import TriageConfig, get_config, set_config
from .errors import FeedbackStoreError
from .feedback import FeedbackStore


@click.group()
@click.version_option(version=__version__, prog_name="kubetriage")
def cli():
    """kubetriage - AI triage of Kubernetes alerts with feedback learning"""


@cli.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML configuration file",
)
@click.option("--host", help="Bind address (overrides configuration)")
@click.option("--port", type=int, help="Listen port (overrides configuration)")
def serve(config_path: Optional[str], host: Optional[str], port: Optional[int]):
    """Run the webhook server"""
    import uvicorn

    from .server import create_app

    config = TriageConfig.load_from_file(config_path) if config_path else get_config()
    if host:
        config.server.host = host
    if port:
        config.server.port = port
    set_config(config)

    click.echo(f"🚀 kubetriage {__version__} on {config.server.host}:{config.server.port}")
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_config=None,
    )


@cli.command()
@click.option("--show", is_flag=True, help="Show current configuration")
@click.option(
    "--format",
    type=click.Choice(["yaml", "json"]),
    default="yaml",
    help="Output format",
)
def config(show: bool, format: str):
    """Inspect kubetriage configuration"""
    if not show:
        click.echo("Use --show to display current configuration")
        click.echo("Available options:")
        click.echo("  --show          Show current configuration")
        click.echo("  --format yaml   Output in YAML format (default)")
        click.echo("  --format json   Output in JSON format")
        return

    try:
        config_dict = get_config().model_dump(mode="json")
    except ValueError as e:
        click.echo(f"❌ Failed to load configuration: {e}", err=True)
        raise SystemExit(1) from e

    click.echo("🔧 Current kubetriage Configuration")
    click.echo("=" * 40)
    if format == "yaml":
        click.echo(yaml.dump(config_dict, default_flow_style=False, indent=2))
    else:
        click.echo(json.dumps(config_dict, indent=2))


@cli.command("feedback-stats")
@click.option("--path", type=click.Path(dir_okay=False), help="Feedback log to read")
def feedback_stats(path: Optional[str]):
    """Summarize recorded feedback"""
    try:
        store = FeedbackStore(path or get_config().feedback.path)
    except FeedbackStoreError as e:
        click.echo(f"❌ {e}", err=True)
        raise SystemExit(1) from e

    stats = store.get_stats()
    accuracy = stats.correct / stats.total * 100 if stats.total else 0.0

    click.echo(f"📊 Feedback in {store.path}")
    click.echo("=" * 40)
    click.echo(f"Total:     {stats.total}")
    click.echo(f"Correct:   {stats.correct}")
    click.echo(f"Incorrect: {stats.incorrect}")
    click.echo(f"Accuracy:  {accuracy:.1f}%")


@cli.command("llm-check")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML configuration file",
)
def llm_check(config_path: Optional[str]):
    """Check that every configured LLM router answers"""
    import asyncio

    from .llm_client import LLMRouter

    config = TriageConfig.load_from_file(config_path) if config_path else get_config()
    results = asyncio.run(LLMRouter(config).health_check_all())

    for router_name, healthy in results.items():
        click.echo(f"{'✅' if healthy else '❌'} {router_name}")
    if not all(results.values()):
        raise SystemExit(1)


def main():
    """Entry point for the CLI"""
    cli()


if __name__ == "__main__":
    main()
