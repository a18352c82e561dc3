"""
Click CLI for the Topix service.

Commands talk to a running service over its HTTP API when one is running
(API mode) and otherwise work directly on the data directory (direct mode).
"""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

import click
import httpx
import yaml

from topix import __version__
from topix.server.config import Settings
from topix.server.exceptions import ServiceError, TopixError
from topix.server.plugins.registry import PluginRegistry
from topix.server.services.config_manager import ConfigManager
from topix.server.services.service_manager import ServiceManager, ServiceState
from topix.server.store import open_store

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Settings, verbose: bool = False, log_file: bool = False) -> None:
    """Configure root logging for the CLI process.

    Args:
        settings: Process settings
        verbose: Log at INFO (DEBUG when ``settings.debug``) instead of WARNING
        log_file: Also write to ``<data_dir>/logs/topix.log``
    """
    if settings.debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT)

    if log_file and settings.log_to_file:
        settings.ensure_data_dir()
        handler = logging.FileHandler(settings.log_dir / "topix.log")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(logging.INFO if level > logging.INFO else level)
        root = logging.getLogger()
        root.addHandler(handler)
        root.setLevel(min(root.level, handler.level))


def print_error(message: str) -> None:
    """Print error message to stderr."""
    click.secho(f"Error: {message}", fg="red", err=True)


def print_success(message: str) -> None:
    """Print success message."""
    click.secho(message, fg="green")


def get_settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _api_url(settings: Settings, path: str) -> str:
    return f"http://{settings.host}:{settings.port}{path}"


def _service_running(settings: Settings) -> bool:
    return ServiceManager(settings).status()["state"] != ServiceState.STOPPED.value


@click.group()
@click.option(
    "--data-dir",
    help="Data directory (database, config file, plugins)",
    envvar="TOPIX_DATA_DIR",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option("--json", "output_json", is_flag=True, help="JSON output (where supported)")
@click.version_option(__version__, prog_name="topix")
@click.pass_context
def cli(ctx: click.Context, data_dir: Optional[str], verbose: bool, output_json: bool) -> None:
    """
    Topix - personal headline aggregator.

    Collects headlines from plugins on a schedule and serves them as a
    feed and HTTP API.
    """
    settings = Settings(data_dir=data_dir) if data_dir else Settings()
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = verbose
    ctx.obj["json"] = output_json


@cli.command()
@click.pass_context
def start(ctx: click.Context) -> None:
    """
    Start the service in the foreground.

    Stops on SIGTERM or Ctrl+C.
    """
    settings = get_settings(ctx)
    configure_logging(settings, verbose=True, log_file=True)
    manager = ServiceManager(settings)
    try:
        asyncio.run(manager.run_forever())
    except ServiceError as e:
        print_error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        pass


@cli.command()
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Stop the running service."""
    settings = get_settings(ctx)
    configure_logging(settings, verbose=ctx.obj["verbose"])
    if asyncio.run(ServiceManager(settings).stop()):
        print_success("Service stopped")
    else:
        click.echo("Service is not running")


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show service status and the active feed preferences."""
    settings = get_settings(ctx)
    configure_logging(settings, verbose=ctx.obj["verbose"])
    info = ServiceManager(settings).status()

    preferences: Dict[str, Any] = {}
    if settings.database_path.exists():
        store = open_store(settings.database_url)
        if store is not None:
            try:
                preferences = store.preferences.get_all()
            finally:
                store.close()

    if ctx.obj["json"]:
        click.echo(json.dumps({"service": info, "preferences": preferences}, indent=2, default=str))
        return

    state = info["state"]
    color = "green" if state == ServiceState.RUNNING.value else "yellow"
    click.secho(f"Service: {state}", fg=color, bold=True)
    if info.get("pid"):
        click.echo(f"PID:     {info['pid']}")
    if info.get("port"):
        click.echo(f"URL:     http://{info.get('host', settings.host)}:{info['port']}")
    if info.get("uptime") is not None and state != ServiceState.STOPPED.value:
        click.echo(f"Uptime:  {int(info['uptime'])}s")

    feed = preferences.get("feed")
    if feed:
        click.echo(f"Feed:    {feed.get('title')} (max {feed.get('max_items')} items)")
    llm = preferences.get("llm")
    if llm:
        click.echo(f"LLM:     {llm.get('provider')}")


@cli.command()
@click.argument("plugin_id", required=False)
@click.pass_context
def fetch(ctx: click.Context, plugin_id: Optional[str]) -> None:
    """
    Fetch headlines now.

    \b
    Examples:
      topix fetch            # Fetch every enabled plugin
      topix fetch weather    # Fetch one plugin
    """
    settings = get_settings(ctx)
    configure_logging(settings, verbose=ctx.obj["verbose"])

    if _service_running(settings):
        results = _fetch_via_api(settings, plugin_id)
    else:
        results = asyncio.run(_fetch_direct(settings, plugin_id))

    failed = False
    for result in results:
        if result["error"]:
            failed = True
            print_error(f"{result['plugin_id']}: {result['error']}")
        else:
            print_success(f"{result['plugin_id']}: {result['count']} headlines")
    if not results:
        click.echo("No enabled plugins")
    if failed:
        sys.exit(1)


def _fetch_via_api(settings: Settings, plugin_id: Optional[str]) -> List[Dict[str, Any]]:
    with httpx.Client(timeout=120.0) as client:
        if plugin_id:
            plugin_ids = [plugin_id]
        else:
            response = client.get(_api_url(settings, "/api/plugins"))
            response.raise_for_status()
            plugin_ids = [p["id"] for p in response.json()["plugins"] if p["enabled"]]

        results = []
        for pid in plugin_ids:
            response = client.post(_api_url(settings, f"/api/plugins/{pid}/fetch"))
            if response.status_code == 200:
                results.append({"plugin_id": pid, "count": response.json()["count"], "error": None})
            else:
                message = response.json().get("message", response.text)
                results.append({"plugin_id": pid, "count": 0, "error": message})
        return results


async def _fetch_direct(settings: Settings, plugin_id: Optional[str]) -> List[Dict[str, Any]]:
    manager = ServiceManager(settings)
    manager.prepare()
    runtime = manager.runtime
    try:
        await runtime.initialize(manager.config_manager.get_plugin_configs())
        if plugin_id:
            try:
                headlines = await runtime.fetch_one(plugin_id)
                return [{"plugin_id": plugin_id, "count": len(headlines), "error": None}]
            except TopixError as e:
                return [{"plugin_id": plugin_id, "count": 0, "error": str(e)}]

        results = await runtime.fetch_all()
        return [
            {"plugin_id": pid, "count": r.headlines, "error": r.error}
            for pid, r in sorted(results.items())
            if not r.skipped
        ]
    finally:
        await runtime.shutdown()
        manager.store.close()


@cli.command()
@click.pass_context
def plugins(ctx: click.Context) -> None:
    """List installed plugins and whether they are enabled."""
    settings = get_settings(ctx)
    configure_logging(settings, verbose=ctx.obj["verbose"])

    registry = PluginRegistry(plugins_dir=settings.plugins_dir)
    registry.discover()
    configs = ConfigManager(settings.config_path).get_plugin_configs()

    rows = []
    for plugin in sorted(registry.list_plugins(), key=lambda p: p.descriptor.id):
        descriptor = plugin.descriptor
        config = configs.get(descriptor.id)
        rows.append(
            {
                "id": descriptor.id,
                "name": descriptor.name,
                "version": descriptor.version,
                "builtin": registry.is_builtin(descriptor.id),
                "enabled": bool(config and config.enabled),
                "schedule": config.schedule if config else None,
            }
        )

    if ctx.obj["json"]:
        click.echo(json.dumps(rows, indent=2))
        return
    if not rows:
        click.echo("No plugins installed")
        return

    for row in rows:
        marker = click.style("enabled", fg="green") if row["enabled"] else click.style("disabled", fg="yellow")
        origin = "built-in" if row["builtin"] else "user"
        schedule = f"  [{row['schedule']}]" if row["schedule"] else ""
        click.echo(f"{row['id']:<20} {row['name']} v{row['version']} ({origin}) {marker}{schedule}")


@cli.group()
def config() -> None:
    """Inspect the configuration file."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Print the active configuration."""
    settings = get_settings(ctx)
    configure_logging(settings, verbose=ctx.obj["verbose"])
    manager = ConfigManager(settings.config_path)
    if ctx.obj["json"]:
        click.echo(json.dumps(manager.get_full_config(), indent=2, default=str))
    else:
        click.echo(f"# {manager.path}")
        click.echo(yaml.safe_dump(manager.get_full_config(), sort_keys=False), nl=False)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
