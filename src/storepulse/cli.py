# src/storepulse/cli.py
"""storepulse Command Line Interface.

Operator tooling against a settings file and its device storage: inspect
state, redeliver the failed-delivery store, and record consent decisions.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from storepulse import __version__
from storepulse.clock import AsyncioScheduler
from storepulse.config import TrackerSettings, load_settings
from storepulse.delivery.failed_store import FailedDeliveryStore
from storepulse.errors import StorePulseError
from storepulse.factory import create_consent_gate, create_storage, create_tracker
from storepulse.identity import DEVICE_ID_KEY
from storepulse.storage import Scope

__all__ = ["app"]

app = typer.Typer(
    name="storepulse",
    help="storepulse: storefront telemetry collector.",
    no_args_is_help=True,
)

consent_app = typer.Typer(help="Record or revoke tracking consent for this device.", no_args_is_help=True)
app.add_typer(consent_app, name="consent")

SETTINGS_OPTION = typer.Option(
    Path("storepulse.yaml"),
    "--settings",
    "-s",
    help="Path to settings YAML file.",
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"storepulse version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)
    return load_dotenv(override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(False, "--no-dotenv", help="Skip loading .env file."),
    env_file: Path | None = typer.Option(None, "--env-file", help="Path to .env file (skips automatic search)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose/debug logging."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Output structured JSON logs."),
) -> None:
    """storepulse: storefront telemetry collector."""
    from storepulse.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")
    if not no_dotenv:
        _load_dotenv(env_file=env_file)


def _load(settings_path: Path) -> TrackerSettings:
    """Load settings or exit with a readable error."""
    try:
        return load_settings(settings_path)
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings_path}", err=True)
        raise typer.Exit(1) from None
    except (YamlParserError, YamlScannerError) as e:
        typer.echo(f"YAML syntax error in {settings_path}: {e.problem}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


@app.command()
def status(
    settings: Path = SETTINGS_OPTION,
    output_format: str = typer.Option("console", "--format", "-f", help="Output format: 'console' or 'json'."),
) -> None:
    """Show device identity, consent and failed-delivery state."""
    config = _load(settings)
    storage = create_storage(config)
    gate = create_consent_gate(config, storage, AsyncioScheduler())
    store = FailedDeliveryStore(storage, cap=config.failed_events_cap)

    report = {
        "project_id": config.project_id,
        "endpoint": config.api_endpoint,
        "storage_path": str(config.storage_path) if config.storage_path else None,
        "device_id": storage.get(DEVICE_ID_KEY, Scope.DEVICE),
        "consent_check": config.enable_consent_check,
        "consent": str(gate.status),
        "failed_events": len(store),
        "modules": list(config.modules),
    }
    if output_format == "json":
        typer.echo(json.dumps(report, indent=2))
        return
    for key, value in report.items():
        typer.echo(f"{key}: {value}")


async def _retry(config: TrackerSettings) -> tuple[int, int]:
    tracker = create_tracker(config)
    requeued = tracker.queue.retry_failed_events()
    await tracker.shutdown()
    return requeued, tracker.queue.health_metrics["events_delivered"]


@app.command()
def retry(settings: Path = SETTINGS_OPTION) -> None:
    """Redeliver events stored after failed deliveries."""
    config = _load(settings)
    if config.storage_path is None:
        typer.echo("Error: storage_path is not set; there is no persisted failed-delivery store.", err=True)
        raise typer.Exit(1)
    try:
        requeued, delivered = asyncio.run(_retry(config))
    except StorePulseError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    typer.echo(f"Requeued {requeued} events, delivered {delivered}.")
    if delivered < requeued:
        typer.secho("Some events could not be delivered and remain stored.", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(2)


def _record_consent(settings_path: Path, granted: bool | None) -> None:
    config = _load(settings_path)
    if config.storage_path is None:
        typer.echo("Error: storage_path is not set; consent would not persist.", err=True)
        raise typer.Exit(1)
    storage = create_storage(config)
    gate = create_consent_gate(config, storage, AsyncioScheduler())
    if granted is None:
        gate.revoke_consent()
    else:
        gate.set_consent(granted)
    typer.echo(f"Consent: {gate.status}")


@consent_app.command("grant")
def consent_grant(settings: Path = SETTINGS_OPTION) -> None:
    """Record that tracking consent was granted."""
    _record_consent(settings, True)


@consent_app.command("deny")
def consent_deny(settings: Path = SETTINGS_OPTION) -> None:
    """Record that tracking consent was denied."""
    _record_consent(settings, False)


@consent_app.command("revoke")
def consent_revoke(settings: Path = SETTINGS_OPTION) -> None:
    """Remove the stored consent decision."""
    _record_consent(settings, None)


if __name__ == "__main__":
    app()
