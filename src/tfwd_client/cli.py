from __future__ import annotations

import asyncio
import json
from typing import Callable, List, Optional

import typer

from .client import ForwarderClient
from .config import ForwarderSettings, load_settings
from .errors import ConfigurationError

app = typer.Typer(help="telemetry forwarder CLI")

# ---------------------------
# Common options
# ---------------------------


def api_key_opt() -> Optional[str]:
    return typer.Option(None, "--api-key", envvar="TFWD_API_KEY", help="Ingestion API key")


def project_opt() -> Optional[str]:
    return typer.Option(None, "--project-id", envvar="TFWD_PROJECT_ID", help="Project identifier")


def api_url_opt() -> Optional[str]:
    return typer.Option(None, "--api-url", envvar="TFWD_API_URL", help="Ingestion base URL")


def _settings(api_key: Optional[str], project_id: Optional[str], api_url: Optional[str]) -> ForwarderSettings:
    try:
        return load_settings(api_key=api_key, project_id=project_id, api_url=api_url)
    except ConfigurationError as e:
        raise typer.BadParameter(str(e))


def _build_client(settings: ForwarderSettings) -> ForwarderClient:
    return ForwarderClient(settings)


def _run(settings: ForwarderSettings, fn: Callable[[ForwarderClient], None]) -> dict:
    async def main() -> dict:
        async with _build_client(settings) as client:
            fn(client)
            queued = client.engine.size
        return {"queued": queued, "pending": client.engine.size}

    return asyncio.run(main())


def _parse_fields(pairs: List[str]) -> dict:
    out = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected key=value, got {pair!r}")
        out[key] = value
    return out


# ---------------------------
# Commands
# ---------------------------


@app.command("send-log")
def send_log(
    message: str = typer.Argument(..., help="Log message"),
    level: str = typer.Option("info", "--level", help="debug|info|warning|error|fatal|trace"),
    field: List[str] = typer.Option([], "--field", help="Extra field as key=value (repeatable)"),
    api_key: Optional[str] = api_key_opt(),
    project_id: Optional[str] = project_opt(),
    api_url: Optional[str] = api_url_opt(),
):
    if level not in ("debug", "info", "warning", "error", "fatal", "trace"):
        raise typer.BadParameter(f"unknown level {level!r}")
    fields = _parse_fields(field)
    settings = _settings(api_key, project_id, api_url)
    result = _run(settings, lambda c: c.app.log(message, level=level, fields=fields))
    typer.echo(json.dumps(result, indent=2))


@app.command("send-event")
def send_event(
    name: str = typer.Argument(..., help="Event name"),
    channel: Optional[str] = typer.Option(None, "--channel", help="Channel name"),
    channel_id: Optional[str] = typer.Option(None, "--channel-id", help="Channel id"),
    tag: List[str] = typer.Option([], "--tag", help="Tag (repeatable)"),
    api_key: Optional[str] = api_key_opt(),
    project_id: Optional[str] = project_opt(),
    api_url: Optional[str] = api_url_opt(),
):
    if not channel and not channel_id:
        raise typer.BadParameter("either --channel or --channel-id is required")
    settings = _settings(api_key, project_id, api_url)
    result = _run(
        settings,
        lambda c: c.event.send(name, channel_name=channel, channel_id=channel_id, tags=tag),
    )
    typer.echo(json.dumps(result, indent=2))


@app.command("show-config")
def show_config(
    api_key: Optional[str] = api_key_opt(),
    project_id: Optional[str] = project_opt(),
    api_url: Optional[str] = api_url_opt(),
):
    settings = _settings(api_key, project_id, api_url)
    data = settings.model_dump()
    data["api_key"] = "***"
    data["base_url"] = settings.base_url
    typer.echo(json.dumps(data, indent=2, default=str))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
