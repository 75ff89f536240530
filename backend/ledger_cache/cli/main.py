"""CLI entrypoint for the ledger cache."""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Optional

import requests
import typer

app = typer.Typer(name="ldgc", help="Ledger cache command-line interface")

DEFAULT_HOST = "http://127.0.0.1:8080"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("LDGC_HOST")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    headers = kwargs.pop("headers", {})
    api_key = os.environ.get("LDGC_API_KEY")
    if api_key:
        headers["X-API-Key"] = api_key
    try:
        resp = requests.request(method, url, timeout=60, headers=headers, **kwargs)
    except requests.RequestException as exc:
        typer.echo(f"Request failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if not resp.ok:
        try:
            detail = resp.json().get("error", resp.text)
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _show(path: str, host: Optional[str]) -> None:
    resp = _request("GET", path, host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


HostOption = typer.Option(None, "--host", help="Override server host")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--bind", help="Interface to bind"),
    port: int = typer.Option(8080, "--port", help="Port to listen on"),
    config: Optional[Path] = typer.Option(None, "--config", help="YAML configuration file"),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    if config is not None:
        os.environ["LDGC_CONFIG"] = str(config.expanduser())
    uvicorn.run("ledger_cache.app:app", host=host, port=port)


@app.command()
def ingest(
    cursor: Optional[str] = typer.Option(None, "--cursor", help="Stream cursor to start from"),
    config: Optional[Path] = typer.Option(None, "--config", help="YAML configuration file"),
) -> None:
    """Run the ledger stream adapter in the foreground until interrupted."""
    from ledger_cache.core.config import Settings
    from ledger_cache.core.logging import configure_logging
    from ledger_cache.services import build_services

    settings = Settings.from_yaml(config)
    if cursor:
        settings.stream_cursor = cursor
    configure_logging(settings.log_level, use_json=settings.log_json)
    services = build_services(settings)
    if services.watcher is not None:
        services.watcher.start()
    stop = threading.Event()
    try:
        services.stream.run(stop)
    except KeyboardInterrupt:
        stop.set()
    finally:
        services.close()


@app.command()
def account(account_id: str = typer.Argument(..., help="Account id"), host: Optional[str] = HostOption) -> None:
    """Show an account snapshot."""
    _show(f"/accounts/{account_id}", host)


@app.command()
def balance(account_id: str = typer.Argument(..., help="Account id"), host: Optional[str] = HostOption) -> None:
    """Show an account's native balance."""
    _show(f"/accounts/{account_id}/balance", host)


@app.command()
def trustlines(account_id: str = typer.Argument(..., help="Account id"), host: Optional[str] = HostOption) -> None:
    """List an account's trustlines."""
    _show(f"/accounts/{account_id}/trustlines", host)


@app.command()
def ledger(sequence: int = typer.Argument(..., help="Ledger sequence"), host: Optional[str] = HostOption) -> None:
    """Show a ledger header."""
    _show(f"/ledgers/{sequence}", host)


@app.command()
def latest(host: Optional[str] = HostOption) -> None:
    """Show the latest fully committed ledger."""
    _show("/ledgers/latest", host)


@app.command()
def tx(tx_hash: str = typer.Argument(..., help="Transaction hash"), host: Optional[str] = HostOption) -> None:
    """Show a transaction envelope."""
    _show(f"/transactions/{tx_hash}", host)


@app.command("cache-account")
def cache_account(account_id: str = typer.Argument(..., help="Account id"), host: Optional[str] = HostOption) -> None:
    """Ask the server to re-hydrate an account."""
    resp = _request("POST", "/internal/cache-account", host=host, json={"account_id": account_id})
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def backfill(account_id: str = typer.Argument(..., help="Account id"), host: Optional[str] = HostOption) -> None:
    """Run a history backfill walk and print its outcome."""
    _show(f"/internal/backfill/{account_id}", host)


if __name__ == "__main__":
    app()
