# cli.py
"""
Loss recorder CLI.

  lossrec tui   --host example.com          full-screen display (interactive variant)
  lossrec run   --host example.com          plain console output (console variant)
  lossrec check --config ./config.yaml      verify ping binary, resolution and config

Requirements:
  typer, rich, PyYAML
"""
from __future__ import annotations

import asyncio
import logging
import shutil
from typing import Optional

import typer

from config import LOSS_THRESHOLD_SECS, POLL_INTERVAL_SECS, Config, load_config, merge_options
from console_sink import run_console
from errors import ProbeRunError, ProbeSourceConstructionError
from logging_config import configure_logging
from probe import IPFamily, Pinger
from tui import run_tui

app = typer.Typer(add_completion=False, help="Record packet-loss windows for a single host")
logger = logging.getLogger(__name__)


def _load(config: Optional[str], **overrides) -> Config:
    try:
        return merge_options(load_config(config), **overrides)
    except (OSError, ValueError) as e:
        typer.secho(f"Config error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def build_pinger(cfg: Config, count: Optional[int] = None) -> Pinger:
    try:
        return Pinger(
            cfg.host,
            interval=cfg.probe_interval_secs,
            timeout=cfg.ping_timeout_secs,
            count=count,
            family=IPFamily(cfg.family),
        )
    except ProbeSourceConstructionError as e:
        logger.error("Pinger construction failed: %s", e)
        typer.secho(f"Error creating pinger: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command()
def tui(host: Optional[str] = typer.Option(None, help="Host to probe (default: google.com)"),
        config: Optional[str] = typer.Option(None, help="Path to config.yaml"),
        interval: Optional[float] = typer.Option(None, help="Seconds between probes"),
        timeout: Optional[int] = typer.Option(None, help="Seconds to wait for each reply"),
        refresh: float = typer.Option(0.5, help="Screen refresh interval seconds"),
        log_file: Optional[str] = typer.Option(None, help="Write diagnostic log to this file")):
    """Run the full-screen loss recorder until Ctrl-C."""
    configure_logging(log_file, quiet=True)
    cfg = _load(config, host=host, probe_interval_secs=interval, ping_timeout_secs=timeout)
    pinger = build_pinger(cfg)

    asyncio.run(run_tui(pinger, stats_interval=cfg.stats_interval_secs, refresh=refresh))
    typer.echo("Exiting...")


@app.command()
def run(host: Optional[str] = typer.Option(None, help="Host to probe (default: google.com)"),
        config: Optional[str] = typer.Option(None, help="Path to config.yaml"),
        interval: Optional[float] = typer.Option(None, help="Seconds between probes"),
        timeout: Optional[int] = typer.Option(None, help="Seconds to wait for each reply"),
        count: Optional[int] = typer.Option(None, "--count", "-c", help="Stop after this many probes"),
        log_file: Optional[str] = typer.Option(None, help="Write diagnostic log to this file")):
    """Run the loss recorder with plain console output."""
    configure_logging(log_file)
    cfg = _load(config, host=host, probe_interval_secs=interval, ping_timeout_secs=timeout)
    pinger = build_pinger(cfg, count=count)

    typer.secho(f"PING {pinger.host} ({pinger.ip_addr})", bold=True)
    try:
        asyncio.run(run_console(pinger, stats_interval=cfg.stats_interval_secs))
    except ProbeRunError as e:
        typer.secho(f"Ping error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)
    typer.echo("Exiting...")


@app.command()
def check(host: Optional[str] = typer.Option(None, help="Host to probe (default: google.com)"),
          config: Optional[str] = typer.Option(None, help="Path to config.yaml")):
    """Check the ping binary and host resolution, and print the effective config."""
    cfg = _load(config, host=host)
    typer.echo(f"ping present: {'yes' if shutil.which('ping') else 'NO'}")
    pinger = build_pinger(cfg)
    typer.echo(f"Host: {pinger.host} -> {pinger.ip_addr} | probe interval: {cfg.probe_interval_secs}s"
               f" | timeout: {cfg.ping_timeout_secs}s | stats every {cfg.stats_interval_secs}s")
    typer.echo(f"Loss window: no reply for more than {LOSS_THRESHOLD_SECS:g}s, checked every {POLL_INTERVAL_SECS:g}s")


if __name__ == "__main__":
    app()
