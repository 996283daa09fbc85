"""
Command line interface for genstream.

Streams a live generation to the terminal, or replays a captured stream
file through the decoder.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table
from rich.text import Text

from . import __version__
from .client import GenerationClient
from .streaming.aggregator import MessageAggregator
from .streaming.session import SessionState, StreamSession, StreamSink
from .transport.base import IterableSource
from .utils.config import GenstreamConfig, load_config
from .utils.errors import ConfigurationError
from .utils.logging import setup_logging

console = Console(highlight=False)


class ConsoleSink(StreamSink):
    """Prints session callbacks as they arrive."""

    def __init__(self, out: Console):
        self.out = out

    def on_delta(self, text):
        self.out.print(Text(text), end="", soft_wrap=True)

    def on_progress(self, stage, status, message):
        self.out.print(Text(f"\n[{stage}] {status} - {message}", style="dim"))

    def on_passthrough(self, payload):
        self.out.print(Text(json.dumps(payload, ensure_ascii=False), style="cyan"))

    def on_error(self, error):
        self.out.print(Text(f"\n{error.kind.value}: {error.message}", style="bold red"))

    def on_complete(self):
        self.out.print()


def parse_params(values: Tuple[str, ...]) -> Dict[str, str]:
    params = {}
    for value in values:
        key, sep, item = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {value!r}", param_hint="--param")
        params[key] = item
    return params


@click.group()
@click.option("--config", "config_paths", multiple=True,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Configuration file (json, yaml, toml or .env)")
@click.option("--log-level", default=None, help="Override the configured log level")
@click.version_option(__version__, prog_name="genstream")
@click.pass_context
def cli(ctx: click.Context, config_paths: Tuple[Path, ...], log_level: Optional[str]):
    """Decode AI generation streams."""
    extra = {"logging": {"level": log_level}} if log_level else None
    try:
        config = load_config(list(config_paths), extra)
    except ConfigurationError as e:
        raise click.ClickException(e.message)

    setup_logging(
        app_name=config.app_name,
        log_level=config.logging.level,
        log_dir=config.logging.directory,
        enable_json=config.logging.format == "json",
        enable_file=config.logging.enable_file,
        enable_sentry=config.logging.enable_sentry,
        sentry_dsn=config.logging.sentry_dsn,
    )
    ctx.obj = config


@cli.command()
@click.argument("url")
@click.option("--token", default=None, help="Bearer token (overrides configuration)")
@click.option("--param", "params", multiple=True, help="Query parameter as key=value")
@click.option("--body", default=None, help="JSON request body; implies POST")
@click.option("--method", default=None, help="HTTP method")
@click.option("--stall-threshold", type=float, default=None,
              help="Seconds of silence before probing the backend")
@click.pass_obj
def stream(config: GenstreamConfig, url: str, token: Optional[str], params: Tuple[str, ...],
           body: Optional[str], method: Optional[str], stall_threshold: Optional[float]):
    """Stream a generation from URL and print it as it arrives."""
    if token:
        config.transport.token = token
    if stall_threshold is not None:
        config.stream.stall_threshold = stall_threshold

    json_body: Any = None
    if body is not None:
        try:
            json_body = json.loads(body)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--body")

    client = GenerationClient(config)
    session = asyncio.run(client.stream(
        url,
        [ConsoleSink(console)],
        params=parse_params(params) or None,
        body=json_body,
        method=method,
    ))

    if session.state is SessionState.FAILED:
        sys.exit(1)


@cli.command()
@click.argument("file", type=click.File("rb"))
@click.option("--chunk-size", type=int, default=None, help="Replay chunk size in bytes")
@click.pass_obj
def decode(config: GenstreamConfig, file, chunk_size: Optional[int]):
    """Replay a captured stream FILE and print the aggregated message."""
    data = file.read()
    size = chunk_size or config.stream.chunk_size
    if size <= 0:
        raise click.BadParameter("must be positive", param_hint="--chunk-size")
    chunks = [data[i:i + size] for i in range(0, len(data), size)]

    aggregator = MessageAggregator()
    message = aggregator.create("replay")
    session = StreamSession(
        IterableSource(chunks, name=getattr(file, "name", "replay")),
        sinks=[aggregator.sink_for(message.id)],
        settings=config.stream,
    )
    asyncio.run(session.run())

    if message.steps:
        table = Table(title="Progress")
        table.add_column("Stage")
        table.add_column("Status")
        table.add_column("Message")
        for step in message.steps:
            table.add_row(step.stage, step.status, step.message)
        console.print(table)

    console.print(Text(message.content), soft_wrap=True)

    if message.failed:
        console.print(Text(f"{message.error.kind.value}: {message.error.message}", style="bold red"))
        sys.exit(1)


def main():
    """Console script entry point."""
    cli(prog_name="genstream")


if __name__ == "__main__":
    main()
