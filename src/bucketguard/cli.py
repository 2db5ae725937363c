"""Click CLI for bucketguard."""

import json as json_mod
import logging
import sys
import time
from pathlib import Path
from types import SimpleNamespace

import click

from bucketguard.config import BucketGuardConfig, load_config
from bucketguard.profiles import create_rate_limiter, get_profile


class _JsonFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record):
        return json_mod.dumps({
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        })


def setup_logging(level: str, json_log: bool = False) -> None:
    if json_log:
        handler = logging.StreamHandler()
        handler.setFormatter(_JsonFormatter())
        logging.basicConfig(
            level=getattr(logging, level.upper(), logging.INFO),
            handlers=[handler],
        )
    else:
        logging.basicConfig(
            level=getattr(logging, level.upper(), logging.INFO),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def _format_window(window_ms: int) -> str:
    seconds = window_ms / 1000
    if seconds >= 60 and seconds % 60 == 0:
        return f"{int(seconds // 60)}m"
    return f"{seconds:g}s"


@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(exists=True),
              default=None, help="Path to config YAML file")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--json-log", is_flag=True, help="Output logs in structured JSON format")
@click.pass_context
def cli(ctx, config_path, verbose, json_log):
    """bucketguard: token-bucket rate limiting for HTTP services."""
    ctx.ensure_object(dict)

    if config_path:
        try:
            config = load_config(Path(config_path))
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--config")
    else:
        config = BucketGuardConfig()

    if verbose:
        config.log_level = "DEBUG"

    setup_logging(config.log_level, json_log=json_log)
    ctx.obj["config"] = config


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print profiles as JSON")
@click.pass_context
def profiles(ctx, as_json):
    """List the configured rate limit profiles."""
    server = ctx.obj["config"].server

    if as_json:
        click.echo(json_mod.dumps({
            name: {"requests": p.requests, "window_ms": p.window_ms}
            for name, p in server.profiles.items()
        }, indent=2))
        return

    for name, p in sorted(server.profiles.items()):
        marker = " (default)" if name == server.default_profile else ""
        click.echo(f"  {name:<12} {p.requests:>6} / {_format_window(p.window_ms)}{marker}")


@cli.command()
@click.option("--profile", "-p", "profile_name", default=None,
              help="Profile to simulate (default: the server default profile)")
@click.option("--count", "-n", type=click.IntRange(min=1), default=10,
              help="Number of requests to send")
@click.option("--interval", type=click.FloatRange(min=0), default=0.0,
              help="Milliseconds to wait between requests")
@click.option("--ip", default="127.0.0.1", help="Client IP for the simulated requests")
@click.option("--user-agent", default="bucketguard-cli", help="User-Agent for the simulated requests")
@click.pass_context
def simulate(ctx, profile_name, count, interval, ip, user_agent):
    """Run COUNT requests from one client through a profile's limiter."""
    server = ctx.obj["config"].server
    name = profile_name or server.default_profile
    try:
        get_profile(name, server.profiles)
    except KeyError as e:
        raise click.UsageError(e.args[0])

    limiter = create_rate_limiter(name, server.profiles)
    request = SimpleNamespace(
        headers={"user-agent": user_agent},
        client=SimpleNamespace(host=ip),
    )

    allowed = 0
    for i in range(1, count + 1):
        result = limiter.limit(request)
        if result.success:
            allowed += 1
            click.echo(f"  #{i:<4} allowed  remaining={result.remaining}")
        else:
            click.echo(f"  #{i:<4} denied   retry_after={result.retry_after}ms")
        if interval and i < count:
            time.sleep(interval / 1000)

    click.echo(f"{allowed}/{count} allowed by profile '{name}'")


@cli.command()
@click.option("--host", default=None, help="Bind address (overrides config)")
@click.option("--port", type=int, default=None, help="Port (overrides config)")
@click.pass_context
def serve(ctx, host, port):
    """Run the HTTP API under uvicorn."""
    try:
        import uvicorn
        from bucketguard.http_api import create_api
    except ImportError as e:
        click.echo(f"Error: HTTP dependencies missing: {e}", err=True)
        sys.exit(1)

    server = ctx.obj["config"].server
    if host:
        server.host = host
    if port is not None:
        server.port = port

    click.echo("Starting bucketguard API...")
    click.echo(f"  Listen:  {server.host}:{server.port}")
    click.echo(f"  Default: {server.default_profile}")
    click.echo()

    uvicorn.run(create_api(server), host=server.host, port=server.port,
                log_level=ctx.obj["config"].log_level.lower())


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
