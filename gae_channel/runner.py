"""
CLI entrypoint for gae-channel.
"""
import sys
import typer
import asyncio
import httpx
from loguru import logger

from gae_channel.client.factory import new_channel
from gae_channel.client.visualizer import Visualizer
from gae_channel.shared.client_utils import run_channel
from gae_channel.shared.config import settings
from gae_channel.shared.errors import ChannelError, ReauthRequiredError

app = typer.Typer(help="App Engine Channel API client")

def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())

@app.command()
def stream(
    host: str = typer.Argument(..., help="Application host, e.g. myapp.appspot.com or localhost:8080"),
    client_id: str = typer.Argument(..., help="Client id the application server created the channel for"),
    token: str = typer.Argument(..., help="Channel token issued by the application server"),
    duration: float = typer.Option(0.0, help="Stop after this many seconds (0 runs until interrupted)"),
    retry: bool = typer.Option(False, "--retry/--no-retry", help="Re-run the stream after network failures"),
    plain: bool = typer.Option(False, "--plain", help="Print one line per message instead of the live feed"),
):
    """Stream a channel's messages to the terminal."""
    configure_logging(settings.LOG_LEVEL)
    channel = new_channel(host, client_id, token)
    duration_s = duration if duration > 0 else None

    async def echo(message: str):
        typer.echo(message)

    try:
        if plain:
            asyncio.run(run_channel(channel, echo, duration_s, retry))
        else:
            asyncio.run(Visualizer(channel, host).run(duration_s, retry))
    except KeyboardInterrupt:
        pass
    except ReauthRequiredError as e:
        typer.echo(f"Token no longer valid: {e}", err=True)
        raise typer.Exit(2)
    except (ChannelError, httpx.HTTPError) as e:
        typer.echo(f"Stream failed: {e}", err=True)
        raise typer.Exit(1)

@app.command()
def config():
    """Print the effective settings."""
    typer.echo(settings.model_dump_json(indent=2))

if __name__ == "__main__":
    app()
