"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import hashlib
import logging
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from songrelay import __version__
from songrelay.api.catalog import DirectLinkCatalog
from songrelay.api.uploader import BotApiUploader
from songrelay.core.transfer import TransferOrchestrator
from songrelay.exceptions import ConfigurationError
from songrelay.media.downloader import Downloader, close_connection_pool
from songrelay.media.memory import MIB, MemoryProbe
from songrelay.media.storage_selector import decide
from songrelay.models.config import RelayConfig
from songrelay.models.song import SongDetail
from songrelay.storage.config_manager import ConfigManager
from songrelay.storage.song_cache import SongCache

from .formatters import print_probe_table, print_status_table, print_transfer_result

console = Console()

logging.basicConfig(
    level="WARNING",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("songrelay")

app = typer.Typer(
    name="songrelay",
    help=(
        "Download songs, tag them, and relay them to a chat through the Bot API."
        " Use 'songrelay <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "songrelay"


DEFAULT_CONFIG_FILE = get_config_dir() / "config.ini"


def _config_path(ctx: typer.Context) -> Path:
    return (ctx.obj or {}).get("config_path", DEFAULT_CONFIG_FILE)


def _load_config(ctx: typer.Context) -> RelayConfig:
    """Loads the config and applies its log level unless -v was given."""
    config = ConfigManager(_config_path(ctx)).load_config()
    if not (ctx.obj or {}).get("verbose"):
        log.setLevel(config.log_level.upper())
    return config


def _song_id_for(url: str) -> int:
    """A stable id for a direct link, so repeat sends hit the cache."""
    return int(hashlib.sha1(url.encode("utf-8")).hexdigest()[:12], 16)  # noqa: S324


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    config: Path = typer.Option(
        DEFAULT_CONFIG_FILE, "--config", "-c", help="Path to the INI config file."
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
):
    """songrelay CLI"""
    if version:
        console.print(f"[bold]songrelay[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    if verbose >= 2:
        log.setLevel("DEBUG")
    elif verbose == 1:
        log.setLevel("INFO")
    ctx.obj = {"config_path": config, "verbose": verbose}

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    ctx: typer.Context,
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing config without asking."
    ),
):
    """Write a default configuration file."""
    path = _config_path(ctx)
    if (
        path.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    ConfigManager(path).save_default_config()
    console.print(f"[bold green]✓ Configuration saved to '{path}'[/bold green]")
    console.print("Set [cyan]token[/cyan] in the [cyan]\\[bot][/cyan] section before sending.")


@app.command()
def send(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Direct link to the audio file."),
    chat_id: str = typer.Option(..., "--chat-id", help="Destination chat id."),
    title: str = typer.Option(..., "--title", "-t", help="Song title."),
    artist: list[str] = typer.Option(  # noqa: B008
        ..., "--artist", "-a", help="Artist name. Repeat for several artists."
    ),
    album: str | None = typer.Option(None, "--album", help="Album name."),
    duration: int = typer.Option(0, "--duration", help="Duration in seconds."),
    cover_url: str | None = typer.Option(
        None, "--cover-url", help="Album picture URL for cover art."
    ),
    song_id: int | None = typer.Option(
        None, "--id", help="Song id used as the cache key (derived from URL if omitted)."
    ),
):
    """Download, tag, and upload one song."""
    config = _load_config(ctx)
    if not config.bot_token:
        raise ConfigurationError(
            f"No bot token configured. Set 'token' under [bot] in '{_config_path(ctx)}'."
        )

    song = SongDetail(
        id=song_id if song_id is not None else _song_id_for(url),
        name=title,
        artists=artist,
        album=album,
        album_pic_url=cover_url,
        duration_ms=duration * 1000 if duration > 0 else None,
    )

    async def _send_async():
        uploader = BotApiUploader.from_config(config)
        try:
            orchestrator = TransferOrchestrator(
                config,
                catalog=DirectLinkCatalog(song, url),
                downloader=Downloader.from_config(config),
                uploader=uploader,
                cache=SongCache(config.database),
            )
            result = await orchestrator.process(song.id, chat_id)
            return result, orchestrator.stats
        finally:
            await close_connection_pool()
            await uploader.pool.close()

    result, stats = asyncio.run(_send_async())
    print_transfer_result(result, stats)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def probe(
    ctx: typer.Context,
    size_mb: int = typer.Option(
        0, "--size-mb", help="File size to decide for (0 = unknown)."
    ),
):
    """Show where a file of the given size would be staged."""
    config = _load_config(ctx)
    available = MemoryProbe().refresh()
    decision = decide(
        config.storage_mode,
        size_mb * MIB,
        available,
        config.memory_threshold_mb,
        config.memory_buffer_mb,
        config.default_capacity_bytes,
    )
    effective_mb = size_mb or config.default_capacity_mb
    print_probe_table(config, effective_mb, available, decision)


@app.command()
def status(ctx: typer.Context):
    """Show configuration, available memory, and cache size."""
    config = _load_config(ctx)

    async def _count():
        return await SongCache(config.database).count()

    print_status_table(
        _config_path(ctx), config, MemoryProbe().refresh(), asyncio.run(_count())
    )


@app.command()
def rmcache(
    ctx: typer.Context,
    song_id: int = typer.Argument(..., help="Song id to forget."),
):
    """Delete one cached song record."""
    config = _load_config(ctx)

    async def _delete():
        return await SongCache(config.database).delete(song_id)

    if asyncio.run(_delete()):
        console.print(f"[green]✓ Removed song {song_id} from the cache.[/green]")
    else:
        console.print(f"[yellow]Song {song_id} was not cached.[/yellow]")


@app.command()
def clearcache(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Bypass the confirmation prompt."),
):
    """Delete every cached song record."""
    if not yes and not typer.confirm(
        "Are you sure you want to clear the song cache? Every song will be "
        "downloaded again on its next request."
    ):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()

    config = _load_config(ctx)

    async def _clear():
        return await SongCache(config.database).clear_all()

    removed = asyncio.run(_clear())
    console.print(f"[green]✓ Song cache cleared ({removed} records removed).[/green]")
