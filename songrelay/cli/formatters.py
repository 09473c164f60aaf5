"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from songrelay.core.transfer import TransferResult
from songrelay.exceptions import TransferError
from songrelay.media.storage_selector import StorageDecision
from songrelay.models.config import RelayConfig
from songrelay.models.stats import TransferStats
from songrelay.utils.formatting import format_size


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    stage = error.stage if isinstance(error, TransferError) else None
    # The stage gets its own row, so show the bare message.
    error_msg = Exception.__str__(error) if stage else str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Check the values in your configuration file.",
            "• Run `songrelay init` to write a fresh default config.",
        ],
        "UpstreamError": [
            "• The download host returned an error or no file size.",
            "• The link may have expired. Resolve a new one and retry.",
        ],
        "DownloadUnavailableError": [
            "• No quality tier produced a download link.",
            "• Lossless needs `music_u` in the [music] section.",
        ],
        "StagingIOError": [
            "• The staging directory may be full or read-only.",
            "• Check `dir` in the [download] section.",
        ],
        "UploadError": [
            "• Verify the bot token and chat id.",
            "• Large files need a local Bot API server (`api` in [bot]).",
            "• Raise `timeout_secs` in [upload] for slow links.",
        ],
        "EmptyFileError": ["• The host sent an empty body. Try again later."],
        "UndersizedFileError": [
            "• The host sent a tiny file, usually an error page or a preview.",
        ],
        "ClientResponseError": [
            "• A network connection issue occurred.",
            "• Please try again in a few minutes.",
        ],
        "TimeoutError": [
            "• A request timed out, which may indicate network throttling.",
            "• Raise `timeout` in [download] or `timeout_secs` in [upload].",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    if stage:
        content.add_row(
            Text(
                f"Stage: {stage} ({format_size(error.bytes_transferred)} received)",
                style="yellow",
            )
        )
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def _settings_table() -> Table:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()
    return table


def print_status_table(
    config_path: Path,
    config: RelayConfig,
    available_mb: int,
    cached_songs: int,
):
    """Displays a summary of the configuration and runtime state."""
    console = Console()
    table = _settings_table()

    table.add_row("Config File:", f"[dim]{config_path}[/dim]")
    table.add_row(
        "Bot Token:", "[green]set[/green]" if config.bot_token else "[red]missing[/red]"
    )
    table.add_row("Bot API:", config.bot_api)
    table.add_row(
        "Lossless Tier:", "✓ Enabled" if config.has_entitlement else "✗ Disabled"
    )
    table.add_row("Storage Mode:", config.storage_mode.value)
    table.add_row(
        "Memory Threshold:",
        f"{config.memory_threshold_mb} MB (buffer {config.memory_buffer_mb} MB)",
    )
    table.add_row("Cover Mode:", config.cover_mode.value)
    table.add_row("Max Downloads:", str(config.max_concurrent_downloads))
    table.add_row("Staging Dir:", f"[dim]{config.cache_dir}[/dim]")
    table.add_row("", "")
    table.add_row("Available Memory:", f"[magenta]{available_mb} MB[/magenta]")
    table.add_row("Cached Songs:", f"[green]{cached_songs}[/green]")

    console.print(Panel(table, title="[bold]songrelay status[/bold]", border_style="cyan"))


def print_probe_table(
    config: RelayConfig, size_mb: int, available_mb: int, decision: StorageDecision
):
    """Displays the storage decision for a hypothetical file."""
    console = Console()
    table = _settings_table()
    table.add_row("Mode:", config.storage_mode.value)
    table.add_row("File Size:", f"{size_mb} MB" if size_mb else "unknown")
    table.add_row("Available Memory:", f"{available_mb} MB")
    table.add_row("Required (memory):", f"{size_mb + config.memory_buffer_mb} MB")
    color = "green" if decision == StorageDecision.MEMORY else "yellow"
    table.add_row("Decision:", f"[bold {color}]{decision.value}[/bold {color}]")
    console.print(Panel(table, title="[bold]Storage Probe[/bold]", border_style=color))


def print_transfer_result(result: TransferResult, stats: TransferStats):
    """Displays the outcome of a transfer."""
    console = Console()
    table = _settings_table()

    if result.ok:
        source = "cache" if result.from_cache else "fresh transfer"
        table.add_row("✓ Delivered:", f"[bold green]song {result.song_id}[/bold green]")
        table.add_row("Source:", source)
        table.add_row("Size:", f"[cyan]{format_size(result.size)}[/cyan]")
        if result.storage is not None:
            table.add_row("Staged In:", result.storage.value)
        if not result.from_cache:
            table.add_row("Tagged:", "✓" if result.tagged else "✗")
        table.add_row("File ID:", f"[dim]{result.file_id}[/dim]")
        title, border = "[bold green]Transfer Complete[/bold green]", "green"
    else:
        table.add_row("✗ Failed:", f"[bold red]song {result.song_id}[/bold red]")
        title, border = "[bold red]Transfer Failed[/bold red]", "red"

    if stats.stale_cache_purges:
        table.add_row("Stale Cache Purged:", str(stats.stale_cache_purges))
    console.print(Panel(table, title=title, border_style=border, expand=False))
    if result.error is not None:
        console.print(format_error_with_suggestions(result.error))
