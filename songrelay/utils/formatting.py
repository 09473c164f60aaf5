"""
Helper functions for formatting data into human-readable strings.
"""

_UNSAFE_FILENAME_CHARS = str.maketrans({c: " " for c in '/\\?*:|<>"'})


def format_size(bytes_size: int) -> str:
    """Formats bytes into a human-readable size string (e.g., '145.3 MB')."""
    if bytes_size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    while bytes_size >= 1024 and i < len(units) - 1:
        bytes_size /= 1024
        i += 1
    return f"{bytes_size:.1f} {units[i]}"


def format_duration(seconds: float) -> str:
    """Formats a duration in seconds as 'mm:ss'."""
    minutes, secs = divmod(max(int(seconds), 0), 60)
    return f"{minutes:02d}:{secs:02d}"


def throughput_mbps(num_bytes: int, elapsed_seconds: float) -> float:
    """Returns throughput in MiB per second, or 0.0 when no time has elapsed."""
    if elapsed_seconds <= 0:
        return 0.0
    return (num_bytes / (1024 * 1024)) / elapsed_seconds


def clean_filename(name: str) -> str:
    """Replaces characters that are unsafe in file names with spaces."""
    return name.translate(_UNSAFE_FILENAME_CHARS).strip()


def format_artists(artists: list[str]) -> str:
    """Joins artist names the way they are displayed and tagged."""
    return "/".join(a for a in artists if a)


def build_caption(
    title: str,
    artists: str,
    album: str,
    file_ext: str,
    size_bytes: int,
    bitrate_bps: int,
    bot_username: str = "",
) -> str:
    """Builds the caption sent alongside an uploaded audio file."""
    kbps = bitrate_bps / 1000
    lines = [
        f"「{title}」- {artists}",
        f"专辑: {album}",
        f"#网易云音乐 #{file_ext.lower()} {size_bytes / (1024 * 1024):.2f}MB {kbps:.2f}kbps",
    ]
    if bot_username:
        lines.append(f"via @{bot_username}")
    return "\n".join(lines)
