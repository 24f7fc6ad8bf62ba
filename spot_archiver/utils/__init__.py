"""
Utility functions for spot-archiver.

This module provides small helpers used across the application:
    - Spotify ID extraction from URLs and URIs
    - Path helpers
    - Order-preserving list helpers for track URI sequences

Usage:
    from spot_archiver.utils import (
        extract_spotify_id,
        ensure_directory,
        chunked
    )
"""

from pathlib import Path
from typing import Iterable, Iterator, Sequence, TypeVar


T = TypeVar("T")


def extract_spotify_id(url_or_id: str) -> str:
    """
    Extract Spotify ID from a URL or return ID as-is.

    Handles various Spotify URL formats:
        - https://open.spotify.com/playlist/ID
        - https://open.spotify.com/playlist/ID?si=xxx
        - spotify:playlist:ID
        - spotify:user:someone:playlist:ID
        - Just the ID

    Args:
        url_or_id: Spotify URL or bare ID.

    Returns:
        The bare Spotify ID.

    Examples:
        extract_spotify_id("https://open.spotify.com/playlist/abc123?si=xyz")
        # Returns: "abc123"

        extract_spotify_id("spotify:playlist:abc123")
        # Returns: "abc123"
    """
    # Handle spotify: URI format
    if url_or_id.startswith("spotify:"):
        return url_or_id.split(":")[-1]

    # Handle URL format
    if "spotify.com" in url_or_id:
        url_or_id = url_or_id.split("?")[0]
        return url_or_id.rstrip("/").split("/")[-1]

    return url_or_id


def ensure_directory(path: Path) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Path to the directory.

    Returns:
        The same path (for chaining).

    Raises:
        OSError: If directory cannot be created (permissions, etc.)
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """
    Split a sequence into consecutive slices of at most `size` items.

    Example:
        list(chunked([1, 2, 3, 4, 5], 2))
        # Returns: [[1, 2], [3, 4], [5]]
    """
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def unique(items: Iterable[T]) -> list[T]:
    """Drop repeated items, keeping the first occurrence and the original order."""
    seen: set = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result
