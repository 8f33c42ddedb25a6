"""Compression ladder for past-subject summaries."""

from __future__ import annotations

from enum import Enum


class CompressionMode(str, Enum):
    """Summary density, from most detailed to most lossy."""

    RICH = "rich"
    BALANCED = "balanced"
    MINIMAL = "minimal"
    EXTREME = "extreme"


COMPRESSION_LADDER: tuple[CompressionMode, ...] = (
    CompressionMode.RICH,
    CompressionMode.BALANCED,
    CompressionMode.MINIMAL,
    CompressionMode.EXTREME,
)


def next_compression_mode(mode: CompressionMode | str) -> CompressionMode:
    """One step down the ladder. ``extreme`` stays ``extreme``."""
    index = COMPRESSION_LADDER.index(CompressionMode(mode))
    return COMPRESSION_LADDER[min(index + 1, len(COMPRESSION_LADDER) - 1)]
