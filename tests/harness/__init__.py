"""Test harness utilities for normalizer and adapter validation."""

from .normalizer_harness import collect, collect_async, labels, normalize, part_indices

__all__ = [
    "collect",
    "collect_async",
    "labels",
    "normalize",
    "part_indices",
]
