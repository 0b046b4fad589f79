"""Translate fetch requests into sequence-number windows."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from ..core.models import SearchResult


def plan_window(
    result: SearchResult | Sequence[int], limit: int, skip: int = 0
) -> tuple[int, ...]:
    """Select the newest ``limit`` sequence numbers after skipping ``skip``.

    ``result`` is ordered oldest first, as returned by SEARCH. The returned
    window is ordered newest first. When ``limit + skip`` exceeds the result
    size the window is clamped to the start of the result set.
    """
    if limit <= 0:
        raise ValueError("limit must be positive")
    if skip < 0:
        raise ValueError("skip must not be negative")

    numbers = tuple(
        result.sequence_numbers if isinstance(result, SearchResult) else result
    )
    if not numbers:
        return ()

    start = -(limit + skip)
    window = numbers[start:] if skip == 0 else numbers[start:-skip]
    return tuple(reversed(window))


def to_sequence_set(numbers: Iterable[int]) -> str:
    """Render sequence numbers as an IMAP sequence set such as ``7:9,3``.

    Consecutive runs are compressed in either direction; input order is kept.
    """
    ranges: list[tuple[int, int]] = []
    for number in numbers:
        if number < 1:
            raise ValueError(f"Invalid sequence number {number}")
        if ranges:
            first, last = ranges[-1]
            step = 1 if last >= first else -1
            if first == last and abs(number - last) == 1:
                ranges[-1] = (first, number)
                continue
            if number - last == step:
                ranges[-1] = (first, number)
                continue
        ranges.append((number, number))

    if not ranges:
        raise ValueError("Cannot build a sequence set from an empty window")
    return ",".join(
        str(first) if first == last else f"{min(first, last)}:{max(first, last)}"
        for first, last in ranges
    )


__all__ = ["plan_window", "to_sequence_set"]
