"""Name collision detection between a selection and a destination listing."""

from __future__ import annotations

from typing import AbstractSet, Iterable


def detect(selection: Iterable[str], destination_listing: AbstractSet[str]) -> list[str]:
    """Return the selected names that already exist at the destination.

    Names are reported once each, in selection order. An empty result means
    the batch may proceed without asking the user.

    Args:
        selection: Names chosen for transfer.
        destination_listing: Names currently present at the destination.

    Returns:
        list[str]: Conflicting names.
    """
    seen: set[str] = set()
    conflicts: list[str] = []
    for name in selection:
        if name in seen:
            continue
        seen.add(name)
        if name in destination_listing:
            conflicts.append(name)
    return conflicts


__all__ = ["detect"]
