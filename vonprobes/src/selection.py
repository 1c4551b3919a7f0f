"""K-closest selection by quickselect, without sorting the whole population."""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from .world import World

T = TypeVar("T")


def select_k_closest_in_place(items: list, k: int, point: tuple[float, float],
                              world: World) -> None:
    """Reorder ``items`` so its first k entries are the k nearest to ``point``.

    Items need ``x`` and ``y`` attributes. Distances are wrapped squared
    distances; order within the first k (and after it) is arbitrary.
    """
    if k <= 0 or k >= len(items):
        return
    px, py = point
    keyed = [(world.distance_sq(px, py, item.x, item.y), item) for item in items]
    quickselect(keyed, k)
    items[:] = [item for _, item in keyed]


def quickselect(keyed: list[tuple[float, T]], k: int) -> None:
    """Partially order (key, value) pairs so the k smallest keys come first."""
    if k <= 0 or k >= len(keyed):
        return
    target = k - 1
    left, right = 0, len(keyed) - 1
    while left < right:
        low_end, high_start = _partition(keyed, left, right)
        if target <= low_end:
            right = low_end
        elif target >= high_start:
            left = high_start
        else:
            # Everything between the two halves equals the pivot key.
            return


def _partition(keyed: list[tuple[float, T]], left: int, right: int) -> tuple[int, int]:
    """Hoare partition around the middle key.

    Returns (j, i) with keys in [left, j] <= pivot, keys in [i, right] >= pivot
    and every key strictly between j and i equal to the pivot. Both scans stop
    on equal keys, so runs of identical distances split evenly.
    """
    pivot_value = keyed[(left + right) // 2][0]
    i, j = left, right
    while i <= j:
        while keyed[i][0] < pivot_value:
            i += 1
        while keyed[j][0] > pivot_value:
            j -= 1
        if i <= j:
            keyed[i], keyed[j] = keyed[j], keyed[i]
            i += 1
            j -= 1
    return j, i
