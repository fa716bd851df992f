from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from .errors import OrderKeysExhaustedError

ORDER_STEP = 1024.0
# Below this gap two neighbours are considered converged
MIN_GAP = 1e-9

T = TypeVar("T")


def order_between(prev_key: Optional[float], next_key: Optional[float]) -> float:
    """Sort key for an item dropped between ``prev_key`` and ``next_key``.

    Repeated insertion into the same gap halves it every time; after a few
    dozen halvings the neighbours can no longer be told apart and
    ``OrderKeysExhaustedError`` is raised so the caller can ``rebalance``.
    """
    if prev_key is None and next_key is None:
        return ORDER_STEP
    if prev_key is None:
        return next_key - ORDER_STEP
    if next_key is None:
        return prev_key + ORDER_STEP
    if next_key < prev_key:
        prev_key, next_key = next_key, prev_key
    if next_key - prev_key < MIN_GAP:
        raise OrderKeysExhaustedError(f"No room between {prev_key!r} and {next_key!r}")
    key = (prev_key + next_key) / 2
    if key <= prev_key or key >= next_key:
        raise OrderKeysExhaustedError(f"No room between {prev_key!r} and {next_key!r}")
    return key


def rebalance(count: int) -> List[float]:
    """Evenly spaced keys for ``count`` items, in their current order."""
    return [ORDER_STEP * (index + 1) for index in range(count)]


def append_keys(items: Sequence[Any]) -> Tuple[float, Dict[str, float]]:
    """Key for a new item after ``items`` (already in display order), plus new keys for existing items.

    Items without a key sort last, so a key after the largest one would still
    land before them. In that case every item is re-keyed in its current
    position and the new item goes after all of them.
    """
    if any(getattr(item, "order", None) is None for item in items):
        keys = rebalance(len(items) + 1)
        return keys[-1], {item.id: key for item, key in zip(items, keys)}
    return order_between(items[-1].order if items else None, None), {}


def sort_by_order(items: Iterable[T]) -> List[T]:
    """Items with an ``order`` key first (ascending); unordered items keep their relative position last."""
    indexed = list(enumerate(items))
    indexed.sort(
        key=lambda pair: (
            getattr(pair[1], "order", None) is None,
            getattr(pair[1], "order", None) or 0.0,
            pair[0],
        )
    )
    return [item for _, item in indexed]
