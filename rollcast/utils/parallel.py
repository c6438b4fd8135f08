"""Split-level worker pool."""

import logging
from typing import Any, Callable, Dict, Iterable, Tuple, TypeVar

from joblib import Parallel, delayed

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_indexed(
    func: Callable[..., T],
    items: Iterable[Tuple[int, Any]],
    n_jobs: int = 1,
    prefer: str = "threads",
) -> Dict[int, T]:
    """
    Run ``func(item)`` for every ``(key, item)`` pair and join results by key.

    Args:
        func: Work function applied to each item
        items: Iterable of (key, item) pairs, keys unique
        n_jobs: Number of workers; 1 runs sequentially in-process
        prefer: joblib backend preference ('threads' or 'processes')

    Returns:
        Dictionary mapping each key to its result, ordered by key
    """
    items = list(items)
    keys = [key for key, _ in items]
    if len(set(keys)) != len(keys):
        raise ValueError("run_indexed requires unique keys")

    if n_jobs == 1 or len(items) <= 1:
        results = [func(item) for _, item in items]
    else:
        logger.debug(f"Dispatching {len(items)} jobs across {n_jobs} workers ({prefer})")
        results = Parallel(n_jobs=n_jobs, prefer=prefer)(
            delayed(func)(item) for _, item in items
        )

    return {key: result for key, result in sorted(zip(keys, results), key=lambda kv: kv[0])}
