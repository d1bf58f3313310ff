# src/simstate_core/parallel/tasks.py
"""
Shared-memory task parallelism over disjoint ranges of local work items.

Work is split into contiguous, non-overlapping chunks. Each chunk is handed to a
worker that builds and returns its own partial result; nothing is accumulated into
shared mutable state. Partial results are combined afterwards, in chunk order, by an
associative `join`.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import reduce
from typing import Callable, List, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def split_range(n_items: int, n_chunks: int) -> List[range]:
    """
    Splits `range(n_items)` into at most `n_chunks` contiguous, non-empty ranges
    whose sizes differ by at most one.
    """
    if n_items <= 0:
        return []
    n_chunks = max(1, min(n_chunks, n_items))
    base, extra = divmod(n_items, n_chunks)
    chunks, start = [], 0
    for i in range(n_chunks):
        stop = start + base + (1 if i < extra else 0)
        chunks.append(range(start, stop))
        start = stop
    return chunks


def parallel_map(items: Sequence[T], body: Callable[[Sequence[T]], R], n_threads: int = 1) -> List[R]:
    """
    Applies `body` to disjoint chunks of `items` and returns the per-chunk results
    in chunk order. Runs inline when `n_threads` is 1.
    """
    chunks = [items[r.start:r.stop] for r in split_range(len(items), n_threads)]
    if len(chunks) <= 1 or n_threads <= 1:
        return [body(chunk) for chunk in chunks]

    with ThreadPoolExecutor(max_workers=n_threads, thread_name_prefix="task") as executor:
        futures = [executor.submit(body, chunk) for chunk in chunks]
        # .result() re-raises the worker's exception in the calling thread.
        return [future.result() for future in futures]


def parallel_reduce(
    items: Sequence[T],
    body: Callable[[Sequence[T]], R],
    join: Callable[[R, R], R],
    initial: R,
    n_threads: int = 1
) -> R:
    """
    Map-then-reduce over disjoint chunks: every chunk yields a partial result
    through `body`, and the partials are folded left-to-right with `join`
    starting from `initial`.
    """
    partials = parallel_map(items, body, n_threads)
    logger.debug(f"parallel_reduce joined {len(partials)} partial result(s) over {len(items)} item(s).")
    return reduce(join, partials, initial)
