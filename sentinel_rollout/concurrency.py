"""Bounded fan-out of per-item work across worker threads."""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Sequence, TypeVar

from .config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _process_slice(work_group: Sequence[T], fn: Callable[[T], None]) -> list[BaseException]:
    errors = []
    for item in work_group:
        try:
            fn(item)
        except Exception as e:
            logger.debug(f"Deferred error while processing {item!r}: {e}")
            errors.append(e)
    return errors


def split_across_threads(
    all_work: Sequence[T],
    fn: Callable[[T], None],
    max_threads: Optional[int] = None,
) -> None:
    """
    Apply ``fn`` to every item using at most ``max_threads`` workers.

    The work is cut into contiguous slices, one per worker, so items of the
    same kind that sit next to each other share a worker. Every item is
    processed even if some raise; the first exception is re-raised once all
    workers are done.

    Args:
        all_work: Items to process
        fn: Side-effecting function applied to each item
        max_threads: Worker limit (defaults to settings.max_threads)

    Raises:
        Exception: The first exception raised by ``fn``, in work order
    """
    if not all_work:
        return
    max_threads = max_threads or get_settings().max_threads

    slice_size = math.ceil(len(all_work) / max_threads)
    slices = [all_work[i : i + slice_size] for i in range(0, len(all_work), slice_size)]

    with ThreadPoolExecutor(max_workers=len(slices)) as executor:
        futures = [executor.submit(_process_slice, work_group, fn) for work_group in slices]
        errors = [error for future in futures for error in future.result()]

    if errors:
        raise errors[0]
