"""Fan out independent RPC jobs to a thread pool.

Used for batches where items do not depend on each other: per-token
capacities and risk parameters, price feeds, per-recipient funding.
Stages stay sequential: a batch returns only after every job has finished.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Generic, Hashable, Iterable, TypeVar

from tqdm_loggable.auto import tqdm

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")

#: Default worker count. Public RPC nodes throttle above this.
DEFAULT_MAX_WORKERS = 8


@dataclass(slots=True)
class FanOutResult(Generic[K, T]):
    """Outcome of a batch, per job key."""

    #: Job key -> return value
    succeeded: dict = field(default_factory=dict)

    #: Job key -> exception raised by the job
    failed: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_first(self):
        """Re-raise the first failure, for batches where every item is required."""
        for key, exc in self.failed.items():
            raise exc


def run_in_parallel(
    jobs: Iterable[tuple[K, Callable[[], T]]],
    description: str,
    max_workers: int = DEFAULT_MAX_WORKERS,
    progress: bool = False,
) -> FanOutResult:
    """Run callables concurrently and collect every outcome.

    A failing job is logged with its key and does not stop the others.

    :param jobs:
        ``(key, zero-argument callable)`` pairs. Keys must be unique.

    :param description:
        Used as thread name prefix and progress bar label

    :param progress:
        Show a ``tqdm`` progress bar

    :return:
        Results and exceptions by key
    """
    jobs = list(jobs)
    result = FanOutResult()

    if not jobs:
        return result

    keys = [key for key, _ in jobs]
    assert len(set(keys)) == len(keys), f"Duplicate job keys in {description}: {keys}"

    thread_prefix = description.lower().replace(" ", "-")

    def _run(key, func):
        threading.current_thread().name = f"{thread_prefix}-{key}"
        return func()

    progress_bar = tqdm(total=len(jobs), desc=description, unit="job", disable=not progress)

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=thread_prefix) as executor:
        futures = {executor.submit(_run, key, func): key for key, func in jobs}

        for future in as_completed(futures):
            key = futures[future]
            try:
                result.succeeded[key] = future.result()
            except Exception as e:
                logger.error("%s failed for %s: %s", description, key, e)
                result.failed[key] = e
            progress_bar.update(1)

    progress_bar.close()

    if result.failed:
        logger.warning("%s: %d of %d jobs failed", description, len(result.failed), len(jobs))

    return result
