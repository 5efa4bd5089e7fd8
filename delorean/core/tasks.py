"""Bounded-parallel task runner.

Every batch job in delorean (object imports, bucket cleanup, Prometheus
queries, resource deletion) goes through :func:`run_tasks`. A task is a
nullary callable returning a ``Result``; tasks capture their own inputs and
share no mutable state.

Usage:
    tasks = [partial(import_object, key) for key in keys]
    match run_tasks(tasks, max_workers=10, ctx=ctx):
        case Ok(values):
            ...
        case Err(error):
            ...
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from delorean.core.context import RunContext, TaskCancelled
from delorean.core.result import Err, Ok, Result

__all__ = ["Task", "run_tasks"]

type Task[T, E] = Callable[[], Result[T, E]]

# How often the dispatcher wakes up to look at the context while tasks run.
_WAIT_SECONDS = 0.05


def run_tasks[T, E](
    tasks: Sequence[Task[T, E]],
    *,
    max_workers: int,
    ctx: RunContext,
) -> Result[list[T], E | TaskCancelled]:
    """Run ``tasks`` with at most ``max_workers`` in flight.

    Results are returned in input order. The first task to return ``Err``
    stops dispatch and its error is returned; tasks already running are left
    to finish in the background. A cancelled or expired context is reported
    as ``TaskCancelled`` at the next wake point.

    Each call owns its own worker pool, so a task may call ``run_tasks``
    again on a smaller batch.
    """
    match ctx.check():
        case Err() as cancelled:
            return cancelled
        case Ok():
            pass

    if not tasks:
        return Ok([])

    workers = max(1, min(max_workers, len(tasks)))
    pending: Iterator[tuple[int, Task[T, E]]] = iter(enumerate(tasks))
    in_flight: dict[Future[Result[T, E]], int] = {}
    values: dict[int, T] = {}

    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="delorean-task")

    def submit_next() -> bool:
        item = next(pending, None)
        if item is None:
            return False
        index, task = item
        in_flight[executor.submit(task)] = index
        return True

    try:
        while len(in_flight) < workers and submit_next():
            pass

        while in_flight:
            match ctx.check():
                case Err() as cancelled:
                    return cancelled
                case Ok():
                    pass

            done, _ = wait(in_flight, timeout=_WAIT_SECONDS, return_when=FIRST_COMPLETED)
            for future in done:
                index = in_flight.pop(future)
                match future.result():
                    case Ok(value):
                        values[index] = value
                    case Err() as failed:
                        return failed

            while len(in_flight) < workers and submit_next():
                pass
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    return Ok([values[i] for i in range(len(tasks))])
