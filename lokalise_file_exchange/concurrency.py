import asyncio
from typing import Any, Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def run_bounded(
    items: Sequence[T],
    limit: int,
    worker: Callable[[T, int], Awaitable[R]],
    return_exceptions: bool = False,
) -> list[Any]:
    """Run worker over items with at most `limit` calls in flight.

    Results are returned in the order of `items`. With `return_exceptions`, a
    failing item leaves its exception in its slot and the other items still run;
    otherwise the first failure cancels the remaining work and is re-raised.
    """
    if limit < 1:
        raise ValueError("limit must be a positive integer")

    items = list(items)
    results: list[Any] = [None] * len(items)
    next_index = 0

    async def drain() -> None:
        nonlocal next_index
        while next_index < len(items):
            index = next_index
            next_index += 1
            try:
                results[index] = await worker(items[index], index)
            except Exception as e:
                if not return_exceptions:
                    raise
                results[index] = e

    tasks = [asyncio.create_task(drain()) for _ in range(min(limit, len(items)))]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    return results
