import asyncio
import time
from typing import Awaitable, Callable, Iterable

from loguru import logger

from lokalise_file_exchange.backoff import BackoffExecutor
from lokalise_file_exchange.concurrency import run_bounded
from lokalise_file_exchange.models import QueuedProcess


class ProcessPoller:
    """Tracks a batch of queued processes until they finish or the time budget runs out.

    Statuses outside of the finished set, including a missing status, are treated
    as pending. Timeouts are not raised: callers inspect the returned statuses.
    """

    def __init__(
        self,
        fetch_process: Callable[[str], Awaitable[QueuedProcess]],
        executor: BackoffExecutor,
        concurrency: int = 6,
        fast_follow_wait_time: float = 200.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetch_process = fetch_process
        self.executor = executor
        self.concurrency = concurrency
        self.fast_follow_wait_time = fast_follow_wait_time
        self.logger = logger
        self._sleep = sleep
        self._clock = clock

    async def _refresh(self, process_ids: list[str]) -> dict[str, QueuedProcess]:
        """Fetches the given processes, skipping the ones that could not be fetched this round"""

        async def fetch(process_id: str, _index: int) -> QueuedProcess:
            return await self.executor.execute(lambda: self.fetch_process(process_id))

        results = await run_bounded(
            process_ids, self.concurrency, fetch, return_exceptions=True
        )

        refreshed = {}
        for process_id, result in zip(process_ids, results):
            if isinstance(result, Exception):
                self.logger.warning(f"Failed to fetch process {process_id}: {result}")
                continue
            refreshed[process_id] = result
        return refreshed

    def _merge(
        self,
        refreshed: dict[str, QueuedProcess],
        processes_by_id: dict[str, QueuedProcess],
        pending_ids: set[str],
    ) -> None:
        for process_id, process in refreshed.items():
            processes_by_id[process_id] = process
            if process.is_finished:
                pending_ids.discard(process_id)

    async def poll(
        self,
        processes: Iterable[QueuedProcess],
        initial_wait_time: float,
        max_wait_time: float,
    ) -> list[QueuedProcess]:
        """Polls pending processes with a doubling wait; times are in milliseconds"""
        start_time = self._clock()
        wait_time = initial_wait_time

        processes_by_id: dict[str, QueuedProcess] = {}
        for process in processes:
            processes_by_id[process.process_id] = process
        pending_ids = {pid for pid, p in processes_by_id.items() if not p.is_finished}

        if not pending_ids:
            return list(processes_by_id.values())

        if self.fast_follow_wait_time > 0 and any(
            processes_by_id[pid].status is None for pid in pending_ids
        ):
            await self._sleep(self.fast_follow_wait_time / 1000)

        def elapsed() -> float:
            return (self._clock() - start_time) * 1000

        while pending_ids and elapsed() < max_wait_time:
            self.logger.debug(f"Polling {len(pending_ids)} pending process(es)")
            refreshed = await self._refresh(sorted(pending_ids))
            self._merge(refreshed, processes_by_id, pending_ids)

            if not pending_ids:
                break

            remaining = max_wait_time - elapsed()
            if remaining <= 0:
                break

            await self._sleep(min(wait_time, remaining) / 1000)
            wait_time = min(wait_time * 2, max(max_wait_time - elapsed(), 0))

        if pending_ids:
            refreshed = await self._refresh(sorted(pending_ids))
            self._merge(refreshed, processes_by_id, pending_ids)

        if pending_ids:
            self.logger.info(
                f"{len(pending_ids)} process(es) still pending after {max_wait_time}ms"
            )
        return list(processes_by_id.values())
