import pytest

from lokalise_file_exchange.api_client import ApiError
from lokalise_file_exchange.backoff import BackoffExecutor
from lokalise_file_exchange.models import QueuedProcess, RetryParams
from lokalise_file_exchange.poller import ProcessPoller


class FakeClock:
    """Virtual time in seconds, advanced only by sleeping."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeProcessApi:
    """Reports each process as running until its scripted finish time (ms)."""

    def __init__(self, clock: FakeClock, finish_at: dict, final_status="finished"):
        self.clock = clock
        self.finish_at = finish_at
        self.final_status = final_status
        self.calls = []
        self.failures = {}

    async def get_process(self, process_id: str) -> QueuedProcess:
        self.calls.append((process_id, self.clock.now))
        if self.failures.get(process_id):
            self.failures[process_id] -= 1
            raise ApiError("Internal error", 500)
        finish_at = self.finish_at[process_id]
        if finish_at is not None and self.clock.now * 1000 >= finish_at:
            return QueuedProcess(process_id=process_id, status=self.final_status)
        return QueuedProcess(process_id=process_id, status="running")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_poller(api, clock, concurrency=6, fast_follow_wait_time=200.0):
    executor = BackoffExecutor(
        RetryParams(max_retries=0, initial_sleep_time=1), sleep=clock.sleep
    )
    return ProcessPoller(
        api.get_process,
        executor,
        concurrency=concurrency,
        fast_follow_wait_time=fast_follow_wait_time,
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.mark.asyncio
async def test_finished_batch_returns_without_network(clock):
    api = FakeProcessApi(clock, {})
    poller = make_poller(api, clock)
    processes = [
        QueuedProcess(process_id="a", status="finished"),
        QueuedProcess(process_id="b", status="cancelled"),
        QueuedProcess(process_id="c", status="failed"),
    ]

    result = await poller.poll(processes, 1000, 10_000)

    assert api.calls == []
    assert clock.sleeps == []
    assert [p.process_id for p in result] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_processes_converge_within_budget(clock):
    api = FakeProcessApi(clock, {"a": 0, "b": 2500, "c": 5000})
    poller = make_poller(api, clock, concurrency=2)
    processes = [QueuedProcess(process_id=pid, status="queued") for pid in "abc"]

    result = await poller.poll(processes, 1000, 60_000)

    assert {p.process_id: p.status for p in result} == {
        "a": "finished",
        "b": "finished",
        "c": "finished",
    }
    assert clock.now * 1000 < 60_000
    # waits double: 1s, 2s, 4s
    assert clock.sleeps == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_finished_processes_are_not_refetched(clock):
    api = FakeProcessApi(clock, {"a": 0, "b": 1500})
    poller = make_poller(api, clock)
    processes = [QueuedProcess(process_id=pid, status="queued") for pid in "ab"]

    await poller.poll(processes, 1000, 60_000)

    fetched_ids = [pid for pid, _ in api.calls]
    assert fetched_ids.count("a") == 1
    assert fetched_ids.count("b") == 3


@pytest.mark.asyncio
async def test_stuck_process_returned_with_last_status(clock):
    api = FakeProcessApi(clock, {"stuck": None})
    poller = make_poller(api, clock)

    result = await poller.poll(
        [QueuedProcess(process_id="stuck", status="queued")], 1000, 5000
    )

    assert result[0].status == "running"
    assert clock.now * 1000 <= 5000
    # the last fetch is the unconditional final refresh
    assert api.calls[-1][1] == clock.now
    assert sum(clock.sleeps) * 1000 <= 5000


@pytest.mark.asyncio
async def test_wait_is_capped_by_remaining_budget(clock):
    api = FakeProcessApi(clock, {"stuck": None})
    poller = make_poller(api, clock)

    await poller.poll([QueuedProcess(process_id="stuck", status="queued")], 3000, 5000)

    assert clock.sleeps == [3.0, 2.0]


@pytest.mark.asyncio
async def test_zero_budget_still_refreshes_once(clock):
    api = FakeProcessApi(clock, {"a": 0})
    poller = make_poller(api, clock)

    result = await poller.poll([QueuedProcess(process_id="a", status="queued")], 1000, 0)

    assert len(api.calls) == 1
    assert result[0].status == "finished"


@pytest.mark.asyncio
async def test_missing_status_triggers_fast_follow_wait(clock):
    api = FakeProcessApi(clock, {"a": 0})
    poller = make_poller(api, clock, fast_follow_wait_time=200)

    result = await poller.poll([QueuedProcess(process_id="a")], 1000, 10_000)

    assert clock.sleeps[0] == pytest.approx(0.2)
    assert api.calls[0][1] == pytest.approx(0.2)
    assert result[0].status == "finished"


@pytest.mark.asyncio
async def test_fast_follow_wait_can_be_disabled(clock):
    api = FakeProcessApi(clock, {"a": 0})
    poller = make_poller(api, clock, fast_follow_wait_time=0)

    await poller.poll([QueuedProcess(process_id="a")], 1000, 10_000)

    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_unknown_status_keeps_polling(clock):
    api = FakeProcessApi(clock, {"a": 1000})
    poller = make_poller(api, clock)

    result = await poller.poll(
        [QueuedProcess(process_id="a", status="some_new_status")], 1000, 10_000
    )

    assert len(api.calls) == 2
    assert result[0].status == "finished"


@pytest.mark.asyncio
async def test_fetch_failure_is_retried_next_round(clock):
    api = FakeProcessApi(clock, {"a": 0, "b": 0})
    api.failures["b"] = 1
    poller = make_poller(api, clock)
    processes = [QueuedProcess(process_id=pid, status="queued") for pid in "ab"]

    result = await poller.poll(processes, 1000, 10_000)

    assert {p.process_id: p.status for p in result} == {"a": "finished", "b": "finished"}
    assert [pid for pid, _ in api.calls].count("b") == 2


@pytest.mark.asyncio
async def test_failed_status_is_terminal(clock):
    api = FakeProcessApi(clock, {"a": 0}, final_status="failed")
    poller = make_poller(api, clock)

    result = await poller.poll([QueuedProcess(process_id="a", status="queued")], 1000, 10_000)

    assert result[0].status == "failed"
    assert len(api.calls) == 1
