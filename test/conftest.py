import asyncio
import io
import zipfile
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from lokalise_server import LokaliseServer

API_KEY = "fake-api-key"
PROJECT_ID = "803826145ba90b42d5d860.46800099"


@pytest_asyncio.fixture
async def server(unused_tcp_port_factory) -> AsyncGenerator[LokaliseServer, None]:
    """Start and yield a fake Lokalise server on a random port."""
    port = unused_tcp_port_factory()
    server_instance = LokaliseServer(completion_time=0.3)
    await server_instance.start(port=port)
    try:
        yield server_instance
    finally:
        await _cleanup_server(server_instance)


async def _cleanup_server(server_instance: LokaliseServer):
    """Clean up tasks and stop the server."""
    try:
        tasks = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    except Exception as e:
        print(f"Error during cleanup: {e}")
    finally:
        await server_instance.app.shutdown()
        await server_instance.app.cleanup()


@pytest.fixture
def client_params(server) -> dict:
    return {"api_key": API_KEY, "host": server.api_host}


@pytest.fixture
def exchange_config() -> dict:
    return {
        "project_id": PROJECT_ID,
        "retry_params": {"max_retries": 2, "initial_sleep_time": 10},
        "fast_follow_wait_time": 10,
    }


def make_zip(path, files: dict) -> None:
    """Write a ZIP archive whose entries map names to bytes (None marks a directory)."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in files.items():
            if content is None:
                archive.writestr(zipfile.ZipInfo(name), b"")
            else:
                archive.writestr(name, content)
    path.write_bytes(buffer.getvalue())
