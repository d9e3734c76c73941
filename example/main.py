import asyncio
import tempfile
from pathlib import Path

from lokalise_server import LokaliseServer
from lokalise_file_exchange.download import LokaliseDownload
from lokalise_file_exchange.errors import LokaliseError
from lokalise_file_exchange.upload import LokaliseUpload

PROJECT_ID = "803826145ba90b42d5d860.46800099"


async def main():
    PORT = 8000
    server = LokaliseServer(completion_time=3.0)
    await server.start(port=PORT)
    print(f"Server started on {server.base_url}")

    client_params = {"api_key": "demo-token", "host": server.api_host}
    exchange_config = {
        "project_id": PROJECT_ID,
        "retry_params": {"max_retries": 3, "initial_sleep_time": 500},
    }

    with tempfile.TemporaryDirectory() as workdir:
        locales = Path(workdir) / "locales"
        locales.mkdir()
        (locales / "en.json").write_text('{"welcome":"Welcome!"}')
        (locales / "fr.json").write_text('{"welcome":"Bienvenue!"}')

        try:
            async with LokaliseUpload(client_params, exchange_config) as uploader:
                result = await uploader.upload_translations(
                    {
                        "collect_file_params": {"input_dirs": [str(locales)]},
                        "process_upload_file_params": {
                            "project_root": workdir,
                            "poll_statuses": True,
                            "poll_initial_wait_time": 500,
                            "poll_maximum_wait_time": 10_000,
                        },
                    }
                )
            for process in result.processes:
                print(f"Process {process.process_id}: {process.status}")
            for failure in result.errors:
                print(f"Failed to upload {failure.file}: {failure.error}")

            async with LokaliseDownload(client_params, exchange_config) as downloader:
                await downloader.download_translations(
                    {
                        "download_file_params": {"format": "json"},
                        "extract_params": {"output_dir": str(Path(workdir) / "out")},
                        "process_download_file_params": {
                            "async_download": True,
                            "poll_initial_wait_time": 500,
                            "poll_maximum_wait_time": 10_000,
                            "bundle_download_timeout": 5000,
                        },
                    }
                )
            for path in sorted((Path(workdir) / "out").rglob("*.json")):
                print(f"Extracted {path.relative_to(workdir)}: {path.read_text()}")
        except LokaliseError as e:
            print(f"Error occurred: {e}")

    await asyncio.sleep(1)


if __name__ == "__main__":
    asyncio.run(main())
