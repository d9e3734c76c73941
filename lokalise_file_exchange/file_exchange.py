from typing import Optional, Union

from loguru import logger

from lokalise_file_exchange.api_client import LokaliseApiClient
from lokalise_file_exchange.backoff import BackoffExecutor
from lokalise_file_exchange.errors import LokaliseError
from lokalise_file_exchange.models import ClientParams, ExchangeConfig, QueuedProcess
from lokalise_file_exchange.poller import ProcessPoller


class LokaliseFileExchange:
    """Shared wiring for the upload and download services.

    Builds the API client and the retry and polling collaborators once per
    instance. Any of them can be passed in explicitly instead.
    """

    def __init__(
        self,
        client_params: Union[ClientParams, dict],
        exchange_config: Union[ExchangeConfig, dict],
        api_client: Optional[LokaliseApiClient] = None,
        executor: Optional[BackoffExecutor] = None,
        poller: Optional[ProcessPoller] = None,
    ):
        if isinstance(client_params, dict):
            api_key = client_params.get("api_key")
            if not api_key or not isinstance(api_key, str):
                raise LokaliseError("Invalid or missing API token.", 401)
            client_params = ClientParams(**client_params)
        elif not client_params.api_key:
            raise LokaliseError("Invalid or missing API token.", 401)

        if isinstance(exchange_config, dict):
            project_id = exchange_config.get("project_id")
            if not project_id or not isinstance(project_id, str):
                raise LokaliseError("Invalid or missing Project ID.", 400)
            exchange_config = ExchangeConfig(**exchange_config)
        elif not exchange_config.project_id:
            raise LokaliseError("Invalid or missing Project ID.", 400)

        self.config = exchange_config
        self.project_id = exchange_config.project_id
        self.retry_params = exchange_config.retry_params
        self.logger = logger.bind(project_id=self.project_id)

        self.api_client = api_client or LokaliseApiClient(client_params)
        self.executor = executor or BackoffExecutor(self.retry_params)
        self.poller = poller or ProcessPoller(
            self.get_updated_process,
            self.executor,
            concurrency=exchange_config.concurrency,
            fast_follow_wait_time=exchange_config.fast_follow_wait_time,
        )

    async def get_updated_process(self, process_id: str) -> QueuedProcess:
        return await self.api_client.get_process(self.project_id, process_id)

    async def close(self) -> None:
        await self.api_client.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
