import asyncio
import itertools
import logging
import aiohttp

from core.exceptions import RPCException
from streams.retry import RetryPolicy


class SolanaRpcClient:
    """
    Minimal JSON-RPC client for fetching parsed transactions.

    Parameters
    ----------
    rpc_url : str
        JSON-RPC endpoint
    logger : logging.Logger
        Logger instance
    retry_policy : RetryPolicy | None
        Policy applied to ``get_parsed_transaction`` (single attempt by default)
    timeout : float
        Request timeout in seconds
    """

    def __init__(
        self,
        rpc_url: str,
        logger: logging.Logger,
        retry_policy: RetryPolicy | None = None,
        timeout: float = 10.0
    ):
        self.rpc_url = rpc_url
        self.logger = logger
        self.retry_policy = retry_policy or RetryPolicy.single()
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None
        self._ids = itertools.count(1)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def call(self, method: str, params: list) -> dict | list | None:
        """
        Perform a JSON-RPC call.

        Parameters
        ----------
        method : str
            RPC method name
        params : list
            Positional parameters

        Returns
        -------
        dict | list | None
            The ``result`` member of the response

        Raises
        ------
        RPCException
            On transport failure or an RPC error response
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params
        }
        try:
            async with self._get_session().post(self.rpc_url, json=payload) as response:
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise RPCException(f"{method} failed: {e}") from e

        if not isinstance(data, dict):
            raise RPCException(f"{method} returned unexpected payload")
        if data.get("error"):
            raise RPCException(f"{method} error: {data['error']}")
        return data.get("result")

    async def get_parsed_transaction(self, signature: str, commitment: str = "confirmed") -> dict | None:
        """
        Fetch a parsed transaction by signature.

        Parameters
        ----------
        signature : str
            Base58 transaction signature
        commitment : str
            Commitment level

        Returns
        -------
        dict | None
            Transaction with metadata, None when the node does not have it
        """
        params = [
            signature,
            {
                "encoding": "jsonParsed",
                "commitment": commitment,
                "maxSupportedTransactionVersion": 0
            }
        ]

        async def fetch() -> dict | None:
            return await self.call("getTransaction", params)

        return await self.retry_policy.run(
            fetch,
            accept=lambda tx: bool(tx and tx.get("meta"))
        )

    async def aclose(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
