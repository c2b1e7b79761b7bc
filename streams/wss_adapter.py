import asyncio
import json
import logging
from collections import Counter
from collections.abc import Mapping
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Callable

import aiohttp
from pydantic import BaseModel

from core.exceptions import RPCException
from streams.entities import ChainEvent, FilterResult, Rejection, Source, TokenBalanceEntry
from streams.retry import ReconnectPolicy
from streams.rpc import SolanaRpcClient
from streams.services import MintIngestionService


def build_logs_subscribe_request(program_id: str) -> dict[str, Any]:
    """
    Build the ``logsSubscribe`` request for a program.

    Parameters
    ----------
    program_id : str
        Program whose logs are streamed

    Returns
    -------
    dict[str, Any]
        JSON-RPC request
    """
    return {
        "jsonrpc": "2.0",
        "id": program_id,
        "method": "logsSubscribe",
        "params": [
            {"mentions": [program_id]},
            {"commitment": "processed"},
        ],
    }


def is_logs_notification(data: Any) -> bool:
    return (
        isinstance(data, Mapping)
        and "jsonrpc" in data
        and data.get("method") == "logsNotification"
        and isinstance(data.get("params"), Mapping)
    )


class PushSocketAdapter:
    """
    Handles ``logsSubscribe`` notifications.

    A notification only carries the signature and log lines, so the
    full transaction is fetched over JSON-RPC before extraction.

    Parameters
    ----------
    rpc_client : SolanaRpcClient
        Client used to fetch transactions
    ingestion : MintIngestionService
        Shared handling path
    logger : logging.Logger
        Logger instance
    program_id : str
        Monitored program
    meta_logs : list[str]
        Literal log lines of the mint instruction
    """

    source = Source.WSS

    def __init__(
        self,
        rpc_client: SolanaRpcClient,
        ingestion: MintIngestionService,
        logger: logging.Logger,
        program_id: str,
        meta_logs: list[str]
    ):
        self.rpc_client = rpc_client
        self.ingestion = ingestion
        self.logger = logger
        self.program_id = program_id
        self.meta_logs = meta_logs
        self.rejections: Counter[Rejection] = Counter()
        self.events = 0

    def subscribe_request(self) -> dict[str, Any]:
        return build_logs_subscribe_request(self.program_id)

    def parse_message(self, raw: str | bytes) -> FilterResult:
        """
        Validate a socket message and pick out the signature.

        Parameters
        ----------
        raw : str | bytes
            Message text

        Returns
        -------
        FilterResult
            Accepted signature or the rejection reason
        """
        try:
            data = json.loads(raw)
        except ValueError as e:
            return FilterResult.reject(Rejection.MALFORMED_PAYLOAD, str(e))

        if isinstance(data, Mapping) and "result" in data and not data.get("error"):
            return FilterResult.reject(Rejection.SUBSCRIPTION_ACK, str(data["result"]))

        if not is_logs_notification(data):
            return FilterResult.reject(Rejection.MALFORMED_PAYLOAD)

        result = data["params"].get("result")
        value = result.get("value") if isinstance(result, Mapping) else None
        if not isinstance(value, Mapping):
            return FilterResult.reject(Rejection.MISSING_FIELDS, "value")
        logs = value.get("logs")
        signature = value.get("signature")
        if not isinstance(logs, list) or not signature:
            return FilterResult.reject(Rejection.MISSING_FIELDS, "logs or signature")

        if not any(line in logs for line in self.meta_logs):
            return FilterResult.reject(Rejection.NOT_TARGET_PROGRAM)

        return FilterResult.accept(signature)

    async def materialize(self, signature: str) -> FilterResult:
        """
        Fetch the full transaction behind a notification.

        Parameters
        ----------
        signature : str
            Transaction signature

        Returns
        -------
        FilterResult
            Accepted ``ChainEvent`` or ``missing_metadata``
        """
        try:
            tx = await self.rpc_client.get_parsed_transaction(signature, commitment="confirmed")
        except RPCException as e:
            self.logger.warning(f"[wss] Could not fetch transaction {signature}: {e.message}")
            return FilterResult.reject(Rejection.MISSING_METADATA, e.message)

        meta = tx.get("meta") if isinstance(tx, Mapping) else None
        if not isinstance(meta, Mapping):
            return FilterResult.reject(Rejection.MISSING_METADATA)

        try:
            event = ChainEvent(
                source=self.source,
                signature=signature,
                slot=tx.get("slot"),
                log_messages=meta.get("logMessages") or [],
                pre_token_balances=[
                    TokenBalanceEntry.model_validate(entry)
                    for entry in meta.get("preTokenBalances") or []
                ],
                post_token_balances=[
                    TokenBalanceEntry.model_validate(entry)
                    for entry in meta.get("postTokenBalances") or []
                ]
            )
        except ValueError as e:
            return FilterResult.reject(Rejection.MALFORMED_PAYLOAD, str(e))
        return FilterResult.accept(event)

    def record_rejection(self, result: FilterResult) -> FilterResult:
        self.rejections[result.reason] += 1
        if result.reason == Rejection.SUBSCRIPTION_ACK:
            self.logger.info("Websocket subscription request sent successfully.")
        else:
            self.logger.debug(f"[wss] Dropped message: {result.reason.value}")
        return result

    async def process_signature(self, signature: str) -> FilterResult:
        materialized = await self.materialize(signature)
        if not materialized.accepted:
            return self.record_rejection(materialized)
        self.events += 1
        return await self.ingestion.handle(materialized.value)

    async def handle_message(self, raw: str | bytes) -> FilterResult:
        """
        Run one socket message through the whole handling path.

        Parameters
        ----------
        raw : str | bytes
            Message text

        Returns
        -------
        FilterResult
            Outcome of the first stage that rejected it, or the recorded observation
        """
        parsed = self.parse_message(raw)
        if not parsed.accepted:
            return self.record_rejection(parsed)
        return await self.process_signature(parsed.value)


@asynccontextmanager
async def aiohttp_connect(url: str) -> AsyncIterator[aiohttp.ClientWebSocketResponse]:
    async with aiohttp.ClientSession() as session:
        async with session.ws_connect(url, heartbeat=30) as ws:
            yield ws


class SessionStatus(BaseModel):
    connected: bool
    running: bool
    reconnects: int
    events: int
    rejections: dict[str, int]


class PushSocketSession:
    """
    Owns the push socket connection and its reconnect loop.

    Notifications are parsed in arrival order; each accepted one is
    materialised in its own task so slow RPC fetches do not hold up the
    socket. The stop event is checked before every reconnect. The reconnect
    attempt count is reset only by a connection that delivered a message.

    Parameters
    ----------
    adapter : PushSocketAdapter
        Message handler
    wss_url : str | None
        Websocket endpoint
    logger : logging.Logger
        Logger instance
    reconnect_policy : ReconnectPolicy
        Delay schedule between reconnects
    connect : Callable[[str], AsyncContextManager]
        Opens a websocket, ``aiohttp`` by default
    """

    def __init__(
        self,
        adapter: PushSocketAdapter,
        wss_url: str | None,
        logger: logging.Logger,
        reconnect_policy: ReconnectPolicy | None = None,
        connect: Callable[[str], AsyncContextManager] = aiohttp_connect
    ):
        self.adapter = adapter
        self.wss_url = wss_url
        self.logger = logger
        self.reconnect_policy = reconnect_policy or ReconnectPolicy.fixed(5.0)
        self._connect = connect
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()
        self._connected = False
        self.reconnects = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self) -> SessionStatus:
        """
        Report the connection state.

        Returns
        -------
        SessionStatus
            Current status
        """
        return SessionStatus(
            connected=self._connected and self.running,
            running=self.running,
            reconnects=self.reconnects,
            events=self.adapter.events,
            rejections={
                reason.value: count
                for reason, count in self.adapter.rejections.items()
            }
        )

    async def start(self) -> dict[str, Any]:
        """
        Start the connection loop in the background.

        Returns
        -------
        dict[str, Any]
            ``success`` flag and message
        """
        if not self.wss_url:
            self.logger.error("Could not start Websocket stream. Missing endpoint.")
            return {"success": False, "message": "Could not start Websocket stream. Missing endpoint."}
        if not self.adapter.rpc_client.rpc_url:
            self.logger.error("Error initializing RPC connection: Missing RPC url.")
            return {"success": False, "message": "RPC connection could not be created"}
        if self.running:
            return {"success": True, "message": "WebSocket already connected"}

        self._stop.clear()
        self._task = asyncio.create_task(self._run())
        return {"success": True, "message": "WebSocket connection initiated"}

    async def stop(self) -> dict[str, Any]:
        """
        Stop the connection loop and wait for in-flight events.

        Returns
        -------
        dict[str, Any]
            ``success`` flag and message
        """
        if not self.running:
            return {"success": False, "message": "No active WebSocket connection to stop"}

        self._stop.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        for task in list(self._pending):
            task.cancel()
        await asyncio.gather(*self._pending, return_exceptions=True)
        self._task = None
        self._connected = False
        return {"success": True, "message": "WebSocket connection stopped"}

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    def _dispatch(self, raw: str | bytes) -> None:
        parsed = self.adapter.parse_message(raw)
        if not parsed.accepted:
            self.adapter.record_rejection(parsed)
            return
        task = asyncio.create_task(self.adapter.process_signature(parsed.value))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _listen(self) -> bool:
        received = False
        async with self._connect(self.wss_url) as ws:
            self._connected = True
            self.logger.info("WebSocket connection established")
            await ws.send_str(json.dumps(self.adapter.subscribe_request()))
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    received = True
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self.logger.error(
                        f"An error occurred during Websocket data streaming: {ws.exception()}"
                    )
        return received

    async def _run(self) -> None:
        attempt = 0
        while not self._stop.is_set():
            try:
                # a connection that never delivered a message counts as a failed attempt
                if await self._listen():
                    attempt = 0
            except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
                self.logger.error(f"An error occurred during Websocket data streaming: {e}")
            finally:
                self._connected = False

            if self._stop.is_set():
                break
            attempt += 1
            if self.reconnect_policy.exhausted(attempt):
                self.logger.error(f"Websocket closed. Giving up after {attempt - 1} reconnect attempts.")
                break
            delay = self.reconnect_policy.delay(attempt)
            self.logger.info(f"Websocket closed. Trying to open connection again in {delay:.1f} seconds.")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                self.reconnects += 1
