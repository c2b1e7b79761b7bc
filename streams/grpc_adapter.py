import asyncio
import base64
import importlib
import logging
from collections import Counter
from collections.abc import Mapping
from typing import Any, AsyncIterator, Protocol

import base58
import grpc
from google.protobuf import json_format

from core.exceptions import ConfigurationException, StreamTransportException
from streams.entities import (
    ChainEvent,
    CompiledInstruction,
    FilterResult,
    Rejection,
    Source,
    TokenBalanceEntry,
)
from streams.extractor import matches_program
from streams.services import MintIngestionService


def build_subscribe_request(program_id: str, label: str) -> dict[str, Any]:
    """
    Build the transaction subscription filter.

    Parameters
    ----------
    program_id : str
        Program that transactions must mention
    label : str
        Filter name echoed back in every matching update

    Returns
    -------
    dict[str, Any]
        Subscribe request in protobuf JSON form
    """
    return {
        "accounts": {},
        "slots": {},
        "transactions": {
            label: {
                "accountInclude": [program_id],
                "accountExclude": [],
                "accountRequired": [],
            }
        },
        "transactionsStatus": {},
        "entry": {},
        "blocks": {},
        "blocksMeta": {},
        "commitment": "CONFIRMED",
        "accountsDataSlice": [],
    }


def _as_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return base64.b64decode(value)
    return bytes(value)


class GeyserStream:
    """
    Duplex subscription stream over a gRPC channel.

    Requests are queued and fed to the call as a request iterator;
    updates are converted to dicts keyed by protobuf JSON names.
    """

    def __init__(self, channel: grpc.aio.Channel, stub: Any, pb2: Any):
        self._channel = channel
        self._pb2 = pb2
        self._requests: asyncio.Queue = asyncio.Queue()
        self._call = stub.Subscribe(self._request_iterator())

    async def _request_iterator(self):
        while True:
            request = await self._requests.get()
            if request is None:
                return
            yield request

    async def write(self, request: dict[str, Any]) -> None:
        message = json_format.ParseDict(request, self._pb2.SubscribeRequest())
        await self._requests.put(message)

    async def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        async for update in self._call:
            yield json_format.MessageToDict(update)

    async def close(self) -> None:
        await self._requests.put(None)
        self._call.cancel()
        await self._channel.close()


class StreamFactory(Protocol):
    async def open(self) -> GeyserStream: ...


class GeyserStreamFactory:
    """
    Opens authenticated Yellowstone gRPC subscription streams.

    Generated ``geyser_pb2`` / ``geyser_pb2_grpc`` modules are imported
    from ``proto_package``.

    Parameters
    ----------
    target : str
        Channel target (host:port)
    x_token : str
        Access token sent as ``x-token`` metadata
    proto_package : str
        Package holding the generated protobuf modules
    """

    def __init__(self, target: str, x_token: str, proto_package: str = "generated"):
        self.target = target
        self.x_token = x_token
        self.proto_package = proto_package

    def _load_stubs(self) -> tuple[Any, Any]:
        try:
            pb2 = importlib.import_module(f"{self.proto_package}.geyser_pb2")
            pb2_grpc = importlib.import_module(f"{self.proto_package}.geyser_pb2_grpc")
        except ImportError as e:
            raise ConfigurationException(
                f"Could not import geyser_pb2 or geyser_pb2_grpc from '{self.proto_package}'. "
                f"Generate them from the Yellowstone .proto files: {e}"
            ) from e
        return pb2, pb2_grpc

    async def open(self) -> GeyserStream:
        pb2, pb2_grpc = self._load_stubs()
        auth = grpc.metadata_call_credentials(
            lambda _context, callback: callback((("x-token", self.x_token),), None)
        )
        credentials = grpc.composite_channel_credentials(grpc.ssl_channel_credentials(), auth)
        channel = grpc.aio.secure_channel(self.target, credentials)
        return GeyserStream(channel, pb2_grpc.GeyserStub(channel), pb2)


class BinaryStreamAdapter:
    """
    Listener over the Yellowstone gRPC transaction stream.

    There is no reconnect: a transport failure ends the run and is
    raised to the caller.

    Parameters
    ----------
    stream_factory : StreamFactory | None
        Opens the duplex stream, None when endpoint or token are missing
    ingestion : MintIngestionService
        Shared handling path
    logger : logging.Logger
        Logger instance
    program_id : str
        Monitored program
    discriminators : list[bytes]
        Instruction discriminators of the mint instruction
    meta_logs : list[str]
        Literal log lines of the mint instruction
    label : str
        Subscription filter name
    """

    source = Source.GRPC

    def __init__(
        self,
        stream_factory: StreamFactory | None,
        ingestion: MintIngestionService,
        logger: logging.Logger,
        program_id: str,
        discriminators: list[bytes],
        meta_logs: list[str],
        label: str = "svsgrpc"
    ):
        self.stream_factory = stream_factory
        self.ingestion = ingestion
        self.logger = logger
        self.program_id = program_id
        self.discriminators = discriminators
        self.meta_logs = meta_logs
        self.label = label
        self.rejections: Counter[Rejection] = Counter()
        self.events = 0

    def parse_update(self, update: Mapping[str, Any]) -> FilterResult:
        """
        Turn a subscription update into a program event.

        Parameters
        ----------
        update : Mapping[str, Any]
            Update in protobuf JSON form

        Returns
        -------
        FilterResult
            Accepted ``ChainEvent`` or the rejection reason
        """
        tx_update = update.get("transaction")
        if (
            not isinstance(tx_update, Mapping)
            or "slot" not in tx_update
            or "transaction" not in tx_update
            or self.label not in (update.get("filters") or [])
        ):
            return FilterResult.reject(Rejection.FILTER_MISMATCH)

        tx = tx_update.get("transaction")
        if not isinstance(tx, Mapping):
            return FilterResult.reject(Rejection.MISSING_FIELDS, "transaction")
        message = (tx.get("transaction") or {}).get("message")
        meta = tx.get("meta")
        if not isinstance(message, Mapping) or not isinstance(meta, Mapping):
            return FilterResult.reject(Rejection.MISSING_FIELDS, "message or meta")

        # empty repeated fields are omitted from the JSON form
        raw_instructions = message.get("instructions")
        log_messages = meta.get("logMessages")
        if raw_instructions is None and log_messages is None:
            return FilterResult.reject(Rejection.MISSING_FIELDS, "instructions and logs")

        try:
            instructions = [
                CompiledInstruction(
                    program_id_index=int(ix.get("programIdIndex", 0)),
                    accounts=_as_bytes(ix.get("accounts")),
                    data=_as_bytes(ix.get("data"))
                )
                for ix in raw_instructions or []
            ]
            log_messages = list(log_messages or [])
        except (TypeError, ValueError) as e:
            return FilterResult.reject(Rejection.MALFORMED_PAYLOAD, str(e))

        if not matches_program(instructions, log_messages, self.discriminators, self.meta_logs):
            return FilterResult.reject(Rejection.NOT_TARGET_PROGRAM)

        try:
            event = ChainEvent(
                source=self.source,
                signature=base58.b58encode(_as_bytes(tx.get("signature"))).decode(),
                slot=int(tx_update["slot"]),
                log_messages=log_messages,
                instructions=instructions,
                account_keys=[
                    base58.b58encode(_as_bytes(key)).decode()
                    for key in message.get("accountKeys") or []
                ],
                pre_token_balances=[
                    TokenBalanceEntry.model_validate(entry)
                    for entry in meta.get("preTokenBalances") or []
                ],
                post_token_balances=[
                    TokenBalanceEntry.model_validate(entry)
                    for entry in meta.get("postTokenBalances") or []
                ]
            )
        except (TypeError, ValueError) as e:
            return FilterResult.reject(Rejection.MALFORMED_PAYLOAD, str(e))

        return FilterResult.accept(event)

    async def handle_update(self, update: Mapping[str, Any]) -> FilterResult:
        result = self.parse_update(update)
        if not result.accepted:
            self.rejections[result.reason] += 1
            self.logger.debug(f"[grpc] Dropped update: {result.reason.value}")
            return result
        self.events += 1
        return await self.ingestion.handle(result.value)

    async def run(self) -> None:
        """
        Subscribe and consume updates until the stream ends.

        Raises
        ------
        StreamTransportException
            If the stream fails
        """
        if self.stream_factory is None:
            self.logger.error("Could not start gRPC stream. Missing endpoint or x-token.")
            return

        stream = await self.stream_factory.open()
        try:
            await stream.write(build_subscribe_request(self.program_id, self.label))
            self.logger.info("gRPC subscription request sent successfully.")
            async for update in stream:
                await self.handle_update(update)
        except (grpc.RpcError, OSError) as e:
            self.logger.error(f"An error occurred during gRPC data streaming: {e}")
            raise StreamTransportException(f"gRPC stream failed: {e}") from e
        finally:
            await stream.close()
        self.logger.info("gRPC stream ended.")
