import base64
import logging

import base58
import grpc
import pytest

from conftest import BONK, DISCRIMINATOR, MINT_LOG, PROGRAM_ID, WSOL
from core.exceptions import ConfigurationException, StreamTransportException
from streams.entities import Rejection, Source
from streams.grpc_adapter import BinaryStreamAdapter, GeyserStreamFactory, build_subscribe_request
from streams.services import MintIngestionService


SIGNATURE = bytes(range(64))
LABEL = "svsgrpc"


def b64(value: bytes) -> str:
    return base64.b64encode(value).decode()


def make_update(
    data: bytes = DISCRIMINATOR + b"\x00" * 8,
    logs: list[str] | None = None,
    pre: list[str] = (WSOL, BONK),
    filters: list[str] = (LABEL,)
) -> dict:
    """Subscription update in protobuf JSON form."""
    meta = {
        "preTokenBalances": [
            {"accountIndex": index, "mint": mint, "uiTokenAmount": {"amount": "0", "decimals": 6}}
            for index, mint in enumerate(pre)
        ],
    }
    if logs is not None:
        meta["logMessages"] = logs
    return {
        "filters": list(filters),
        "transaction": {
            "slot": "250000000",
            "transaction": {
                "signature": b64(SIGNATURE),
                "transaction": {
                    "message": {
                        "accountKeys": [b64(bytes(base58.b58decode(WSOL)))],
                        "instructions": [{"programIdIndex": 3, "accounts": b64(b"\x00\x01"), "data": b64(data)}],
                    },
                },
                "meta": meta,
            },
        },
    }


class FakeStream:
    def __init__(self, updates, error: Exception | None = None):
        self.updates = updates
        self.error = error
        self.written = []
        self.closed = False

    async def write(self, request):
        self.written.append(request)

    async def __aiter__(self):
        for update in self.updates:
            yield update
        if self.error is not None:
            raise self.error

    async def close(self):
        self.closed = True


class FakeFactory:
    def __init__(self, stream: FakeStream):
        self.stream = stream

    async def open(self):
        return self.stream


@pytest.fixture
def adapter_factory(memory_log, logger):
    def build(stream_factory=None) -> BinaryStreamAdapter:
        ingestion = MintIngestionService(
            recorder=memory_log, logger=logger, native_mint=WSOL, clock=lambda: 1000
        )
        return BinaryStreamAdapter(
            stream_factory=stream_factory,
            ingestion=ingestion,
            logger=logger,
            program_id=PROGRAM_ID,
            discriminators=[DISCRIMINATOR],
            meta_logs=[MINT_LOG],
            label=LABEL
        )
    return build


class TestSubscribeRequest:

    def test_filter_shape(self):
        """
        Test the subscription filter for the monitored program.
        """
        request = build_subscribe_request(PROGRAM_ID, LABEL)
        assert request["commitment"] == "CONFIRMED"
        assert request["transactions"][LABEL]["accountInclude"] == [PROGRAM_ID]
        assert request["transactions"][LABEL]["accountExclude"] == []
        assert request["accounts"] == {}


class TestParseUpdate:
    """
    Tests for normalising subscription updates into program events.
    """

    def test_discriminator_match(self, adapter_factory):
        """
        Test normalising a mint transaction matched by discriminator.

        Parameters
        ----------
        adapter_factory : Callable
            Builds an adapter around a fake stream factory
        """
        result = adapter_factory().parse_update(make_update())

        assert result.accepted
        event = result.value
        assert event.source == Source.GRPC
        assert event.signature == base58.b58encode(SIGNATURE).decode()
        assert event.slot == 250000000
        assert event.account_keys == [WSOL]
        assert [entry.mint for entry in event.pre_token_balances] == [WSOL, BONK]
        assert event.instructions[0].data.startswith(DISCRIMINATOR)

    def test_log_line_match(self, adapter_factory):
        """
        Test normalising a mint transaction matched by log line.

        Parameters
        ----------
        adapter_factory : Callable
            Builds an adapter around a fake stream factory
        """
        result = adapter_factory().parse_update(make_update(data=b"\x01" * 16, logs=[MINT_LOG]))
        assert result.accepted

    def test_other_program_instruction(self, adapter_factory):
        """
        Test that other program instructions are rejected.

        Parameters
        ----------
        adapter_factory : Callable
            Builds an adapter around a fake stream factory
        """
        result = adapter_factory().parse_update(
            make_update(data=b"\x01" * 16, logs=["Program log: Instruction: Buy"])
        )
        assert result.reason == Rejection.NOT_TARGET_PROGRAM

    def test_ping_update(self, adapter_factory):
        """
        Test that ping updates do not match the filter.

        Parameters
        ----------
        adapter_factory : Callable
            Builds an adapter around a fake stream factory
        """
        result = adapter_factory().parse_update({"filters": [], "ping": {}})
        assert result.reason == Rejection.FILTER_MISMATCH

    def test_other_filter_label(self, adapter_factory):
        """
        Test that updates for another filter label are rejected.

        Parameters
        ----------
        adapter_factory : Callable
            Builds an adapter around a fake stream factory
        """
        result = adapter_factory().parse_update(make_update(filters=["other"]))
        assert result.reason == Rejection.FILTER_MISMATCH

    def test_missing_meta(self, adapter_factory):
        """
        Test that an update without metadata is missing fields.

        Parameters
        ----------
        adapter_factory : Callable
            Builds an adapter around a fake stream factory
        """
        update = make_update()
        del update["transaction"]["transaction"]["meta"]
        result = adapter_factory().parse_update(update)
        assert result.reason == Rejection.MISSING_FIELDS

    def test_missing_instructions_and_logs(self, adapter_factory):
        """
        Test that an update without instructions and logs is missing fields.

        Parameters
        ----------
        adapter_factory : Callable
            Builds an adapter around a fake stream factory
        """
        update = make_update()
        del update["transaction"]["transaction"]["transaction"]["message"]["instructions"]
        result = adapter_factory().parse_update(update)
        assert result.reason == Rejection.MISSING_FIELDS


class TestBinaryStreamAdapter:
    """
    Tests for the gRPC listener loop.
    """

    @pytest.mark.asyncio
    async def test_run_records_mints(self, adapter_factory, memory_log):
        """
        Test that the listener subscribes, filters and records mints.

        Parameters
        ----------
        adapter_factory : Callable
            Builds an adapter around a fake stream factory
        memory_log : MemoryObservationLog
            In-memory log fixture
        """
        stream = FakeStream([
            {"filters": [], "ping": {}},
            make_update(),
            make_update(data=b"\x01" * 16, logs=["Program log: Instruction: Sell"]),
        ])
        adapter = adapter_factory(FakeFactory(stream))

        await adapter.run()

        assert stream.written == [build_subscribe_request(PROGRAM_ID, LABEL)]
        assert stream.closed
        assert adapter.events == 1
        assert adapter.rejections[Rejection.FILTER_MISMATCH] == 1
        assert adapter.rejections[Rejection.NOT_TARGET_PROGRAM] == 1
        assert memory_log.records == [{"token": BONK, "timestamp": 1000, "source": "grpc"}]

    @pytest.mark.asyncio
    async def test_stream_error_is_raised(self, adapter_factory):
        """
        Test that a transport error is raised and the stream closed.

        Parameters
        ----------
        adapter_factory : Callable
            Builds an adapter around a fake stream factory
        """
        stream = FakeStream([make_update()], error=grpc.RpcError("unavailable"))
        adapter = adapter_factory(FakeFactory(stream))

        with pytest.raises(StreamTransportException):
            await adapter.run()
        assert stream.closed

    @pytest.mark.asyncio
    async def test_missing_configuration(self, adapter_factory, caplog):
        """
        Test that the listener does not start without endpoint and token.

        Parameters
        ----------
        adapter_factory : Callable
            Builds an adapter around a fake stream factory
        caplog : pytest.LogCaptureFixture
            Log capture fixture
        """
        adapter = adapter_factory(None)

        with caplog.at_level(logging.ERROR):
            await adapter.run()

        assert "Missing endpoint or x-token" in caplog.text


class TestGeyserStreamFactory:

    @pytest.mark.asyncio
    async def test_missing_generated_stubs(self):
        """
        Test that missing generated protobuf modules are a configuration error.
        """
        factory = GeyserStreamFactory("grpc.example.com:443", "token", proto_package="no_such_geyser_package")
        with pytest.raises(ConfigurationException):
            await factory.open()
