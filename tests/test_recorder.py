import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import MemoryObservationLog
from core.environment.config import Settings
from core.exceptions import RecorderWriteException
from core.redis.client import connect_redis
from streams.entities import Observation, Source
from streams.recorder import (
    JsonArrayObservationLog,
    JsonLinesObservationLog,
    RedisObservationLog,
    SerializedObservationRecorder,
    parse_observations,
)


def observe(token: str, timestamp: int, source: Source = Source.GRPC) -> Observation:
    return Observation(token=token, timestamp=timestamp, source=source)


class TestJsonArrayObservationLog:
    """
    Tests for the JSON array file log.
    """

    @pytest.mark.asyncio
    async def test_append_creates_pretty_printed_file(self, tmp_path, logger):
        """
        Test that appends produce a 2-space indented JSON array.

        Parameters
        ----------
        tmp_path : Path
            Temporary directory fixture
        logger : logging.Logger
            Logger fixture
        """
        path = tmp_path / "benchmark-data.json"
        log = JsonArrayObservationLog(path, logger)

        await log.append(observe("tokenA", 100))
        await log.append(observe("tokenA", 150, Source.WSS))

        text = path.read_text(encoding="utf-8")
        assert text.startswith("[\n  {")
        assert json.loads(text) == [
            {"token": "tokenA", "timestamp": 100, "source": "grpc"},
            {"token": "tokenA", "timestamp": 150, "source": "wss"},
        ]

    @pytest.mark.asyncio
    async def test_missing_file_reads_empty(self, tmp_path, logger):
        """
        Test that an absent file reads as an empty log.

        Parameters
        ----------
        tmp_path : Path
            Temporary directory fixture
        logger : logging.Logger
            Logger fixture
        """
        log = JsonArrayObservationLog(tmp_path / "absent.json", logger)
        assert await log.read_all() == []

    @pytest.mark.asyncio
    async def test_corrupt_file_is_replaced_on_append(self, tmp_path, logger):
        """
        Test that unparseable content reads as empty and is overwritten.

        Parameters
        ----------
        tmp_path : Path
            Temporary directory fixture
        logger : logging.Logger
            Logger fixture
        """
        path = tmp_path / "benchmark-data.json"
        path.write_text("{not json", encoding="utf-8")
        log = JsonArrayObservationLog(path, logger)

        assert await log.read_all() == []
        await log.append(observe("tokenA", 100))
        assert await log.read_all() == [{"token": "tokenA", "timestamp": 100, "source": "grpc"}]

    @pytest.mark.asyncio
    async def test_unreadable_path_reads_empty(self, tmp_path, logger):
        """
        Test that an OS error other than a missing file is logged, not raised.

        Parameters
        ----------
        tmp_path : Path
            Temporary directory fixture
        logger : logging.Logger
            Logger fixture
        """
        path = tmp_path / "benchmark-data.json"
        log = JsonArrayObservationLog(path, logger)

        with patch.object(type(path), "read_text", side_effect=PermissionError("denied")):
            assert await log.read_all() == []

    @pytest.mark.asyncio
    async def test_unwritable_path_raises(self, tmp_path, logger):
        """
        Test that a failed write raises RecorderWriteException.

        Parameters
        ----------
        tmp_path : Path
            Temporary directory fixture
        logger : logging.Logger
            Logger fixture
        """
        log = JsonArrayObservationLog(tmp_path / "missing-dir" / "data.json", logger)
        with pytest.raises(RecorderWriteException):
            await log.append(observe("tokenA", 100))


class TestJsonLinesObservationLog:
    """
    Tests for the JSON lines file log.
    """

    @pytest.mark.asyncio
    async def test_append_and_read(self, tmp_path, logger):
        """
        Test that each append adds one line read back in order.

        Parameters
        ----------
        tmp_path : Path
            Temporary directory fixture
        logger : logging.Logger
            Logger fixture
        """
        path = tmp_path / "benchmark-data.jsonl"
        log = JsonLinesObservationLog(path, logger)

        await log.append(observe("tokenA", 100))
        await log.append(observe("tokenB", 200, Source.WSS))

        assert len(path.read_text(encoding="utf-8").splitlines()) == 2
        records = await log.read_all()
        assert [record["token"] for record in records] == ["tokenA", "tokenB"]

    @pytest.mark.asyncio
    async def test_missing_file_reads_empty(self, tmp_path, logger):
        log = JsonLinesObservationLog(tmp_path / "absent.jsonl", logger)
        assert await log.read_all() == []

    @pytest.mark.asyncio
    async def test_corrupt_line_is_skipped(self, tmp_path, logger):
        """
        Test that broken and blank lines are skipped.

        Parameters
        ----------
        tmp_path : Path
            Temporary directory fixture
        logger : logging.Logger
            Logger fixture
        """
        path = tmp_path / "benchmark-data.jsonl"
        path.write_text(
            '{"token": "tokenA", "timestamp": 100, "source": "grpc"}\n'
            '{"token": "tok\n'
            '\n'
            '{"token": "tokenB", "timestamp": 200, "source": "wss"}\n',
            encoding="utf-8"
        )
        records = await JsonLinesObservationLog(path, logger).read_all()
        assert [record["token"] for record in records] == ["tokenA", "tokenB"]


class TestRedisObservationLog:
    """
    Tests for the Redis list log with a mocked client.
    """

    @pytest.mark.asyncio
    async def test_append_pushes_json(self, logger):
        """
        Test that an append is one RPUSH of the JSON record.

        Parameters
        ----------
        logger : logging.Logger
            Logger fixture
        """
        redis_client = AsyncMock()
        log = RedisObservationLog(redis_client, "benchmark:observations", logger)

        await log.append(observe("tokenA", 100))

        redis_client.rpush.assert_awaited_once_with(
            "benchmark:observations",
            json.dumps({"token": "tokenA", "timestamp": 100, "source": "grpc"})
        )

    @pytest.mark.asyncio
    async def test_read_all_parses_list(self, logger):
        """
        Test that the whole list is read and corrupt entries are skipped.

        Parameters
        ----------
        logger : logging.Logger
            Logger fixture
        """
        redis_client = AsyncMock()
        redis_client.lrange.return_value = [
            '{"token": "tokenA", "timestamp": 100, "source": "grpc"}',
            'garbage',
        ]
        log = RedisObservationLog(redis_client, "benchmark:observations", logger)

        records = await log.read_all()

        redis_client.lrange.assert_awaited_once_with("benchmark:observations", 0, -1)
        assert records == [{"token": "tokenA", "timestamp": 100, "source": "grpc"}]

    @pytest.mark.asyncio
    async def test_append_failure_raises(self, logger):
        """
        Test that a Redis error surfaces as RecorderWriteException.

        Parameters
        ----------
        logger : logging.Logger
            Logger fixture
        """
        redis_client = AsyncMock()
        redis_client.rpush.side_effect = RedisConnectionError("down")
        log = RedisObservationLog(redis_client, "benchmark:observations", logger)

        with pytest.raises(RecorderWriteException):
            await log.append(observe("tokenA", 100))


class FlakyLog(MemoryObservationLog):
    """Memory log that fails the first append with the given error."""

    def __init__(self, error: Exception):
        super().__init__()
        self.error = error

    async def append(self, observation) -> None:
        if self.error is not None:
            error, self.error = self.error, None
            raise error
        await super().append(observation)


class TestSerializedObservationRecorder:
    """
    Tests for the single-writer recorder.
    """

    @pytest.mark.asyncio
    async def test_concurrent_appends_are_all_kept(self, tmp_path, logger):
        """
        Test that concurrent appends to a JSON array file lose nothing.

        Parameters
        ----------
        tmp_path : Path
            Temporary directory fixture
        logger : logging.Logger
            Logger fixture
        """
        path = tmp_path / "benchmark-data.json"
        recorder = SerializedObservationRecorder(JsonArrayObservationLog(path, logger), logger)

        await asyncio.gather(*(
            recorder.append(observe(f"token{index}", index, Source.GRPC if index % 2 else Source.WSS))
            for index in range(25)
        ))
        records = await recorder.read_all()
        await recorder.aclose()

        assert len(records) == 25
        assert len(json.loads(path.read_text(encoding="utf-8"))) == 25

    @pytest.mark.asyncio
    async def test_write_failure_reaches_caller(self, logger):
        """
        Test that a failed write is raised to the appender and the next one succeeds.

        Parameters
        ----------
        logger : logging.Logger
            Logger fixture
        """
        log = FlakyLog(RecorderWriteException("disk full"))
        recorder = SerializedObservationRecorder(log, logger)

        with pytest.raises(RecorderWriteException):
            await recorder.append(observe("tokenA", 100))
        await recorder.append(observe("tokenB", 200))
        await recorder.aclose()

        assert [record["token"] for record in log.records] == ["tokenB"]

    @pytest.mark.asyncio
    async def test_unexpected_error_keeps_writer_alive(self, logger):
        """
        Test that any log error is reported and the queue keeps draining.

        Parameters
        ----------
        logger : logging.Logger
            Logger fixture
        """
        log = FlakyLog(PermissionError("denied"))
        recorder = SerializedObservationRecorder(log, logger)

        results = await asyncio.gather(
            recorder.append(observe("tokenA", 100)),
            recorder.append(observe("tokenB", 200)),
            return_exceptions=True
        )
        await asyncio.wait_for(recorder.flush(), timeout=1.0)
        await asyncio.wait_for(recorder.aclose(), timeout=1.0)

        assert isinstance(results[0], RecorderWriteException)
        assert "denied" in results[0].message
        assert results[1] is None
        assert [record["token"] for record in log.records] == ["tokenB"]

    @pytest.mark.asyncio
    async def test_close_without_appends(self, memory_log, logger):
        """
        Test that closing an unused recorder does not block.

        Parameters
        ----------
        memory_log : MemoryObservationLog
            In-memory log fixture
        logger : logging.Logger
            Logger fixture
        """
        recorder = SerializedObservationRecorder(memory_log, logger)
        await recorder.aclose()
        assert await recorder.read_all() == []


class TestParseObservations:
    """
    Tests for validating raw log records.
    """

    def test_valid_records(self):
        observations = parse_observations([{"token": "tokenA", "timestamp": 100, "source": "wss"}])
        assert observations == [observe("tokenA", 100, Source.WSS)]

    def test_unknown_source_is_rejected(self):
        """
        Test that a record from an unknown source fails validation.
        """
        with pytest.raises(ValidationError):
            parse_observations([{"token": "tokenA", "timestamp": 100, "source": "ftp"}])


class TestConnectRedis:

    @pytest.mark.asyncio
    async def test_ping_failure_closes_client(self):
        """
        Test that a failed ping closes the client and raises ConnectionError.
        """
        with patch("core.redis.client.Redis") as redis_cls:
            redis_cls.return_value.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
            redis_cls.return_value.aclose = AsyncMock()

            with pytest.raises(ConnectionError):
                await connect_redis(Settings())

            redis_cls.return_value.aclose.assert_awaited_once()
