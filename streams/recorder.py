import asyncio
import json
import logging
from pathlib import Path
from typing import Protocol
from redis.asyncio import Redis
from redis.exceptions import RedisError

from core.exceptions import RecorderWriteException
from streams.entities import Observation


class ObservationLog(Protocol):
    """Append-only store of observations shared by both adapters."""

    async def append(self, observation: Observation) -> None: ...

    async def read_all(self) -> list[dict]: ...


class JsonArrayObservationLog:
    """
    Observation log stored as one JSON array file.

    Every append reads the whole file, pushes the record and writes the
    whole array back. Appends are not locked, so two writers racing on
    the same file can lose a record.

    Parameters
    ----------
    path : Path
        File location
    logger : logging.Logger
        Logger instance
    """

    def __init__(self, path: Path, logger: logging.Logger):
        self.path = path
        self.logger = logger

    def _read(self) -> list[dict]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            self.logger.error(f"Error reading existing benchmark data: {e}")
            return []
        if not isinstance(data, list):
            return []
        return data

    def _append(self, record: dict) -> None:
        records = self._read()
        records.append(record)
        try:
            self.path.write_text(json.dumps(records, indent=2), encoding="utf-8")
        except OSError as e:
            raise RecorderWriteException(f"Error saving benchmark data: {e}") from e

    async def append(self, observation: Observation) -> None:
        await asyncio.to_thread(self._append, observation.to_record())

    async def read_all(self) -> list[dict]:
        return await asyncio.to_thread(self._read)


class JsonLinesObservationLog:
    """
    Observation log stored as one JSON record per line.

    The file is opened in append mode for every record, so concurrent
    writers never rewrite each other's lines. Unparseable lines are
    skipped on read.

    Parameters
    ----------
    path : Path
        File location
    logger : logging.Logger
        Logger instance
    """

    def __init__(self, path: Path, logger: logging.Logger):
        self.path = path
        self.logger = logger

    def _append(self, record: dict) -> None:
        try:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
        except OSError as e:
            raise RecorderWriteException(f"Error saving benchmark data: {e}") from e

    def _read(self) -> list[dict]:
        records = []
        try:
            with self.path.open("r", encoding="utf-8") as f:
                for line_number, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(json.loads(line))
                    except ValueError:
                        self.logger.warning(f"Skipping corrupt benchmark record at line {line_number}")
        except FileNotFoundError:
            return []
        except OSError as e:
            self.logger.error(f"Error reading existing benchmark data: {e}")
            return []
        return records

    async def append(self, observation: Observation) -> None:
        await asyncio.to_thread(self._append, observation.to_record())

    async def read_all(self) -> list[dict]:
        return await asyncio.to_thread(self._read)


class RedisObservationLog:
    """
    Observation log stored in a Redis list.

    ``RPUSH`` is atomic, so writers in different processes can append
    concurrently.

    Parameters
    ----------
    redis_client : Redis
        Redis client with ``decode_responses`` enabled
    key : str
        List key
    logger : logging.Logger
        Logger instance
    """

    def __init__(self, redis_client: Redis, key: str, logger: logging.Logger):
        self.redis = redis_client
        self.key = key
        self.logger = logger

    async def append(self, observation: Observation) -> None:
        try:
            await self.redis.rpush(self.key, json.dumps(observation.to_record()))
        except RedisError as e:
            raise RecorderWriteException(f"Error saving benchmark data: {e}") from e

    async def read_all(self) -> list[dict]:
        try:
            values = await self.redis.lrange(self.key, 0, -1)
        except RedisError as e:
            self.logger.error(f"Error reading existing benchmark data: {e}")
            return []
        records = []
        for value in values:
            try:
                records.append(json.loads(value))
            except ValueError:
                self.logger.warning("Skipping corrupt benchmark record in Redis")
        return records

    async def aclose(self) -> None:
        await self.redis.aclose()


class SerializedObservationRecorder:
    """
    Single writer in front of an observation log.

    Appends from any number of adapters are queued and written one at a
    time by a single task, so the read-modify-write of the JSON array
    log never overlaps inside one process. Each ``append`` waits for its
    own write and raises ``RecorderWriteException`` when it fails; the
    writer task keeps draining the queue after any failure.

    Parameters
    ----------
    log : ObservationLog
        Underlying log
    logger : logging.Logger
        Logger instance
    """

    def __init__(self, log: ObservationLog, logger: logging.Logger):
        self.log = log
        self.logger = logger
        self._queue: asyncio.Queue[tuple[Observation, asyncio.Future]] = asyncio.Queue()
        self._writer: asyncio.Task | None = None

    def _ensure_writer(self) -> None:
        if self._writer is None or self._writer.done():
            self._writer = asyncio.create_task(self._drain())

    async def _write(self, observation: Observation) -> RecorderWriteException | None:
        try:
            await self.log.append(observation)
        except RecorderWriteException as e:
            self.logger.error(e.message)
            return e
        except Exception as e:
            self.logger.error(f"Unexpected error saving benchmark data: {e!r}")
            return RecorderWriteException(f"Error saving benchmark data: {e}")
        return None

    async def _drain(self) -> None:
        while True:
            observation, written = await self._queue.get()
            try:
                error = await self._write(observation)
                # the caller may have stopped waiting
                if not written.done():
                    if error is None:
                        written.set_result(None)
                    else:
                        written.set_exception(error)
            finally:
                self._queue.task_done()

    async def append(self, observation: Observation) -> None:
        """
        Queue an observation and wait until it is written.

        Parameters
        ----------
        observation : Observation
            Observation to record

        Raises
        ------
        RecorderWriteException
            If the underlying log failed to store it
        """
        self._ensure_writer()
        written = asyncio.get_running_loop().create_future()
        await self._queue.put((observation, written))
        await written

    async def read_all(self) -> list[dict]:
        await self.flush()
        return await self.log.read_all()

    async def flush(self) -> None:
        if self._writer is not None:
            await self._queue.join()

    async def aclose(self) -> None:
        await self.flush()
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None


def parse_observations(records: list[dict]) -> list[Observation]:
    """
    Validate raw log records.

    Parameters
    ----------
    records : list[dict]
        Records as read from a log

    Returns
    -------
    list[Observation]
        Parsed observations

    Raises
    ------
    pydantic.ValidationError
        If any record is malformed
    """
    return [Observation.model_validate(record) for record in records]
