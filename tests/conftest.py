import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport


# Set test environment variables before imports
BENCHMARK_DIR = Path(tempfile.mkdtemp(prefix="mint-benchmark-"))
os.environ['ENV_FILE'] = str(BENCHMARK_DIR / "missing.env")
os.environ['BENCHMARK_DATA_PATH'] = str(BENCHMARK_DIR / "benchmark-data.json")
os.environ['OBSERVATION_BACKEND'] = 'json'
for name in ('SVS_GRPC_HTTP', 'SVS_GRPC_XTOKEN', 'SVS_SWQOS_WSS', 'SVS_SWQOS_RPC'):
    os.environ.pop(name, None)

PROGRAM_ID = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"
WSOL = "So11111111111111111111111111111111111111112"
MINT_LOG = "Program log: Instruction: InitializeMint2"
DISCRIMINATOR = bytes.fromhex("181ec828051c0777")
USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


class MemoryObservationLog:
    """In-memory observation log."""

    def __init__(self):
        self.records: list[dict] = []

    async def append(self, observation) -> None:
        self.records.append(observation.to_record())

    async def read_all(self) -> list[dict]:
        return list(self.records)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate is true or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("mint_stream_benchmark.tests")


@pytest.fixture
def memory_log() -> MemoryObservationLog:
    return MemoryObservationLog()


@pytest.fixture
def benchmark_file():
    """
    Benchmark data file used by the application container.

    Yields
    ------
    Callable[[list[dict]], None]
        Writes records to the file
    """
    path = Path(os.environ['BENCHMARK_DATA_PATH'])
    path.unlink(missing_ok=True)

    def write(records: list[dict]) -> None:
        path.write_text(json.dumps(records), encoding="utf-8")

    yield write
    path.unlink(missing_ok=True)


@pytest_asyncio.fixture
async def client(benchmark_file):
    """
    Fixture for async test client.

    Parameters
    ----------
    benchmark_file : Callable
        Benchmark data file writer

    Yields
    ------
    AsyncClient
        Async HTTP client for testing
    """
    from main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
