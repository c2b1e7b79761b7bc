"""Command line entry point.

Usage:
    python cli.py grpc      # gRPC listener only
    python cli.py wss       # websocket listener only
    python cli.py both      # both listeners on one event loop
    python cli.py report    # print benchmark statistics

Environment:
    SVS_GRPC_HTTP, SVS_GRPC_XTOKEN  gRPC endpoint and access token
    SVS_SWQOS_WSS, SVS_SWQOS_RPC    websocket and RPC endpoints
"""

import argparse
import asyncio
import logging
import sys

from dishka import AsyncContainer

from core.container import build_container
from core.exceptions import BaseCustomException, StreamTransportException
from streams.benchmark import BenchmarkAnalyzer
from streams.grpc_adapter import BinaryStreamAdapter
from streams.wss_adapter import PushSocketSession


async def run_grpc(container: AsyncContainer, logger: logging.Logger) -> int:
    adapter = await container.get(BinaryStreamAdapter, component="streams")
    try:
        await adapter.run()
    except StreamTransportException as e:
        logger.error(f"gRPC listener stopped: {e.message}")
        return 1
    return 0


async def run_wss(container: AsyncContainer, logger: logging.Logger) -> int:
    session = await container.get(PushSocketSession, component="streams")
    result = await session.start()
    if not result["success"]:
        return 1
    await session.wait()
    return 0


async def run_both(container: AsyncContainer, logger: logging.Logger) -> int:
    results = await asyncio.gather(
        run_grpc(container, logger),
        run_wss(container, logger),
        return_exceptions=True
    )
    exit_code = 0
    for result in results:
        if isinstance(result, BaseException):
            logger.error(f"Listener crashed: {result!r}")
            exit_code = 1
        else:
            exit_code = max(exit_code, result)
    return exit_code


async def run_report(container: AsyncContainer, logger: logging.Logger) -> int:
    analyzer = await container.get(BenchmarkAnalyzer, component="streams")
    report = await analyzer.report()
    if report is None:
        return 0
    print(report)
    logger.info("Benchmark statistics completed.")
    return 0


COMMANDS = {
    "grpc": run_grpc,
    "wss": run_wss,
    "both": run_both,
    "report": run_report,
}


async def _main(command: str) -> int:
    container = build_container()
    try:
        logger = await container.get(logging.Logger, component="logger")
        try:
            return await COMMANDS[command](container, logger)
        except BaseCustomException as e:
            logger.error(e.message)
            return 1
    finally:
        await container.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="gRPC vs websocket latency benchmark for new token mints"
    )
    parser.add_argument("command", choices=sorted(COMMANDS), help="What to run")
    args = parser.parse_args(argv)

    try:
        return asyncio.run(_main(args.command))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
