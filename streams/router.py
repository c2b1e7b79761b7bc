from fastapi import APIRouter
from dishka.integrations.fastapi import inject
from dishka import FromComponent
from typing import Annotated
from streams.schemas import (
    BenchmarkReportResponse,
    BenchmarkStatsResponse,
    SessionControlResponse,
    SessionStatusResponse,
)
from streams.usecases import (
    GetBenchmarkReportUseCase,
    GetBenchmarkStatsUseCase,
    PushSocketControlUseCase,
)

router = APIRouter(
    prefix="/api/streams",
    tags=["Streams"]
)


@router.get("/benchmark", response_model=BenchmarkStatsResponse)
@inject
async def get_benchmark_stats(
    use_case: Annotated[
        GetBenchmarkStatsUseCase, FromComponent("streams")
    ]
) -> BenchmarkStatsResponse:
    """
    Get latency comparison statistics between the gRPC and websocket listeners.

    Parameters
    ----------
    use_case : GetBenchmarkStatsUseCase
        Use case for reading benchmark statistics

    Returns
    -------
    BenchmarkStatsResponse
        Aggregated statistics
    """
    return await use_case()


@router.get("/benchmark/report", response_model=BenchmarkReportResponse)
@inject
async def get_benchmark_report(
    use_case: Annotated[
        GetBenchmarkReportUseCase, FromComponent("streams")
    ]
) -> BenchmarkReportResponse:
    """
    Get the plain-text benchmark report.

    Parameters
    ----------
    use_case : GetBenchmarkReportUseCase
        Use case for rendering the report

    Returns
    -------
    BenchmarkReportResponse
        Report text
    """
    return await use_case()


@router.get("/wss/status", response_model=SessionStatusResponse)
@inject
async def get_push_socket_status(
    use_case: Annotated[
        PushSocketControlUseCase, FromComponent("streams")
    ]
) -> SessionStatusResponse:
    """
    Get the state of the websocket listener.

    Parameters
    ----------
    use_case : PushSocketControlUseCase
        Use case controlling the push socket session

    Returns
    -------
    SessionStatusResponse
        Connection state, reconnect count and dropped messages per reason
    """
    return use_case.status()


@router.post("/wss/start", response_model=SessionControlResponse)
@inject
async def start_push_socket(
    use_case: Annotated[
        PushSocketControlUseCase, FromComponent("streams")
    ]
) -> SessionControlResponse:
    """
    Start the websocket listener in the background.

    Parameters
    ----------
    use_case : PushSocketControlUseCase
        Use case controlling the push socket session

    Returns
    -------
    SessionControlResponse
        Outcome of the start request
    """
    return await use_case.start()


@router.post("/wss/stop", response_model=SessionControlResponse)
@inject
async def stop_push_socket(
    use_case: Annotated[
        PushSocketControlUseCase, FromComponent("streams")
    ]
) -> SessionControlResponse:
    """
    Stop the websocket listener and wait for in-flight events.

    Parameters
    ----------
    use_case : PushSocketControlUseCase
        Use case controlling the push socket session

    Returns
    -------
    SessionControlResponse
        Outcome of the stop request
    """
    return await use_case.stop()
