from core.exceptions import NoBenchmarkDataException
from streams.benchmark import BenchmarkAnalyzer, format_report
from streams.schemas import (
    BenchmarkReportResponse,
    BenchmarkStatsResponse,
    SessionControlResponse,
    SessionStatusResponse,
)
from streams.wss_adapter import PushSocketSession


class GetBenchmarkStatsUseCase:
    """
    Use case for reading aggregated benchmark statistics.

    Parameters
    ----------
    analyzer : BenchmarkAnalyzer
        Benchmark analyzer
    """

    def __init__(self, analyzer: BenchmarkAnalyzer):
        self.analyzer = analyzer

    async def __call__(self) -> BenchmarkStatsResponse:
        """
        Execute use case.

        Returns
        -------
        BenchmarkStatsResponse
            Benchmark statistics

        Raises
        ------
        NoBenchmarkDataException
            If the observation log is empty
        """
        stats = await self.analyzer.get_stats()
        if stats is None:
            raise NoBenchmarkDataException()
        return BenchmarkStatsResponse.model_validate(stats.model_dump())


class GetBenchmarkReportUseCase:
    """
    Use case for rendering the plain-text benchmark report.

    Parameters
    ----------
    analyzer : BenchmarkAnalyzer
        Benchmark analyzer
    """

    def __init__(self, analyzer: BenchmarkAnalyzer):
        self.analyzer = analyzer

    async def __call__(self) -> BenchmarkReportResponse:
        stats = await self.analyzer.get_stats()
        if stats is None:
            raise NoBenchmarkDataException()
        return BenchmarkReportResponse(report=format_report(stats))


class PushSocketControlUseCase:
    """
    Use case for starting, stopping and inspecting the push socket session.

    Parameters
    ----------
    session : PushSocketSession
        Application-wide push socket session
    """

    def __init__(self, session: PushSocketSession):
        self.session = session

    async def start(self) -> SessionControlResponse:
        return SessionControlResponse(**await self.session.start())

    async def stop(self) -> SessionControlResponse:
        return SessionControlResponse(**await self.session.stop())

    def status(self) -> SessionStatusResponse:
        return SessionStatusResponse.model_validate(self.session.status().model_dump())
