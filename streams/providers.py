from dishka import Provider, Scope, provide, FromComponent
from pathlib import Path
from typing import Annotated, AsyncIterable
import logging

from core.environment.config import Settings
from core.redis.client import connect_redis
from streams.benchmark import BenchmarkAnalyzer
from streams.grpc_adapter import BinaryStreamAdapter, GeyserStreamFactory
from streams.recorder import (
    JsonArrayObservationLog,
    JsonLinesObservationLog,
    ObservationLog,
    RedisObservationLog,
    SerializedObservationRecorder,
)
from streams.retry import ReconnectPolicy, RetryPolicy
from streams.rpc import SolanaRpcClient
from streams.services import MintIngestionService
from streams.usecases import (
    GetBenchmarkReportUseCase,
    GetBenchmarkStatsUseCase,
    PushSocketControlUseCase,
)
from streams.wss_adapter import PushSocketAdapter, PushSocketSession


class StreamsProvider(Provider):
    """
    Provider for ingestion and benchmark dependencies.
    """

    component = "streams"

    @provide(scope=Scope.APP)
    async def get_observation_log(
        self,
        settings: Annotated[Settings, FromComponent("environment")],
        logger: Annotated[logging.Logger, FromComponent("logger")]
    ) -> AsyncIterable[ObservationLog]:
        """
        Provide the observation log selected by settings.

        Parameters
        ----------
        settings : Settings
            Application settings
        logger : logging.Logger
            Logger instance

        Yields
        ------
        ObservationLog
            Observation log backend
        """
        if settings.observation_backend == "redis":
            log = RedisObservationLog(
                redis_client=await connect_redis(settings),
                key=settings.redis_observation_key,
                logger=logger
            )
            try:
                yield log
            finally:
                await log.aclose()
            return

        path = Path.cwd() / settings.benchmark_data_path
        if settings.observation_backend == "jsonl":
            yield JsonLinesObservationLog(path=path, logger=logger)
        else:
            yield JsonArrayObservationLog(path=path, logger=logger)

    @provide(scope=Scope.APP)
    async def get_recorder(
        self,
        log: Annotated[ObservationLog, FromComponent("streams")],
        logger: Annotated[logging.Logger, FromComponent("logger")]
    ) -> AsyncIterable[SerializedObservationRecorder]:
        """
        Provide the single writer shared by all adapters of the process.

        Parameters
        ----------
        log : ObservationLog
            Observation log backend
        logger : logging.Logger
            Logger instance

        Yields
        ------
        SerializedObservationRecorder
            Serialized recorder
        """
        recorder = SerializedObservationRecorder(log=log, logger=logger)
        try:
            yield recorder
        finally:
            await recorder.aclose()

    @provide(scope=Scope.APP)
    def get_ingestion_service(
        self,
        settings: Annotated[Settings, FromComponent("environment")],
        recorder: Annotated[SerializedObservationRecorder, FromComponent("streams")],
        logger: Annotated[logging.Logger, FromComponent("logger")]
    ) -> MintIngestionService:
        """
        Provide the shared handling path.

        Parameters
        ----------
        settings : Settings
            Application settings
        recorder : SerializedObservationRecorder
            Recorder shared by both adapters
        logger : logging.Logger
            Logger instance

        Returns
        -------
        MintIngestionService
            Ingestion service
        """
        return MintIngestionService(
            recorder=recorder,
            logger=logger,
            native_mint=settings.wsol_pc_mint,
            extraction_mode=settings.extraction_mode,
            mint_index=settings.program_mint_index
        )

    @provide(scope=Scope.APP)
    def get_binary_stream_adapter(
        self,
        settings: Annotated[Settings, FromComponent("environment")],
        ingestion: Annotated[MintIngestionService, FromComponent("streams")],
        logger: Annotated[logging.Logger, FromComponent("logger")]
    ) -> BinaryStreamAdapter:
        """
        Provide the gRPC listener.

        Parameters
        ----------
        settings : Settings
            Application settings
        ingestion : MintIngestionService
            Shared handling path
        logger : logging.Logger
            Logger instance

        Returns
        -------
        BinaryStreamAdapter
            gRPC listener, without a stream factory when endpoint or token are missing
        """
        stream_factory = None
        if settings.svs_grpc_http and settings.svs_grpc_xtoken:
            stream_factory = GeyserStreamFactory(
                target=settings.get_grpc_target(),
                x_token=settings.svs_grpc_xtoken,
                proto_package=settings.geyser_proto_package
            )
        return BinaryStreamAdapter(
            stream_factory=stream_factory,
            ingestion=ingestion,
            logger=logger,
            program_id=settings.program_id,
            discriminators=settings.get_discriminators(),
            meta_logs=settings.program_meta_logs,
            label=settings.grpc_filter_label
        )

    @provide(scope=Scope.APP)
    async def get_rpc_client(
        self,
        settings: Annotated[Settings, FromComponent("environment")],
        logger: Annotated[logging.Logger, FromComponent("logger")]
    ) -> AsyncIterable[SolanaRpcClient]:
        """
        Provide the JSON-RPC client used by the push socket.

        Parameters
        ----------
        settings : Settings
            Application settings
        logger : logging.Logger
            Logger instance

        Yields
        ------
        SolanaRpcClient
            RPC client, with an empty URL when the RPC endpoint is missing
        """
        client = SolanaRpcClient(
            rpc_url=settings.svs_swqos_rpc or "",
            logger=logger,
            retry_policy=RetryPolicy(
                max_attempts=settings.rpc_fetch_retries,
                initial_delay=settings.rpc_fetch_initial_delay
            ),
            timeout=settings.rpc_timeout
        )
        try:
            yield client
        finally:
            await client.aclose()

    @provide(scope=Scope.APP)
    async def get_push_socket_session(
        self,
        settings: Annotated[Settings, FromComponent("environment")],
        rpc_client: Annotated[SolanaRpcClient, FromComponent("streams")],
        ingestion: Annotated[MintIngestionService, FromComponent("streams")],
        logger: Annotated[logging.Logger, FromComponent("logger")]
    ) -> AsyncIterable[PushSocketSession]:
        """
        Provide the application-wide push socket session.

        Parameters
        ----------
        settings : Settings
            Application settings
        rpc_client : SolanaRpcClient
            RPC client used to materialise notifications
        ingestion : MintIngestionService
            Shared handling path
        logger : logging.Logger
            Logger instance

        Yields
        ------
        PushSocketSession
            Push socket session, stopped on container close
        """
        adapter = PushSocketAdapter(
            rpc_client=rpc_client,
            ingestion=ingestion,
            logger=logger,
            program_id=settings.program_id,
            meta_logs=settings.program_meta_logs
        )

        if settings.reconnect_strategy == "exponential":
            policy = ReconnectPolicy.backoff(
                base_delay=settings.reconnect_delay,
                max_delay=settings.reconnect_max_delay,
                max_attempts=settings.reconnect_max_attempts
            )
        else:
            policy = ReconnectPolicy.fixed(settings.reconnect_delay)

        session = PushSocketSession(
            adapter=adapter,
            wss_url=settings.svs_swqos_wss,
            logger=logger,
            reconnect_policy=policy
        )
        try:
            yield session
        finally:
            if session.running:
                await session.stop()

    @provide(scope=Scope.APP)
    def get_benchmark_analyzer(
        self,
        log: Annotated[ObservationLog, FromComponent("streams")],
        logger: Annotated[logging.Logger, FromComponent("logger")]
    ) -> BenchmarkAnalyzer:
        """
        Provide the benchmark analyzer.

        Parameters
        ----------
        log : ObservationLog
            Observation log backend
        logger : logging.Logger
            Logger instance

        Returns
        -------
        BenchmarkAnalyzer
            Benchmark analyzer
        """
        return BenchmarkAnalyzer(log=log, logger=logger)

    @provide(scope=Scope.REQUEST)
    def get_benchmark_stats_use_case(
        self,
        analyzer: Annotated[BenchmarkAnalyzer, FromComponent("streams")]
    ) -> GetBenchmarkStatsUseCase:
        return GetBenchmarkStatsUseCase(analyzer=analyzer)

    @provide(scope=Scope.REQUEST)
    def get_benchmark_report_use_case(
        self,
        analyzer: Annotated[BenchmarkAnalyzer, FromComponent("streams")]
    ) -> GetBenchmarkReportUseCase:
        return GetBenchmarkReportUseCase(analyzer=analyzer)

    @provide(scope=Scope.REQUEST)
    def get_push_socket_control_use_case(
        self,
        session: Annotated[PushSocketSession, FromComponent("streams")]
    ) -> PushSocketControlUseCase:
        return PushSocketControlUseCase(session=session)
