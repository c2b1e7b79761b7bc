import logging
from datetime import datetime, timezone

from pydantic import ValidationError

from streams.entities import (
    AverageTimeFaster,
    BenchmarkDuration,
    BenchmarkStats,
    FastestSource,
    Observation,
    Source,
    TokenPair,
    TokensPerSource,
)
from streams.recorder import ObservationLog, parse_observations


def pair_observations(observations: list[Observation]) -> list[TokenPair]:
    """
    Group observations by token, one timestamp per source.

    A later observation for the same token and source overwrites the
    earlier one. Pairs keep the order in which tokens were first seen.

    Parameters
    ----------
    observations : list[Observation]
        Observations in log order

    Returns
    -------
    list[TokenPair]
        One pair per token
    """
    pairs: dict[str, TokenPair] = {}
    for observation in observations:
        pair = pairs.setdefault(observation.token, TokenPair(token=observation.token))
        if observation.source == Source.GRPC:
            pair.grpc_timestamp = observation.timestamp
        elif observation.source == Source.WSS:
            pair.wss_timestamp = observation.timestamp

        if pair.is_complete:
            pair.time_difference = abs(pair.wss_timestamp - pair.grpc_timestamp)
            pair.faster_source = (
                Source.GRPC if pair.grpc_timestamp < pair.wss_timestamp else Source.WSS
            )
    return list(pairs.values())


def _mean(values: list[int]) -> float:
    return sum(values) / len(values)


def compute_stats(observations: list[Observation]) -> BenchmarkStats | None:
    """
    Compute latency comparison statistics over an observation log.

    The most recent observation is left out, it may belong to a pair
    whose second half has not been written yet.

    Parameters
    ----------
    observations : list[Observation]
        Full log in append order

    Returns
    -------
    BenchmarkStats | None
        Statistics, None when the log is empty
    """
    if not observations:
        return None

    analyzed = observations[:-1]
    pairs = pair_observations(analyzed)
    complete = [pair for pair in pairs if pair.is_complete]

    duration = BenchmarkDuration()
    if analyzed:
        start = min(observation.timestamp for observation in analyzed)
        end = max(observation.timestamp for observation in analyzed)
        duration = BenchmarkDuration(total_ms=end - start, start_timestamp=start, end_timestamp=end)

    stats = BenchmarkStats(
        total_tokens=len(pairs),
        tokens_per_source=TokensPerSource(
            grpc=sum(1 for pair in pairs if pair.grpc_timestamp is not None),
            wss=sum(1 for pair in pairs if pair.wss_timestamp is not None)
        ),
        complete_pairs=len(complete),
        incomplete_pairs=len(pairs) - len(complete),
        duration=duration
    )

    if not complete:
        return stats

    differences = [pair.time_difference for pair in complete]
    stats.average_time_difference = _mean(differences)
    stats.max_time_difference = max(differences)
    stats.min_time_difference = min(differences)

    grpc_wins = [pair.time_difference for pair in complete if pair.faster_source == Source.GRPC]
    wss_wins = [pair.time_difference for pair in complete if pair.faster_source == Source.WSS]

    if len(grpc_wins) >= len(wss_wins):
        stats.fastest_source = FastestSource(source=Source.GRPC, count=len(grpc_wins))
    else:
        stats.fastest_source = FastestSource(source=Source.WSS, count=len(wss_wins))
    stats.fastest_source.percentage = stats.fastest_source.count / len(complete) * 100

    if grpc_wins and len(grpc_wins) >= len(wss_wins):
        stats.average_time_faster = AverageTimeFaster(source=Source.GRPC, milliseconds=_mean(grpc_wins))
    elif wss_wins:
        stats.average_time_faster = AverageTimeFaster(source=Source.WSS, milliseconds=_mean(wss_wins))

    return stats


def _iso(timestamp_ms: int) -> str:
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _label(source: Source | None) -> str:
    return source.value.upper() if source else ""


def format_report(stats: BenchmarkStats) -> str:
    """
    Render statistics as a plain-text report.

    Parameters
    ----------
    stats : BenchmarkStats
        Computed statistics

    Returns
    -------
    str
        Report text
    """
    lines = [
        "",
        "===== BENCHMARK STATISTICS =====",
        f"Total tokens analyzed: {stats.total_tokens}",
        f"Total tokens per source: gRPC: {stats.tokens_per_source.grpc}, "
        f"WSS: {stats.tokens_per_source.wss}",
        "",
    ]

    if stats.complete_pairs > 0:
        fastest = stats.fastest_source
        faster = stats.average_time_faster
        duration_seconds = stats.duration.total_ms / 1000
        duration_minutes = duration_seconds / 60
        lines += [
            f"Complete pairs: {stats.complete_pairs}",
            f"Incomplete pairs: {stats.incomplete_pairs}",
            "",
            f"Fastest source: {_label(fastest.source)} "
            f"({fastest.count} times, {fastest.percentage:.2f}%)",
            f"Average time faster: {_label(faster.source)} is faster by "
            f"{faster.milliseconds:.2f} ms",
            "",
            f"Average time difference: {stats.average_time_difference:.2f} ms",
            f"Maximum time difference: {stats.max_time_difference:.2f} ms",
            f"Minimum time difference: {stats.min_time_difference:.2f} ms",
            "",
            f"Total benchmark duration: {stats.duration.total_ms} ms "
            f"({duration_seconds:.2f} seconds)",
        ]
        if duration_minutes >= 1:
            lines.append(f"                        {duration_minutes:.2f} minutes")
        lines += [
            f"Start time: {_iso(stats.duration.start_timestamp)}",
            f"End time: {_iso(stats.duration.end_timestamp)}",
        ]
    else:
        lines.append("Not enough complete pairs to calculate time statistics.")

    lines.append("================================")
    return "\n".join(lines) + "\n"


class BenchmarkAnalyzer:
    """
    Offline analysis of the observation log.

    Parameters
    ----------
    log : ObservationLog
        Observation log to analyse
    logger : logging.Logger
        Logger instance
    """

    def __init__(self, log: ObservationLog, logger: logging.Logger):
        self.log = log
        self.logger = logger

    async def load(self) -> list[Observation]:
        return parse_observations(await self.log.read_all())

    async def get_stats(self) -> BenchmarkStats | None:
        """
        Load the log and compute statistics.

        Returns
        -------
        BenchmarkStats | None
            Statistics, None when there is no data

        Raises
        ------
        pydantic.ValidationError
            If a record in the log is malformed
        """
        return compute_stats(await self.load())

    async def report(self) -> str | None:
        """
        Build the text report, logging instead of raising on failure.

        Returns
        -------
        str | None
            Report text, None when there is no data or analysis failed
        """
        try:
            stats = await self.get_stats()
        except (ValidationError, OSError) as e:
            self.logger.error(f"Error analyzing benchmark data: {e}")
            return None

        if stats is None:
            self.logger.info("No benchmark data found.")
            return None
        return format_report(stats)
