from pydantic import BaseModel, ConfigDict

from streams.entities import BenchmarkStats


class BenchmarkStatsResponse(BenchmarkStats):
    """
    Response schema for benchmark statistics.

    Attributes
    ----------
    total_tokens : int
        Tokens seen by at least one source
    tokens_per_source : TokensPerSource
        Tokens seen per source
    average_time_faster : AverageTimeFaster
        Source that wins more often and its average margin in ms
    average_time_difference : float
        Mean absolute difference over complete pairs, in ms
    max_time_difference : float
        Largest absolute difference, in ms
    min_time_difference : float | None
        Smallest absolute difference, in ms
    fastest_source : FastestSource
        Source that was faster more often
    complete_pairs : int
        Tokens seen by both sources
    incomplete_pairs : int
        Tokens seen by one source only
    duration : BenchmarkDuration
        Span of the analysed observations
    """

    model_config = ConfigDict(from_attributes=True)


class BenchmarkReportResponse(BaseModel):
    """
    Response schema for the text report.

    Attributes
    ----------
    report : str
        Plain-text report
    """
    report: str


class SessionControlResponse(BaseModel):
    """
    Response schema for starting or stopping the push socket.

    Attributes
    ----------
    success : bool
        Whether the action took effect
    message : str
        Human readable outcome
    """
    success: bool
    message: str


class SessionStatusResponse(BaseModel):
    """
    Response schema for the push socket status.

    Attributes
    ----------
    connected : bool
        Socket is open
    running : bool
        Connection loop is active
    reconnects : int
        Reconnects performed so far
    events : int
        Program events materialised
    rejections : dict[str, int]
        Dropped messages per reason
    """
    connected: bool
    running: bool
    reconnects: int
    events: int
    rejections: dict[str, int]

    model_config = ConfigDict(from_attributes=True)
