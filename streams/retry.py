import asyncio
import random
from typing import Awaitable, Callable, TypeVar


T = TypeVar("T")


class RetryPolicy:
    """
    Bounded retry with linearly increasing backoff.

    The delay grows by ``initial_delay`` after every failed attempt
    (100 ms, 200 ms, 300 ms... with the defaults).

    Parameters
    ----------
    max_attempts : int
        Total number of attempts, 1 disables retrying
    initial_delay : float
        Delay before the second attempt, in seconds
    """

    def __init__(self, max_attempts: int = 5, initial_delay: float = 0.1):
        self.max_attempts = max(1, max_attempts)
        self.initial_delay = initial_delay

    @classmethod
    def single(cls) -> "RetryPolicy":
        return cls(max_attempts=1)

    def delays(self) -> list[float]:
        """
        Delays slept between attempts.

        Returns
        -------
        list[float]
            One delay per retry, in seconds
        """
        return [self.initial_delay * step for step in range(1, self.max_attempts)]

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        accept: Callable[[T], bool]
    ) -> T:
        """
        Run an operation until its result is accepted or attempts run out.

        Parameters
        ----------
        operation : Callable[[], Awaitable[T]]
            Coroutine factory performing one attempt
        accept : Callable[[T], bool]
            Predicate telling whether a result is final

        Returns
        -------
        T
            First accepted result, or the last result when exhausted
        """
        delays = self.delays()
        result = await operation()
        for delay in delays:
            if accept(result):
                return result
            await asyncio.sleep(delay)
            result = await operation()
        return result


class ReconnectPolicy:
    """
    Delay schedule between reconnect attempts.

    Parameters
    ----------
    base_delay : float
        Delay before the first reconnect, in seconds
    max_delay : float
        Upper bound of a single delay
    max_attempts : int | None
        Reconnects allowed in a row, None for unlimited
    exponential : bool
        Double the delay on each consecutive attempt
    jitter : float
        Fraction of the delay randomised on top of it
    """

    def __init__(
        self,
        base_delay: float = 5.0,
        max_delay: float = 60.0,
        max_attempts: int | None = None,
        exponential: bool = False,
        jitter: float = 0.0
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.exponential = exponential
        self.jitter = jitter

    @classmethod
    def fixed(cls, delay: float = 5.0) -> "ReconnectPolicy":
        return cls(base_delay=delay, max_delay=delay)

    @classmethod
    def backoff(
        cls,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        max_attempts: int | None = 10,
        jitter: float = 0.1
    ) -> "ReconnectPolicy":
        return cls(
            base_delay=base_delay,
            max_delay=max_delay,
            max_attempts=max_attempts,
            exponential=True,
            jitter=jitter
        )

    def delay(self, attempt: int) -> float:
        """
        Delay before the given reconnect attempt (1-based).

        Parameters
        ----------
        attempt : int
            Consecutive reconnect attempt number

        Returns
        -------
        float
            Seconds to wait
        """
        if self.exponential:
            delay = min(self.base_delay * (2 ** max(0, attempt - 1)), self.max_delay)
        else:
            delay = self.base_delay
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return delay

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts is not None and attempt > self.max_attempts
