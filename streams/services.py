import logging
import time
from typing import Callable

from core.exceptions import RecorderWriteException
from streams.entities import ChainEvent, FilterResult, Observation, Rejection
from streams.extractor import (
    extract_mint,
    extract_mint_from_account_keys,
    normalize_mint,
    select_token_balances,
)
from streams.recorder import ObservationLog


def now_ms() -> int:
    return int(time.time() * 1000)


class MintIngestionService:
    """
    Shared handling path for program events from both adapters.

    Extracts the new mint from an event and records an observation for
    the adapter that delivered it.

    Parameters
    ----------
    recorder : ObservationLog
        Destination of observations
    logger : logging.Logger
        Logger instance
    native_mint : str
        Wrapped native currency mint, never reported
    extraction_mode : str
        ``token_balances`` or ``account_keys``
    mint_index : int
        Mint position for the ``account_keys`` mode
    clock : Callable[[], int]
        Millisecond clock used for observation timestamps
    """

    def __init__(
        self,
        recorder: ObservationLog,
        logger: logging.Logger,
        native_mint: str,
        extraction_mode: str = "token_balances",
        mint_index: int = 1,
        clock: Callable[[], int] = now_ms
    ):
        self.recorder = recorder
        self.logger = logger
        self.native_mint = native_mint
        self.extraction_mode = extraction_mode
        self.mint_index = mint_index
        self.clock = clock

    def extract(self, event: ChainEvent) -> FilterResult:
        """
        Extract the created mint from an event.

        Parameters
        ----------
        event : ChainEvent
            Verified program event

        Returns
        -------
        FilterResult
            Accepted canonical mint address or the rejection reason
        """
        if self.extraction_mode == "account_keys":
            mint = extract_mint_from_account_keys(event.account_keys, self.mint_index)
        else:
            balances = select_token_balances(event.pre_token_balances, event.post_token_balances)
            if not balances:
                return FilterResult.reject(Rejection.NO_TOKEN_BALANCES)
            mint = extract_mint(balances, self.native_mint)

        if not mint:
            return FilterResult.reject(Rejection.NO_MINT)
        return normalize_mint(mint)

    async def handle(self, event: ChainEvent) -> FilterResult:
        """
        Extract and record one event.

        Parameters
        ----------
        event : ChainEvent
            Verified program event

        Returns
        -------
        FilterResult
            Accepted observation or the rejection reason
        """
        extracted = self.extract(event)
        if not extracted.accepted:
            self.logger.warning(
                f"[{event.source.value}] Failed to log token mint for {event.signature}: "
                f"{extracted.reason.value}"
            )
            return extracted

        observation = Observation(
            token=extracted.value,
            timestamp=self.clock(),
            source=event.source
        )
        try:
            await self.recorder.append(observation)
        except RecorderWriteException as e:
            self.logger.error(f"[{event.source.value}] {e.message}")
            return FilterResult.reject(Rejection.RECORD_FAILED, e.message)

        self.logger.info(f"[{event.source.value}] Signature: {event.signature}")
        self.logger.info(f"[{event.source.value}] Token CA: {observation.token}")
        return FilterResult.accept(observation)
