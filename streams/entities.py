from enum import Enum
from typing import Any
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Source(str, Enum):
    """
    Delivery path an observation came from.

    ``grpc`` is listed first and wins ties where the statistics favour
    the first-listed source.
    """
    GRPC = "grpc"
    WSS = "wss"


class TokenAmount(BaseModel):
    amount: str
    decimals: int = 0
    ui_amount: float | None = None
    ui_amount_string: str | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TokenBalanceEntry(BaseModel):
    """
    Token balance of one account before or after a transaction.

    Attributes
    ----------
    account_index : int
        Index of the token account in the transaction account keys
    mint : str
        Mint address of the token
    owner : str | None
        Owner of the token account
    program_id : str | None
        Token program owning the account
    ui_token_amount : TokenAmount | None
        Amount held by the account
    """
    account_index: int = 0
    mint: str
    owner: str | None = None
    program_id: str | None = None
    ui_token_amount: TokenAmount | None = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore"
    )


class CompiledInstruction(BaseModel):
    program_id_index: int = 0
    accounts: bytes = b""
    data: bytes = b""


class ChainEvent(BaseModel):
    """
    Program transaction delivered by one of the adapters.

    Only built once the transaction is confirmed to belong to the
    monitored program.

    Attributes
    ----------
    source : Source
        Adapter that delivered the transaction
    signature : str
        Base58 transaction signature
    slot : int | None
        Slot of the transaction (binary stream only)
    log_messages : list[str]
        Program log lines
    instructions : list[CompiledInstruction]
        Compiled instructions (binary stream only)
    account_keys : list[str]
        Base58 account keys (binary stream only)
    pre_token_balances : list[TokenBalanceEntry]
        Token balances before execution
    post_token_balances : list[TokenBalanceEntry]
        Token balances after execution
    """
    source: Source
    signature: str
    slot: int | None = None
    log_messages: list[str] = Field(default_factory=list)
    instructions: list[CompiledInstruction] = Field(default_factory=list)
    account_keys: list[str] = Field(default_factory=list)
    pre_token_balances: list[TokenBalanceEntry] = Field(default_factory=list)
    post_token_balances: list[TokenBalanceEntry] = Field(default_factory=list)


class Observation(BaseModel):
    """
    One recorded "this adapter saw this token at this time" fact.

    Attributes
    ----------
    token : str
        Mint address
    timestamp : int
        Milliseconds since epoch
    source : Source
        Adapter that produced the observation
    """
    token: str
    timestamp: int
    source: Source

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    def to_record(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "timestamp": self.timestamp,
            "source": self.source.value
        }


class TokenPair(BaseModel):
    token: str
    grpc_timestamp: int | None = None
    wss_timestamp: int | None = None
    time_difference: int | None = None
    faster_source: Source | None = None

    @property
    def is_complete(self) -> bool:
        return self.grpc_timestamp is not None and self.wss_timestamp is not None


class TokensPerSource(BaseModel):
    grpc: int = 0
    wss: int = 0


class AverageTimeFaster(BaseModel):
    source: Source | None = None
    milliseconds: float = 0.0


class FastestSource(BaseModel):
    source: Source | None = None
    count: int = 0
    percentage: float = 0.0


class BenchmarkDuration(BaseModel):
    total_ms: int = 0
    start_timestamp: int = 0
    end_timestamp: int = 0


class BenchmarkStats(BaseModel):
    """
    Aggregated latency comparison between the two delivery paths.

    ``min_time_difference`` stays ``None`` until at least one complete
    pair exists.
    """
    total_tokens: int = 0
    tokens_per_source: TokensPerSource = Field(default_factory=TokensPerSource)
    average_time_faster: AverageTimeFaster = Field(default_factory=AverageTimeFaster)
    average_time_difference: float = 0.0
    max_time_difference: float = 0.0
    min_time_difference: float | None = None
    fastest_source: FastestSource = Field(default_factory=FastestSource)
    complete_pairs: int = 0
    incomplete_pairs: int = 0
    duration: BenchmarkDuration = Field(default_factory=BenchmarkDuration)


class Rejection(str, Enum):
    """Reason a message or event was dropped by a filtering stage."""
    SUBSCRIPTION_ACK = "subscription_ack"
    MALFORMED_PAYLOAD = "malformed_payload"
    FILTER_MISMATCH = "filter_mismatch"
    MISSING_FIELDS = "missing_fields"
    NOT_TARGET_PROGRAM = "not_target_program"
    MISSING_METADATA = "missing_metadata"
    NO_TOKEN_BALANCES = "no_token_balances"
    NO_MINT = "no_mint"
    INVALID_MINT = "invalid_mint"
    RECORD_FAILED = "record_failed"


class FilterResult(BaseModel):
    """
    Tagged outcome of a filtering stage.

    Either ``accepted`` with a ``value`` or rejected with a ``reason``.
    """
    accepted: bool
    value: Any = None
    reason: Rejection | None = None
    detail: str | None = None

    @classmethod
    def accept(cls, value: Any) -> "FilterResult":
        return cls(accepted=True, value=value)

    @classmethod
    def reject(cls, reason: Rejection, detail: str | None = None) -> "FilterResult":
        return cls(accepted=False, reason=reason, detail=detail)
