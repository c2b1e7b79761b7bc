import os
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings using Pydantic Settings.

    Attributes
    ----------
    svs_grpc_http : str | None
        Yellowstone gRPC endpoint (binary stream)
    svs_grpc_xtoken : str | None
        Access token sent as ``x-token`` metadata on the gRPC channel
    svs_swqos_wss : str | None
        Websocket endpoint used for ``logsSubscribe``
    svs_swqos_rpc : str | None
        Plain JSON-RPC endpoint used to fetch full transactions
    program_id : str
        Address of the monitored program
    program_meta_logs : list[str]
        Literal log lines identifying a mint transaction
    program_instructions : list[str]
        Hex encoded 8-byte instruction discriminators
    program_mint_index : int
        Index of the mint in the account keys (account_keys extraction mode)
    wsol_pc_mint : str
        Wrapped SOL mint, never reported as a new token
    benchmark_data_path : str
        Observation log location, relative to the working directory
    observation_backend : str
        Observation log backend (json, jsonl, redis)
    """

    svs_grpc_http: str | None = None
    svs_grpc_xtoken: str | None = None
    svs_swqos_wss: str | None = None
    svs_swqos_rpc: str | None = None

    program_id: str = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"
    program_meta_logs: list[str] = ["Program log: Instruction: InitializeMint2"]
    program_instructions: list[str] = ["181ec828051c0777"]
    program_mint_index: int = 1
    wsol_pc_mint: str = "So11111111111111111111111111111111111111112"

    grpc_filter_label: str = "svsgrpc"
    geyser_proto_package: str = "generated"
    extraction_mode: Literal["token_balances", "account_keys"] = "token_balances"

    benchmark_data_path: str = "benchmark-data.json"
    observation_backend: Literal["json", "jsonl", "redis"] = "json"

    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str = ""
    redis_observation_key: str = "benchmark:observations"

    reconnect_strategy: Literal["fixed", "exponential"] = "fixed"
    reconnect_delay: float = 5.0
    reconnect_max_delay: float = 60.0
    reconnect_max_attempts: int | None = None

    rpc_fetch_retries: int = 1
    rpc_fetch_initial_delay: float = 0.1
    rpc_timeout: float = 10.0

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=os.getenv("ENV_FILE", ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False
    )

    def get_discriminators(self) -> list[bytes]:
        """
        Get instruction discriminators as raw bytes.

        Returns
        -------
        list[bytes]
            Decoded discriminators
        """
        return [bytes.fromhex(value) for value in self.program_instructions]

    def get_grpc_target(self) -> str | None:
        """
        Get gRPC channel target (host:port) from the configured endpoint.

        Returns
        -------
        str | None
            Channel target, port 443 assumed when missing
        """
        if not self.svs_grpc_http:
            return None
        target = self.svs_grpc_http.split("://", 1)[-1].rstrip("/")
        if ":" not in target:
            target = f"{target}:443"
        return target
