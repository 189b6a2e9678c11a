"""
Stackmate chain-API core: resilient indexer access and transaction tracking.
"""

from .api_client import ApiClient, ApiResponse, StxBalance
from .backoff import RetryPolicy, next_delay, parse_retry_after
from .configuration import Configuration
from .contract_calls import ContractClient, LeaderboardEntry, PuzzleInfo, UserStats
from .exceptions import (
    ApiClientError,
    ConfigurationError,
    ContractReadError,
    StackmateError,
    UserCancelledError,
    WalletError,
)
from .network_config import NetworkName
from .request_scheduler import RequestScheduler, SchedulerRegistry
from .transaction_core import TransactionCore, TxResult
from .tx_poller import TransactionPoller
from .tx_store import JsonFileStorage, MemoryStorage, TransactionRecord, TransactionStore, TxStatus

__all__: list[str] = [
    "ApiClient",
    "ApiClientError",
    "ApiResponse",
    "Configuration",
    "ConfigurationError",
    "ContractClient",
    "ContractReadError",
    "JsonFileStorage",
    "LeaderboardEntry",
    "MemoryStorage",
    "NetworkName",
    "PuzzleInfo",
    "RequestScheduler",
    "RetryPolicy",
    "SchedulerRegistry",
    "StackmateError",
    "StxBalance",
    "TransactionCore",
    "TransactionPoller",
    "TransactionRecord",
    "TransactionStore",
    "TxResult",
    "TxStatus",
    "UserCancelledError",
    "UserStats",
    "WalletError",
    "next_delay",
    "parse_retry_after",
]
