# contract_calls.py
"""
Stackmate – ContractClient
==========================

The three puzzle-pool contract calls (enter, submit solution, claim prize)
and the read-only queries behind the puzzle pages (puzzle info, user stats,
leaderboard). Preconditions are checked before the wallet is touched; the
wallet provider itself is an injected black box exposing
``request(method, params)`` and, optionally, ``get_addresses()``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from . import clarity
from .api_client import ApiClient
from .configuration import Configuration
from .exceptions import (
    ApiClientError,
    ConfigurationError,
    ContractReadError,
    UserCancelledError,
    WalletError,
)
from .loggingconfig import setup_logging
from .network_config import NETWORKS, NetworkName, parse_network
from .transaction_core import TransactionCore, TxResult, extract_tx_id
from .tx_poller import StatusCallback

logger = setup_logging("ContractClient")

WALLET_METHODS = (
    "stx_callContract",
    "stx_makeContractCall",
    "stx_contractCall",
    "contract_call",
    "openContractCall",
)

_CANCEL_MARKERS = ("user canceled", "user cancelled", "user rejected")


@dataclass(frozen=True, slots=True)
class ContractIds:
    address: str
    name: str

    @property
    def contract_id(self) -> str:
        return f"{self.address}.{self.name}"


@dataclass(frozen=True, slots=True)
class PuzzleInfo:
    difficulty: str
    prize_pool: int
    solution_hash: str
    deadline: int
    winner: Optional[str]
    is_active: bool
    entry_count: int
    stake_amount: int


@dataclass(frozen=True, slots=True)
class UserStats:
    total_entries: int
    total_wins: int
    total_winnings: int


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    player: str
    solve_time: int
    is_correct: bool
    timestamp: int = 0
    tx_id: Optional[str] = None


def _uint_arg(value: Union[int, str], name: str) -> Dict[str, str]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None
    if number < 0:
        raise ConfigurationError(f"{name} must be non-negative, got {number}")
    return {"type": "uint", "value": str(number)}


def _buffer_arg(solution: Union[str, bytes]) -> Dict[str, str]:
    if isinstance(solution, (bytes, bytearray)):
        hex_value = bytes(solution).hex()
    else:
        hex_value = solution[2:] if solution.startswith("0x") else solution
        try:
            bytes.fromhex(hex_value)
        except ValueError:
            raise ConfigurationError("solution must be a hex string or bytes") from None
    if not hex_value:
        raise ConfigurationError("solution must not be empty")
    return {"type": "buffer", "value": f"0x{hex_value.lower()}"}


def _is_user_cancel(exc: BaseException) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _CANCEL_MARKERS)


class ContractClient:
    def __init__(
        self,
        configuration: Configuration,
        tx_core: TransactionCore,
        wallet: Any = None,
        api_client: Optional[ApiClient] = None,
    ) -> None:
        self.cfg = configuration
        self.tx_core = tx_core
        self.wallet = wallet
        # reads share the poller's client, and so its per-host schedulers
        self.api = api_client if api_client is not None else tx_core.poller.api

    # ------------------------------------------------------------------ #
    # preconditions                                                      #
    # ------------------------------------------------------------------ #

    def get_contract_ids(self, network: str | NetworkName) -> ContractIds:
        net = parse_network(network)
        key = f"CONTRACT_{net.value.upper()}"
        raw = str(self.cfg.get_config_value(key, "") or "").strip()
        address, _, name = raw.partition(".")
        if not address or not name:
            raise ConfigurationError(
                f"Missing contract id ({key}), expected something like SPXXXX.puzzle-pool"
            )
        return ContractIds(address, name)

    async def pick_sender(self, network: str | NetworkName, hint: Optional[str] = None) -> str:
        if hint:
            return hint
        addresses: List[str] = []
        if self.wallet is not None and hasattr(self.wallet, "get_addresses"):
            try:
                res = await self.wallet.get_addresses()
                addresses = [
                    a.get("address") for a in ((res or {}).get("addresses") or {}).get("stx") or []
                    if isinstance(a, dict) and isinstance(a.get("address"), str)
                ]
            except Exception as exc:
                logger.warning("Wallet address lookup failed: %s", exc)
        if not addresses:
            raise ConfigurationError("No sender address")
        prefix = NETWORKS[parse_network(network)].address_prefix
        return next((a for a in addresses if a.upper().startswith(prefix)), addresses[0])

    # ------------------------------------------------------------------ #
    # wallet                                                             #
    # ------------------------------------------------------------------ #

    async def request_contract_call(self, request: Dict[str, Any]) -> str:
        """Ask the wallet to sign and broadcast; returns the chain txId."""
        if self.wallet is None or not hasattr(self.wallet, "request"):
            raise WalletError("No wallet provider available")

        for method in WALLET_METHODS:
            try:
                res = await self.wallet.request(method, request)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if _is_user_cancel(exc):
                    raise UserCancelledError() from exc
                logger.debug("Wallet method %s failed: %s", method, exc)
                continue
            if isinstance(res, str):
                if len(res) > 10:
                    return res
                continue
            tx_id = extract_tx_id(res)
            if tx_id:
                return tx_id
        raise WalletError("Wallet request failed")

    # ------------------------------------------------------------------ #
    # contract calls                                                     #
    # ------------------------------------------------------------------ #

    async def enter_puzzle(
        self,
        puzzle_id: int,
        entry_fee: Union[int, str],
        network: str | NetworkName,
        sender: Optional[str] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> TxResult:
        ids = self.get_contract_ids(network)
        args = [_uint_arg(puzzle_id, "puzzle_id")]
        fee = _uint_arg(entry_fee, "entry_fee")["value"]
        sender_address = await self.pick_sender(network, sender)
        post_conditions = [
            {"type": "stx", "principal": sender_address, "conditionCode": "eq", "amount": fee}
        ]
        return await self._call(
            "enter-puzzle", ids, network, sender_address, args, post_conditions, on_status
        )

    async def submit_solution(
        self,
        puzzle_id: int,
        solution: Union[str, bytes],
        solve_time: int,
        network: str | NetworkName,
        sender: Optional[str] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> TxResult:
        ids = self.get_contract_ids(network)
        args = [
            _uint_arg(puzzle_id, "puzzle_id"),
            _buffer_arg(solution),
            _uint_arg(solve_time, "solve_time"),
        ]
        sender_address = await self.pick_sender(network, sender)
        return await self._call("submit-solution", ids, network, sender_address, args, [], on_status)

    async def claim_prize(
        self,
        puzzle_id: int,
        network: str | NetworkName,
        sender: Optional[str] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> TxResult:
        ids = self.get_contract_ids(network)
        args = [_uint_arg(puzzle_id, "puzzle_id")]
        sender_address = await self.pick_sender(network, sender)
        return await self._call("claim-prize", ids, network, sender_address, args, [], on_status)

    async def _call(
        self,
        function_name: str,
        ids: ContractIds,
        network: str | NetworkName,
        sender: str,
        function_args: Sequence[Dict[str, str]],
        post_conditions: Sequence[Dict[str, str]],
        on_status: Optional[StatusCallback],
    ) -> TxResult:
        net = parse_network(network)
        request = {
            "contract": ids.contract_id,
            "contractAddress": ids.address,
            "contractName": ids.name,
            "functionName": function_name,
            "functionArgs": list(function_args),
            "postConditionMode": "deny",
            "postConditions": list(post_conditions),
            "network": net.value,
            "sender": sender,
        }
        return await self.tx_core.send_transaction(
            label=function_name,
            network=net,
            run=lambda: self.request_contract_call(request),
            on_status=on_status,
        )

    # ------------------------------------------------------------------ #
    # read-only queries                                                  #
    # ------------------------------------------------------------------ #

    async def call_read_only(
        self,
        function_name: str,
        arguments: Sequence[bytes],
        network: str | NetworkName,
        sender: Optional[str] = None,
    ) -> Any:
        """
        Evaluate a read-only contract function on the indexer node and
        return its decoded Clarity result.

        Raises:
            ApiClientError: the node could not be reached, answered non-OK,
                or refused the call (``okay: false``).
        """
        ids = self.get_contract_ids(network)
        if sender is None:
            try:
                sender = await self.pick_sender(network)
            except ConfigurationError:
                sender = ids.address
        url = self.api.api_url(
            network, f"/v2/contracts/call-read/{ids.address}/{ids.name}/{function_name}"
        )
        body = {"sender": sender, "arguments": [clarity.to_hex(a) for a in arguments]}
        data = await self.api.fetch_json(url, method="POST", json=body)
        if not isinstance(data, dict) or not data.get("okay"):
            cause = data.get("cause") if isinstance(data, dict) else data
            raise ApiClientError(f"{function_name} read failed: {cause}", url=url)
        try:
            return clarity.decode_hex(str(data.get("result") or ""))
        except clarity.ClarityError as exc:
            raise ApiClientError(f"{function_name} returned an unreadable value: {exc}", url=url) from exc

    async def get_puzzle_info(self, puzzle_id: int, network: str | NetworkName) -> PuzzleInfo:
        arg = clarity.uint_cv(int(_uint_arg(puzzle_id, "puzzle_id")["value"]))
        fields = _ok_tuple(await self.call_read_only("get-puzzle-info", [arg], network))
        if fields is None:
            raise ContractReadError("Puzzle not found")
        solution_hash = fields.get("solution-hash")
        return PuzzleInfo(
            difficulty=str(fields.get("difficulty") or ""),
            prize_pool=int(fields.get("prize-pool") or 0),
            solution_hash=f"0x{solution_hash.hex()}" if isinstance(solution_hash, bytes) else "",
            deadline=int(fields.get("deadline") or 0),
            winner=fields.get("winner"),
            is_active=bool(fields.get("is-active")),
            entry_count=int(fields.get("entry-count") or 0),
            stake_amount=int(fields.get("stake-amount") or 0),
        )

    async def get_user_stats(self, address: str, network: str | NetworkName) -> UserStats:
        try:
            arg = clarity.principal_cv(address)
        except clarity.ClarityError as exc:
            raise ConfigurationError(str(exc)) from None
        fields = _ok_tuple(await self.call_read_only("get-user-stats", [arg], network))
        if fields is None:
            raise ContractReadError("No stats")
        return UserStats(
            total_entries=int(fields.get("total-entries") or 0),
            total_wins=int(fields.get("total-wins") or 0),
            total_winnings=int(fields.get("total-winnings") or 0),
        )

    async def get_leaderboard(self, puzzle_id: int, network: str | NetworkName) -> List[LeaderboardEntry]:
        """
        Correct ``submit-solution`` calls for one puzzle, fastest first.

        Built from the contract's recent transaction history; an unreachable
        indexer yields an empty board rather than an error.
        """
        wanted = int(_uint_arg(puzzle_id, "puzzle_id")["value"])
        ids = self.get_contract_ids(network)
        url = self.api.api_url(network, f"/extended/v1/address/{ids.address}/transactions?limit=200")
        try:
            response = await self.api.fetch_with_retry(url)
            data = response.json() if response.ok else None
        except (ApiClientError, ValueError) as exc:
            logger.warning("Leaderboard fetch for puzzle %d failed: %s", wanted, exc)
            return []
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            return []

        entries = []
        for tx in results:
            entry = _leaderboard_entry(tx, ids.contract_id, wanted)
            if entry is not None and entry.is_correct:
                entries.append(entry)
        entries.sort(key=lambda e: e.solve_time)
        return entries


def _ok_tuple(value: Any) -> Optional[Dict[str, Any]]:
    """The tuple inside ``(ok …)`` or ``(ok (some …))``; None for anything else."""
    if not isinstance(value, clarity.ClarityResponse) or not value.ok:
        return None
    return value.value if isinstance(value.value, dict) else None


def _leaderboard_entry(tx: Any, contract_id: str, puzzle_id: int) -> Optional[LeaderboardEntry]:
    if not isinstance(tx, dict) or tx.get("tx_type") != "contract_call":
        return None
    call = tx.get("contract_call") or {}
    if call.get("contract_id") != contract_id or call.get("function_name") != "submit-solution":
        return None
    args = call.get("function_args") or []
    try:
        pid = clarity.decode_hex(args[0].get("hex") or "")
        solve_time = clarity.decode_hex(args[2].get("hex") or "")
    except (IndexError, AttributeError, clarity.ClarityError):
        return None
    if pid != puzzle_id or not isinstance(solve_time, int):
        return None
    return LeaderboardEntry(
        player=str(tx.get("sender_address") or ""),
        solve_time=solve_time,
        is_correct="true" in str((tx.get("tx_result") or {}).get("repr") or ""),
        timestamp=int(tx.get("burn_block_time") or 0),
        tx_id=tx.get("tx_id"),
    )
