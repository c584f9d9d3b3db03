"""Retrying JSON-RPC transport to a Solana cluster."""

from __future__ import annotations

import asyncio
import base64
import itertools
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from loguru import logger
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature

from scilla.core.config import ClusterEndpoint, ScillaConfig
from scilla.core.errors import BlockhashNotFound, ClusterRejected, ClusterUnavailable
from scilla.models import (
    AccountSummary,
    Blockhash,
    EpochInfo,
    SignatureStatus,
    StakeAccountState,
    VoteAccountState,
)

# JSON-RPC server codes that signal a lagging or overloaded node.
RETRYABLE_RPC_CODES = frozenset({-32004, -32005, -32014, 429})

Sleep = Callable[[float], Awaitable[None]]


class ClusterClient:
    """Thin async client for the Solana JSON-RPC API.

    Transient failures (timeouts, transport errors, HTTP 429/5xx and node
    health codes) are retried with exponential backoff up to ``max_attempts``
    before :class:`ClusterUnavailable` is raised. Any other cluster-reported
    error surfaces immediately as :class:`ClusterRejected`.
    """

    def __init__(
        self,
        endpoint: ClusterEndpoint,
        *,
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 4.0,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.endpoint = endpoint
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._sleep = sleep
        self._ids = itertools.count(1)

    @classmethod
    def from_config(
        cls, config: ScillaConfig, *, http_client: httpx.AsyncClient | None = None
    ) -> ClusterClient:
        return cls(
            config.endpoint,
            timeout=config.rpc_timeout_seconds,
            max_attempts=config.rpc_max_attempts,
            backoff_base=config.rpc_backoff_base_seconds,
            backoff_max=config.rpc_backoff_max_seconds,
            http_client=http_client,
        )

    @property
    def commitment(self) -> str:
        return self.endpoint.commitment.value

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> ClusterClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.backoff_base * (2**attempt), self.backoff_max)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def read(self, method: str, params: list[Any] | None = None) -> Any:
        """Issue a JSON-RPC call and return its ``result`` member."""
        last_detail = "no attempt made"
        for attempt in range(self.max_attempts):
            if attempt:
                delay = self.backoff_delay(attempt - 1)
                logger.debug(
                    "Retrying {} in {:.2f}s (attempt {}/{})",
                    method,
                    delay,
                    attempt + 1,
                    self.max_attempts,
                )
                await self._sleep(delay)
            try:
                return await self._post(method, params or [])
            except _Transient as exc:
                last_detail = str(exc)
                logger.warning("{} transient failure: {}", method, last_detail)

        raise ClusterUnavailable(method, last_detail, attempts=self.max_attempts)

    async def _post(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._http.post(self.endpoint.url, json=payload)
        except httpx.TimeoutException as exc:
            raise _Transient(f"timeout: {exc}") from exc
        except httpx.TransportError as exc:
            raise _Transient(f"transport error: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise _Transient(f"HTTP {response.status_code}")
        if response.status_code != 200:
            raise ClusterRejected(response.status_code, response.text or response.reason_phrase)

        try:
            body = response.json()
        except ValueError as exc:
            raise _Transient(f"malformed response body: {exc}") from exc

        error = body.get("error")
        if error:
            code = int(error.get("code", 0))
            message = str(error.get("message", "unknown error"))
            if code in RETRYABLE_RPC_CODES:
                raise _Transient(f"{code}: {message}")
            if "blockhash not found" in message.lower():
                raise BlockhashNotFound(method, message)
            raise ClusterRejected(code, message, error.get("data"))
        return body.get("result")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_latest_blockhash(self) -> Blockhash:
        result = await self.read("getLatestBlockhash", [{"commitment": self.commitment}])
        value = result["value"]
        return Blockhash(
            value=Hash.from_string(value["blockhash"]),
            last_valid_block_height=int(value["lastValidBlockHeight"]),
        )

    async def get_signature_status(self, signature: Signature) -> SignatureStatus | None:
        result = await self.read(
            "getSignatureStatuses",
            [[str(signature)], {"searchTransactionHistory": True}],
        )
        entries = result.get("value") or [None]
        entry = entries[0]
        if entry is None:
            return None
        return SignatureStatus.from_rpc(entry)

    async def get_account_info(self, pubkey: Pubkey) -> dict[str, Any] | None:
        result = await self.read(
            "getAccountInfo",
            [str(pubkey), {"encoding": "jsonParsed", "commitment": self.commitment}],
        )
        return result.get("value")

    async def get_stake_account(self, pubkey: Pubkey) -> StakeAccountState | None:
        account = await self.get_account_info(pubkey)
        if account is None:
            return None
        return StakeAccountState.from_rpc(pubkey, account)

    async def get_vote_account(self, pubkey: Pubkey) -> VoteAccountState | None:
        account = await self.get_account_info(pubkey)
        if account is None:
            return None
        return VoteAccountState.from_rpc(pubkey, account)

    async def get_account(self, pubkey: Pubkey) -> AccountSummary | None:
        """Owner, balance and size only; the account data itself is not fetched."""
        result = await self.read(
            "getAccountInfo",
            [
                str(pubkey),
                {
                    "encoding": "base64",
                    "dataSlice": {"offset": 0, "length": 0},
                    "commitment": self.commitment,
                },
            ],
        )
        account = result.get("value")
        if account is None:
            return None
        return AccountSummary.from_rpc(pubkey, account)

    async def get_balance(self, pubkey: Pubkey) -> int:
        result = await self.read("getBalance", [str(pubkey), {"commitment": self.commitment}])
        return int(result["value"])

    async def get_epoch_info(self) -> EpochInfo:
        result = await self.read("getEpochInfo", [{"commitment": self.commitment}])
        return EpochInfo.from_rpc(result)

    async def get_minimum_balance_for_rent_exemption(self, space: int) -> int:
        result = await self.read("getMinimumBalanceForRentExemption", [space])
        return int(result)

    async def get_genesis_hash(self) -> str:
        return str(await self.read("getGenesisHash"))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def send_transaction(self, signed: bytes) -> Signature:
        """Submit a serialized, signed transaction."""
        encoded = base64.b64encode(signed).decode("ascii")
        result = await self.read(
            "sendTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "preflightCommitment": self.commitment,
                    # Retries are owned by the executor, which refreshes the blockhash.
                    "maxRetries": 0,
                },
            ],
        )
        return Signature.from_string(result)

    async def simulate_transaction(self, signed: bytes) -> dict[str, Any]:
        encoded = base64.b64encode(signed).decode("ascii")
        result = await self.read(
            "simulateTransaction",
            [encoded, {"encoding": "base64", "commitment": self.commitment}],
        )
        return result["value"]

    async def request_airdrop(self, pubkey: Pubkey, lamports: int) -> Signature:
        result = await self.read(
            "requestAirdrop", [str(pubkey), lamports, {"commitment": self.commitment}]
        )
        return Signature.from_string(result)


class _Transient(Exception):
    """Internal marker for failures eligible for backoff."""
