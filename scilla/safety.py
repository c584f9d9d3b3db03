"""Cluster safety guards and intent validation."""

from typing import NoReturn

from loguru import logger

from scilla.core.config import ScillaConfig
from scilla.core.constants import MAINNET_GENESIS_HASH
from scilla.core.errors import GuardError
from scilla.models import (
    Airdrop,
    CreateBuffer,
    CreateStakeAccount,
    CreateVoteAccount,
    DeployFromBuffer,
    Intent,
    SplitStake,
    Transfer,
    WithdrawStake,
    WithdrawVote,
)


def moved_lamports(intent: Intent) -> int:
    """Lamports an intent moves out of an operator-controlled account."""
    if isinstance(intent, SplitStake):
        return intent.lamports + intent.prefund_lamports
    if isinstance(
        intent,
        (
            Transfer,
            CreateStakeAccount,
            CreateVoteAccount,
            WithdrawStake,
            WithdrawVote,
            CreateBuffer,
            DeployFromBuffer,
        ),
    ):
        return intent.lamports
    return 0


class ClusterGuard:
    """Guards against accidental mainnet operations.

    Transactions against mainnet are only allowed after the operator has
    explicitly acknowledged that real funds are at risk. Faucet requests are
    refused on mainnet, and an optional per-intent lamport cap applies on
    every cluster.

    Until the cluster reports its genesis hash the guard judges by URL, and
    any endpoint not known to serve a test cluster is treated as mainnet.
    """

    def __init__(self, config: ScillaConfig) -> None:
        self.config = config
        self.genesis_hash: str | None = None
        self._mainnet_acknowledged = False

    @property
    def is_mainnet(self) -> bool:
        if self.genesis_hash is not None:
            return self.genesis_hash == MAINNET_GENESIS_HASH
        return self.config.endpoint.is_mainnet

    def identify(self, genesis_hash: str) -> None:
        """Pin the cluster identity to the genesis hash it reported."""
        self.genesis_hash = genesis_hash
        logger.info(
            "Cluster {} has genesis {} ({})",
            self.config.rpc_url,
            genesis_hash,
            "mainnet" if self.is_mainnet else "not mainnet",
        )

    def acknowledge_mainnet(self) -> None:
        """Acknowledge mainnet operation after user confirmation."""
        if self.is_mainnet:
            self._mainnet_acknowledged = True
            logger.warning("Mainnet operation acknowledged - real funds at risk")
        else:
            logger.info("Non-mainnet cluster {} - no acknowledgement needed", self.config.rpc_url)

    def check_intent(self, intent: Intent) -> None:
        """Validate an intent against the session's safety settings.

        Raises:
            GuardError: If the intent is not allowed on this cluster.
        """
        if isinstance(intent, Airdrop):
            if self.is_mainnet:
                self._raise_guard_error("Airdrops are only available on devnet and testnet")
            return

        if self.is_mainnet and not self._mainnet_acknowledged:
            self._raise_guard_error("Mainnet transactions must be explicitly acknowledged")

        cap = self.config.max_transaction_lamports
        amount = moved_lamports(intent)
        if cap is not None and amount > cap:
            raise GuardError(
                f"{intent.kind} moves {amount} lamports, above the configured cap of {cap}"
            )

    def _raise_guard_error(self, message: str) -> NoReturn:
        error_msg = (
            f"{message}\n"
            f"Cluster: {self.config.rpc_url}\n"
            "Switch SCILLA_RPC_URL to devnet/testnet, or acknowledge mainnet when prompted"
        )
        logger.error(error_msg)
        raise GuardError(error_msg)
