"""Pytest configuration for shared fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest
from loguru import logger
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from scilla.core.config import Commitment, ScillaConfig
from scilla.core.constants import ACTIVE_STAKE_EPOCH_BOUND, DEVNET_GENESIS_HASH
from scilla.models import (
    AccountSummary,
    Blockhash,
    EpochInfo,
    Lockup,
    SignatureStatus,
    StakeAccountState,
    VoteAccountState,
)
from scilla.signer import KeypairSigner


@pytest.fixture(scope="session", autouse=True)
def silence_loguru_handlers() -> None:
    """Route Loguru output to a no-op sink during tests to avoid closed stream errors."""
    logger.remove()
    logger.add(lambda _: None, catch=True)
    yield


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep configuration lookups away from the developer's real files."""
    for key in list(os.environ):
        if key.upper().startswith("SCILLA_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SCILLA_CONFIG_PATH", str(tmp_path / "scilla.toml"))
    monkeypatch.chdir(tmp_path)


class FakeClock:
    """Monotonic clock advanced only by the injected sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


class FakeCluster:
    """In-memory stand-in for ClusterClient.

    ``send_errors`` and ``statuses`` are consumed in order; the last status is
    repeated once the queue is down to one entry. ``on_send`` runs after each
    accepted submission so tests can apply the transaction's effect.
    """

    def __init__(self) -> None:
        self.epoch = 100
        self.slot = 4242
        self.stake: dict[Pubkey, StakeAccountState] = {}
        self.vote: dict[Pubkey, VoteAccountState] = {}
        self.accounts: dict[Pubkey, AccountSummary] = {}
        self.balances: dict[Pubkey, int] = {}
        self.rent_exempt_minimum = 2_282_880
        self.genesis_hash = DEVNET_GENESIS_HASH
        self.blockhash = Hash.new_unique()
        self.blockhash_errors: list[Exception] = []
        self.send_errors: list[Exception] = []
        self.statuses: list[SignatureStatus | Exception | None] = []
        self.airdrop_errors: list[Exception] = []
        self.on_send: Callable[[], None] | None = None
        self.sent: list[Transaction] = []
        self.calls: list[str] = []
        self.closed = False

    async def get_latest_blockhash(self) -> Blockhash:
        self.calls.append("getLatestBlockhash")
        if self.blockhash_errors:
            raise self.blockhash_errors.pop(0)
        return Blockhash(value=self.blockhash, last_valid_block_height=1_000)

    async def send_transaction(self, signed: bytes) -> Signature:
        self.calls.append("sendTransaction")
        transaction = Transaction.from_bytes(signed)
        self.sent.append(transaction)
        if self.send_errors:
            raise self.send_errors.pop(0)
        if self.on_send is not None:
            self.on_send()
        return transaction.signatures[0]

    async def request_airdrop(self, pubkey: Pubkey, lamports: int) -> Signature:
        self.calls.append("requestAirdrop")
        if self.airdrop_errors:
            raise self.airdrop_errors.pop(0)
        self.balances[pubkey] = self.balances.get(pubkey, 0) + lamports
        return Signature.new_unique()

    async def get_signature_status(self, signature: Signature) -> SignatureStatus | None:
        self.calls.append("getSignatureStatuses")
        if not self.statuses:
            return SignatureStatus(slot=self.slot, confirmation_status=Commitment.CONFIRMED)
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def get_epoch_info(self) -> EpochInfo:
        self.calls.append("getEpochInfo")
        return EpochInfo(
            epoch=self.epoch, slot_index=100, slots_in_epoch=432_000, absolute_slot=self.slot
        )

    async def get_stake_account(self, pubkey: Pubkey) -> StakeAccountState | None:
        self.calls.append("getAccountInfo")
        return self.stake.get(pubkey)

    async def get_vote_account(self, pubkey: Pubkey) -> VoteAccountState | None:
        self.calls.append("getAccountInfo")
        return self.vote.get(pubkey)

    async def get_account(self, pubkey: Pubkey) -> AccountSummary | None:
        self.calls.append("getAccountInfo")
        return self.accounts.get(pubkey)

    async def get_balance(self, pubkey: Pubkey) -> int:
        self.calls.append("getBalance")
        return self.balances.get(pubkey, 0)

    async def get_minimum_balance_for_rent_exemption(self, space: int) -> int:
        self.calls.append("getMinimumBalanceForRentExemption")
        return self.rent_exempt_minimum

    async def get_genesis_hash(self) -> str:
        self.calls.append("getGenesisHash")
        return self.genesis_hash

    async def aclose(self) -> None:
        self.closed = True


def make_stake(
    address: Pubkey,
    authority: Pubkey,
    *,
    lamports: int = 5_000_000_000,
    voter: Pubkey | None = None,
    activation_epoch: int | None = None,
    deactivation_epoch: int = ACTIVE_STAKE_EPOCH_BOUND,
    withdrawer: Pubkey | None = None,
    lockup: Lockup | None = None,
    rent_exempt_reserve: int = 2_282_880,
) -> StakeAccountState:
    delegated = voter is not None
    return StakeAccountState(
        address=address,
        lamports=lamports,
        kind="delegated" if delegated else "initialized",
        staker=authority,
        withdrawer=withdrawer or authority,
        lockup=lockup or Lockup(),
        rent_exempt_reserve=rent_exempt_reserve,
        voter=voter,
        delegated_stake=lamports - rent_exempt_reserve if delegated else 0,
        activation_epoch=activation_epoch if delegated else None,
        deactivation_epoch=deactivation_epoch if delegated else None,
    )


def make_vote(
    address: Pubkey,
    withdrawer: Pubkey,
    *,
    identity: Pubkey | None = None,
    voter: Pubkey | None = None,
    lamports: int = 30_000_000,
    commission: int = 5,
) -> VoteAccountState:
    return VoteAccountState(
        address=address,
        lamports=lamports,
        node_pubkey=identity or Pubkey.new_unique(),
        authorized_voter=voter or withdrawer,
        authorized_withdrawer=withdrawer,
        commission=commission,
    )


@pytest.fixture
def payer() -> Keypair:
    return Keypair()


@pytest.fixture
def signer(payer: Keypair) -> KeypairSigner:
    return KeypairSigner(payer)


@pytest.fixture
def fake_cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def devnet_config(tmp_path: Path) -> ScillaConfig:
    return ScillaConfig(
        rpc_url="devnet",
        keypair_path=tmp_path / "id.json",
        log_dir=tmp_path / "logs",
    )
