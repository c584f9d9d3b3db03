"""Domain models: intents, transaction outcomes and on-chain snapshots."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature

from scilla.core.config import Commitment
from scilla.core.constants import ACTIVE_STAKE_EPOCH_BOUND

# ---------------------------------------------------------------------------
# Intents
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Transfer:
    """Move lamports between two system accounts."""

    kind: ClassVar[str] = "transfer"

    source: Pubkey
    destination: Pubkey
    lamports: int


@dataclass(frozen=True, slots=True)
class Airdrop:
    """Request faucet lamports on devnet/testnet."""

    kind: ClassVar[str] = "airdrop"

    recipient: Pubkey
    lamports: int


@dataclass(frozen=True, slots=True)
class CreateStakeAccount:
    """Create and initialize a stake account funded by ``funder``."""

    kind: ClassVar[str] = "create_stake_account"

    funder: Pubkey
    stake_account: Pubkey
    lamports: int
    staker: Pubkey
    withdrawer: Pubkey
    lockup_epoch: int = 0
    lockup_unix_timestamp: int = 0
    custodian: Pubkey | None = None


@dataclass(frozen=True, slots=True)
class DelegateStake:
    kind: ClassVar[str] = "delegate_stake"

    stake_account: Pubkey
    vote_account: Pubkey
    stake_authority: Pubkey


@dataclass(frozen=True, slots=True)
class DeactivateStake:
    kind: ClassVar[str] = "deactivate_stake"

    stake_account: Pubkey
    stake_authority: Pubkey


@dataclass(frozen=True, slots=True)
class WithdrawStake:
    kind: ClassVar[str] = "withdraw_stake"

    stake_account: Pubkey
    recipient: Pubkey
    lamports: int
    withdraw_authority: Pubkey


@dataclass(frozen=True, slots=True)
class MergeStake:
    """Merge ``source`` into ``destination``; the source account is closed."""

    kind: ClassVar[str] = "merge_stake"

    destination: Pubkey
    source: Pubkey
    stake_authority: Pubkey


@dataclass(frozen=True, slots=True)
class SplitStake:
    """Move ``lamports`` from ``stake_account`` into the new ``split_account``.

    When ``prefund_lamports`` is set, ``funder`` first transfers that amount
    to the split account so it is rent exempt before the split executes.
    """

    kind: ClassVar[str] = "split_stake"

    stake_account: Pubkey
    split_account: Pubkey
    lamports: int
    stake_authority: Pubkey
    prefund_lamports: int = 0
    funder: Pubkey | None = None


@dataclass(frozen=True, slots=True)
class CreateVoteAccount:
    kind: ClassVar[str] = "create_vote_account"

    funder: Pubkey
    vote_account: Pubkey
    identity: Pubkey
    authorized_voter: Pubkey
    authorized_withdrawer: Pubkey
    commission: int
    lamports: int


@dataclass(frozen=True, slots=True)
class AuthorizeVoter:
    kind: ClassVar[str] = "authorize_voter"

    vote_account: Pubkey
    authority: Pubkey
    new_voter: Pubkey


@dataclass(frozen=True, slots=True)
class AuthorizeWithdrawer:
    kind: ClassVar[str] = "authorize_withdrawer"

    vote_account: Pubkey
    authority: Pubkey
    new_withdrawer: Pubkey


@dataclass(frozen=True, slots=True)
class WithdrawVote:
    kind: ClassVar[str] = "withdraw_vote"

    vote_account: Pubkey
    recipient: Pubkey
    lamports: int
    withdraw_authority: Pubkey


@dataclass(frozen=True, slots=True)
class Memo:
    kind: ClassVar[str] = "memo"

    author: Pubkey
    text: str


@dataclass(frozen=True, slots=True)
class DeployProgram:
    """Deploy the program binary at ``program_path`` under the ``program`` address.

    Runs as a workflow: a buffer account is created and filled chunk by
    chunk, then the upgradeable loader deploys from it. ``max_data_len`` of
    zero reserves exactly the binary's size.
    """

    kind: ClassVar[str] = "deploy_program"

    payer: Pubkey
    program: Pubkey
    program_path: Path
    upgrade_authority: Pubkey
    max_data_len: int = 0


@dataclass(frozen=True, slots=True)
class CreateBuffer:
    kind: ClassVar[str] = "create_buffer"

    payer: Pubkey
    buffer: Pubkey
    authority: Pubkey
    program_len: int
    lamports: int


@dataclass(frozen=True, slots=True)
class WriteBuffer:
    """Write ``data`` into ``buffer`` at byte ``offset`` of the program image."""

    kind: ClassVar[str] = "write_buffer"

    buffer: Pubkey
    authority: Pubkey
    offset: int
    data: bytes


@dataclass(frozen=True, slots=True)
class DeployFromBuffer:
    kind: ClassVar[str] = "deploy_from_buffer"

    payer: Pubkey
    program: Pubkey
    buffer: Pubkey
    upgrade_authority: Pubkey
    lamports: int
    max_data_len: int


Intent = (
    Transfer
    | Airdrop
    | CreateStakeAccount
    | DelegateStake
    | DeactivateStake
    | WithdrawStake
    | MergeStake
    | SplitStake
    | CreateVoteAccount
    | AuthorizeVoter
    | AuthorizeWithdrawer
    | WithdrawVote
    | Memo
    | DeployProgram
    | CreateBuffer
    | WriteBuffer
    | DeployFromBuffer
)

# ---------------------------------------------------------------------------
# Transaction outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Confirmed:
    """The transaction reached the session's commitment level."""

    status: ClassVar[str] = "confirmed"

    slot: int
    signature: Signature


@dataclass(frozen=True, slots=True)
class Failed:
    """The cluster refused or failed the transaction; nothing landed."""

    status: ClassVar[str] = "failed"

    reason: str
    signature: Signature | None = None


@dataclass(frozen=True, slots=True)
class TimedOut:
    """The outcome is unknown; the transaction may still land."""

    status: ClassVar[str] = "timed_out"

    signature: Signature | None = None
    interrupted: bool = False


TransactionOutcome = Confirmed | Failed | TimedOut

# ---------------------------------------------------------------------------
# Cluster reads
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Blockhash:
    value: Hash
    last_valid_block_height: int


@dataclass(frozen=True, slots=True)
class SignatureStatus:
    """Entry of a ``getSignatureStatuses`` response."""

    slot: int
    confirmation_status: Commitment | None
    err: Any = None
    confirmations: int | None = None

    @classmethod
    def from_rpc(cls, payload: dict[str, Any]) -> SignatureStatus:
        raw_status = payload.get("confirmationStatus")
        return cls(
            slot=int(payload.get("slot", 0)),
            confirmation_status=Commitment(raw_status) if raw_status else None,
            err=payload.get("err"),
            confirmations=payload.get("confirmations"),
        )


@dataclass(frozen=True, slots=True)
class EpochInfo:
    epoch: int
    slot_index: int
    slots_in_epoch: int
    absolute_slot: int

    @classmethod
    def from_rpc(cls, payload: dict[str, Any]) -> EpochInfo:
        return cls(
            epoch=int(payload["epoch"]),
            slot_index=int(payload.get("slotIndex", 0)),
            slots_in_epoch=int(payload.get("slotsInEpoch", 0)),
            absolute_slot=int(payload.get("absoluteSlot", 0)),
        )


class StakeActivation(str, Enum):
    """Activation status of a stake account relative to the current epoch."""

    INACTIVE = "inactive"
    ACTIVATING = "activating"
    ACTIVE = "active"
    DEACTIVATING = "deactivating"


@dataclass(frozen=True, slots=True)
class Lockup:
    unix_timestamp: int = 0
    epoch: int = 0
    custodian: Pubkey | None = None

    def in_force(self, current_epoch: int, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return self.epoch > current_epoch or self.unix_timestamp > now


@dataclass(frozen=True, slots=True)
class StakeAccountState:
    """Snapshot of a stake account as parsed by the RPC ``jsonParsed`` encoding."""

    address: Pubkey
    lamports: int
    kind: str
    staker: Pubkey | None = None
    withdrawer: Pubkey | None = None
    lockup: Lockup = Lockup()
    rent_exempt_reserve: int = 0
    voter: Pubkey | None = None
    delegated_stake: int = 0
    activation_epoch: int | None = None
    deactivation_epoch: int | None = None

    @classmethod
    def from_rpc(cls, address: Pubkey, account: dict[str, Any]) -> StakeAccountState:
        data = account.get("data")
        parsed = data.get("parsed") if isinstance(data, dict) else None
        if not parsed:
            raise ValueError(f"{address} is not a parsed stake account")
        info = parsed.get("info") or {}
        meta = info.get("meta") or {}
        authorized = meta.get("authorized") or {}
        raw_lockup = meta.get("lockup") or {}
        delegation = (info.get("stake") or {}).get("delegation") or {}

        custodian = raw_lockup.get("custodian")
        lockup = Lockup(
            unix_timestamp=int(raw_lockup.get("unixTimestamp", 0)),
            epoch=int(raw_lockup.get("epoch", 0)),
            custodian=_pubkey_or_none(custodian),
        )
        return cls(
            address=address,
            lamports=int(account.get("lamports", 0)),
            kind=str(parsed.get("type", "uninitialized")),
            staker=_pubkey_or_none(authorized.get("staker")),
            withdrawer=_pubkey_or_none(authorized.get("withdrawer")),
            lockup=lockup,
            rent_exempt_reserve=int(meta.get("rentExemptReserve", 0)),
            voter=_pubkey_or_none(delegation.get("voter")),
            delegated_stake=int(delegation.get("stake", 0)),
            activation_epoch=_int_or_none(delegation.get("activationEpoch")),
            deactivation_epoch=_int_or_none(delegation.get("deactivationEpoch")),
        )

    @property
    def is_delegated(self) -> bool:
        return self.kind == "delegated" and self.voter is not None

    def activation(self, current_epoch: int) -> StakeActivation:
        """Derive the activation status for ``current_epoch``.

        Warmup and cooldown are treated as completing at the next epoch
        boundary.
        """
        if not self.is_delegated or self.activation_epoch is None:
            return StakeActivation.INACTIVE
        deactivation = self.deactivation_epoch
        if deactivation is not None and deactivation != ACTIVE_STAKE_EPOCH_BOUND:
            if current_epoch > deactivation:
                return StakeActivation.INACTIVE
            return StakeActivation.DEACTIVATING
        if self.activation_epoch >= current_epoch:
            return StakeActivation.ACTIVATING
        return StakeActivation.ACTIVE


@dataclass(frozen=True, slots=True)
class AccountSummary:
    """Owner, balance and size of an arbitrary account."""

    address: Pubkey
    lamports: int
    owner: Pubkey
    executable: bool = False
    space: int | None = None

    @classmethod
    def from_rpc(cls, address: Pubkey, account: dict[str, Any]) -> AccountSummary:
        space = account.get("space")
        return cls(
            address=address,
            lamports=int(account.get("lamports", 0)),
            owner=Pubkey.from_string(account["owner"]),
            executable=bool(account.get("executable", False)),
            space=None if space is None else int(space),
        )


@dataclass(frozen=True, slots=True)
class VoteAccountState:
    address: Pubkey
    lamports: int
    node_pubkey: Pubkey
    authorized_voter: Pubkey | None
    authorized_withdrawer: Pubkey
    commission: int

    @classmethod
    def from_rpc(cls, address: Pubkey, account: dict[str, Any]) -> VoteAccountState:
        data = account.get("data")
        parsed = data.get("parsed") if isinstance(data, dict) else None
        if not parsed:
            raise ValueError(f"{address} is not a parsed vote account")
        info = parsed.get("info") or {}
        voters = info.get("authorizedVoters") or []
        # The latest entry is the voter for the newest epoch.
        latest = max(voters, key=lambda item: int(item.get("epoch", 0)), default=None)
        return cls(
            address=address,
            lamports=int(account.get("lamports", 0)),
            node_pubkey=Pubkey.from_string(info["nodePubkey"]),
            authorized_voter=_pubkey_or_none(latest.get("authorizedVoter")) if latest else None,
            authorized_withdrawer=Pubkey.from_string(info["authorizedWithdrawer"]),
            commission=int(info.get("commission", 0)),
        )


def _pubkey_or_none(value: object) -> Pubkey | None:
    if not value:
        return None
    return Pubkey.from_string(str(value))


def _int_or_none(value: object) -> int | None:
    if value is None:
        return None
    return int(value)
