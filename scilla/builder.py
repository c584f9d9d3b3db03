"""Translate intents into unsigned transactions."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import Message
from solders.pubkey import Pubkey

from scilla import programs
from scilla.core.constants import MEMO_CHUNK_SIZE, PROGRAM_WRITE_CHUNK_SIZE
from scilla.core.errors import InvalidParameters
from scilla.models import (
    Airdrop,
    AuthorizeVoter,
    AuthorizeWithdrawer,
    CreateBuffer,
    CreateStakeAccount,
    CreateVoteAccount,
    DeactivateStake,
    DelegateStake,
    DeployFromBuffer,
    DeployProgram,
    Intent,
    Memo,
    MergeStake,
    SplitStake,
    Transfer,
    WithdrawStake,
    WithdrawVote,
    WriteBuffer,
)


# Field widths of the native program instruction layouts.
U32_MAX = 2**32 - 1
U64_MAX = 2**64 - 1
I64_MAX = 2**63 - 1


@dataclass(frozen=True, slots=True)
class UnsignedTransaction:
    """Ordered instructions bound to a fee payer and a recent blockhash."""

    instructions: tuple[Instruction, ...]
    fee_payer: Pubkey
    blockhash: Hash

    def message(self) -> Message:
        return Message.new_with_blockhash(list(self.instructions), self.fee_payer, self.blockhash)

    @property
    def required_signers(self) -> list[Pubkey]:
        """Signer keys in the order the compiled message expects signatures."""
        message = self.message()
        count = message.header.num_required_signatures
        return list(message.account_keys[:count])


class TransactionBuilder:
    """Builds unsigned transactions from intents.

    Building is deterministic: the same intent, fee payer and blockhash always
    compile to byte-identical messages.
    """

    def validate(self, intent: Intent) -> None:
        """Check intent-local constraints without touching the network.

        Raises:
            InvalidParameters: If the intent cannot produce a valid transaction.
        """
        if isinstance(intent, Transfer):
            _require_positive("lamports", intent.lamports)
            _require_distinct("source", intent.source, "destination", intent.destination)
        elif isinstance(intent, Airdrop):
            _require_positive("lamports", intent.lamports)
        elif isinstance(intent, CreateStakeAccount):
            _require_positive("lamports", intent.lamports)
            _require_distinct("funder", intent.funder, "stake_account", intent.stake_account)
            if intent.lockup_epoch < 0 or intent.lockup_unix_timestamp < 0:
                raise InvalidParameters("lockup epoch and unix timestamp cannot be negative")
            _require_u64("lockup_epoch", intent.lockup_epoch)
            if intent.lockup_unix_timestamp > I64_MAX:
                raise InvalidParameters(
                    f"lockup_unix_timestamp exceeds {I64_MAX}, got {intent.lockup_unix_timestamp}"
                )
        elif isinstance(intent, (DelegateStake, DeactivateStake)):
            pass
        elif isinstance(intent, WithdrawStake):
            _require_positive("lamports", intent.lamports)
        elif isinstance(intent, MergeStake):
            _require_distinct("source", intent.source, "destination", intent.destination)
        elif isinstance(intent, SplitStake):
            _require_positive("lamports", intent.lamports)
            _require_distinct(
                "stake_account", intent.stake_account, "split_account", intent.split_account
            )
            if intent.prefund_lamports < 0:
                raise InvalidParameters("prefund_lamports cannot be negative")
            _require_u64("prefund_lamports", intent.prefund_lamports)
            if intent.prefund_lamports and intent.funder is None:
                raise InvalidParameters("a funder is required to prefund the split account")
        elif isinstance(intent, CreateVoteAccount):
            _require_positive("lamports", intent.lamports)
            _require_distinct("funder", intent.funder, "vote_account", intent.vote_account)
            if not 0 <= intent.commission <= 100:
                raise InvalidParameters(
                    f"commission must be between 0 and 100, got {intent.commission}"
                )
        elif isinstance(intent, (AuthorizeVoter, AuthorizeWithdrawer)):
            pass
        elif isinstance(intent, WithdrawVote):
            _require_positive("lamports", intent.lamports)
        elif isinstance(intent, Memo):
            encoded = intent.text.encode("utf-8")
            if not encoded:
                raise InvalidParameters("memo text cannot be empty")
            if len(encoded) > MEMO_CHUNK_SIZE:
                raise InvalidParameters(
                    f"memo is {len(encoded)} bytes, limit is {MEMO_CHUNK_SIZE}"
                )
        elif isinstance(intent, DeployProgram):
            _require_distinct("payer", intent.payer, "program", intent.program)
            if intent.max_data_len < 0:
                raise InvalidParameters("max_data_len cannot be negative")
            _require_u64("max_data_len", intent.max_data_len)
        elif isinstance(intent, CreateBuffer):
            _require_positive("lamports", intent.lamports)
            _require_positive("program_len", intent.program_len)
            _require_distinct("payer", intent.payer, "buffer", intent.buffer)
        elif isinstance(intent, WriteBuffer):
            if not intent.data:
                raise InvalidParameters("buffer write carries no data")
            if len(intent.data) > PROGRAM_WRITE_CHUNK_SIZE:
                raise InvalidParameters(
                    f"buffer write is {len(intent.data)} bytes, limit is {PROGRAM_WRITE_CHUNK_SIZE}"
                )
            if not 0 <= intent.offset <= U32_MAX:
                raise InvalidParameters(f"offset must fit in a u32, got {intent.offset}")
        elif isinstance(intent, DeployFromBuffer):
            _require_positive("lamports", intent.lamports)
            _require_positive("max_data_len", intent.max_data_len)
            _require_distinct("program", intent.program, "buffer", intent.buffer)
            _require_distinct("payer", intent.payer, "program", intent.program)
        else:
            raise InvalidParameters(f"unsupported intent: {type(intent).__name__}")

    def instructions(self, intent: Intent) -> list[Instruction]:
        """Return the intent's instructions in their fixed order."""
        self.validate(intent)

        if isinstance(intent, Transfer):
            return [programs.system_transfer(intent.source, intent.destination, intent.lamports)]
        if isinstance(intent, CreateStakeAccount):
            return programs.create_stake_account(
                intent.funder,
                intent.stake_account,
                intent.lamports,
                intent.staker,
                intent.withdrawer,
                lockup_unix_timestamp=intent.lockup_unix_timestamp,
                lockup_epoch=intent.lockup_epoch,
                custodian=intent.custodian,
            )
        if isinstance(intent, DelegateStake):
            return [
                programs.stake_delegate(
                    intent.stake_account, intent.vote_account, intent.stake_authority
                )
            ]
        if isinstance(intent, DeactivateStake):
            return [programs.stake_deactivate(intent.stake_account, intent.stake_authority)]
        if isinstance(intent, WithdrawStake):
            return [
                programs.stake_withdraw(
                    intent.stake_account,
                    intent.recipient,
                    intent.lamports,
                    intent.withdraw_authority,
                )
            ]
        if isinstance(intent, MergeStake):
            return [programs.stake_merge(intent.destination, intent.source, intent.stake_authority)]
        if isinstance(intent, SplitStake):
            instructions = programs.split_stake(
                intent.stake_account, intent.split_account, intent.lamports, intent.stake_authority
            )
            if intent.prefund_lamports and intent.funder is not None:
                prefund = programs.system_transfer(
                    intent.funder, intent.split_account, intent.prefund_lamports
                )
                instructions.insert(0, prefund)
            return instructions
        if isinstance(intent, CreateVoteAccount):
            return programs.create_vote_account(
                intent.funder,
                intent.vote_account,
                intent.identity,
                intent.authorized_voter,
                intent.authorized_withdrawer,
                intent.commission,
                intent.lamports,
            )
        if isinstance(intent, AuthorizeVoter):
            return [
                programs.vote_authorize(
                    intent.vote_account,
                    intent.authority,
                    intent.new_voter,
                    programs.VOTE_AUTHORIZE_VOTER,
                )
            ]
        if isinstance(intent, AuthorizeWithdrawer):
            return [
                programs.vote_authorize(
                    intent.vote_account,
                    intent.authority,
                    intent.new_withdrawer,
                    programs.VOTE_AUTHORIZE_WITHDRAWER,
                )
            ]
        if isinstance(intent, WithdrawVote):
            return [
                programs.vote_withdraw(
                    intent.vote_account,
                    intent.recipient,
                    intent.lamports,
                    intent.withdraw_authority,
                )
            ]
        if isinstance(intent, Memo):
            return [programs.memo(intent.author, intent.text)]
        if isinstance(intent, CreateBuffer):
            return programs.create_buffer(
                intent.payer, intent.buffer, intent.authority, intent.lamports, intent.program_len
            )
        if isinstance(intent, WriteBuffer):
            return [
                programs.write_buffer(intent.buffer, intent.authority, intent.offset, intent.data)
            ]
        if isinstance(intent, DeployFromBuffer):
            return programs.deploy_with_max_data_len(
                intent.payer,
                intent.program,
                intent.buffer,
                intent.upgrade_authority,
                intent.lamports,
                intent.max_data_len,
            )
        if isinstance(intent, DeployProgram):
            raise InvalidParameters("program deploys run as a buffer workflow, not one transaction")
        if isinstance(intent, Airdrop):
            raise InvalidParameters("airdrops are requested from the faucet, not built")
        raise InvalidParameters(f"unsupported intent: {type(intent).__name__}")

    def build(self, intent: Intent, fee_payer: Pubkey, blockhash: Hash) -> UnsignedTransaction:
        instructions = self.instructions(intent)
        logger.debug(
            "Built {} with {} instruction(s), fee payer {}",
            intent.kind,
            len(instructions),
            fee_payer,
        )
        return UnsignedTransaction(
            instructions=tuple(instructions), fee_payer=fee_payer, blockhash=blockhash
        )


def _require_positive(name: str, value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise InvalidParameters(f"{name} must be a positive integer, got {value!r}")
    _require_u64(name, value)


def _require_u64(name: str, value: int) -> None:
    if value > U64_MAX:
        raise InvalidParameters(f"{name} exceeds the u64 maximum of {U64_MAX}, got {value}")


def _require_distinct(left_name: str, left: Pubkey, right_name: str, right: Pubkey) -> None:
    if left == right:
        raise InvalidParameters(f"{left_name} and {right_name} must be different accounts")
