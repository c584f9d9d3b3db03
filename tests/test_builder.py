"""Tests for intent validation and transaction building."""

from __future__ import annotations

import struct
from pathlib import Path

import pytest
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import Transaction

from scilla import programs
from scilla.builder import TransactionBuilder
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
    Memo,
    MergeStake,
    SplitStake,
    Transfer,
    WithdrawStake,
    WithdrawVote,
    WriteBuffer,
)


@pytest.fixture
def builder() -> TransactionBuilder:
    return TransactionBuilder()


def test_transfer_is_deterministic(builder: TransactionBuilder) -> None:
    """Same intent, payer and blockhash compile to identical message bytes."""
    source = Pubkey.new_unique()
    intent = Transfer(source=source, destination=Pubkey.new_unique(), lamports=500_000_000)
    blockhash = Hash.new_unique()

    first = builder.build(intent, source, blockhash)
    second = builder.build(intent, source, blockhash)

    assert bytes(first.message()) == bytes(second.message())
    assert first.required_signers == [source]


@pytest.mark.parametrize("lamports", [0, -1, -500_000_000])
def test_non_positive_amounts_fail_validation(builder: TransactionBuilder, lamports: int) -> None:
    intent = Transfer(source=Pubkey.new_unique(), destination=Pubkey.new_unique(), lamports=lamports)

    with pytest.raises(InvalidParameters, match="positive"):
        builder.validate(intent)


def test_bool_amount_is_rejected(builder: TransactionBuilder) -> None:
    intent = Transfer(source=Pubkey.new_unique(), destination=Pubkey.new_unique(), lamports=True)
    with pytest.raises(InvalidParameters):
        builder.validate(intent)


def test_self_transfer_is_rejected(builder: TransactionBuilder) -> None:
    account = Pubkey.new_unique()
    with pytest.raises(InvalidParameters, match="different"):
        builder.validate(Transfer(source=account, destination=account, lamports=1))


def test_merge_requires_distinct_accounts(builder: TransactionBuilder) -> None:
    account = Pubkey.new_unique()
    intent = MergeStake(destination=account, source=account, stake_authority=Pubkey.new_unique())
    with pytest.raises(InvalidParameters):
        builder.validate(intent)


def test_commission_range(builder: TransactionBuilder) -> None:
    intent = CreateVoteAccount(
        funder=Pubkey.new_unique(),
        vote_account=Pubkey.new_unique(),
        identity=Pubkey.new_unique(),
        authorized_voter=Pubkey.new_unique(),
        authorized_withdrawer=Pubkey.new_unique(),
        commission=101,
        lamports=27_074_400,
    )
    with pytest.raises(InvalidParameters, match="commission"):
        builder.validate(intent)


def test_negative_lockup_rejected(builder: TransactionBuilder) -> None:
    authority = Pubkey.new_unique()
    intent = CreateStakeAccount(
        funder=authority,
        stake_account=Pubkey.new_unique(),
        lamports=1_000_000_000,
        staker=authority,
        withdrawer=authority,
        lockup_epoch=-1,
    )
    with pytest.raises(InvalidParameters, match="lockup"):
        builder.validate(intent)


def test_memo_limits(builder: TransactionBuilder) -> None:
    author = Pubkey.new_unique()
    with pytest.raises(InvalidParameters, match="empty"):
        builder.validate(Memo(author=author, text=""))
    with pytest.raises(InvalidParameters, match="limit"):
        builder.validate(Memo(author=author, text="x" * 901))


@pytest.mark.parametrize("lamports", [2**64, 20_000_000_000 * 10**9])
def test_amounts_beyond_u64_fail_validation(builder: TransactionBuilder, lamports: int) -> None:
    intent = Transfer(source=Pubkey.new_unique(), destination=Pubkey.new_unique(), lamports=lamports)

    with pytest.raises(InvalidParameters, match="u64"):
        builder.build(intent, intent.source, Hash.new_unique())


def test_largest_u64_amount_builds(builder: TransactionBuilder) -> None:
    source = Pubkey.new_unique()
    intent = Transfer(source=source, destination=Pubkey.new_unique(), lamports=2**64 - 1)

    assert len(builder.build(intent, source, Hash.new_unique()).instructions) == 1


@pytest.mark.parametrize(
    "field,value,match",
    [
        ("lockup_epoch", 2**64, "lockup_epoch"),
        ("lockup_unix_timestamp", 2**63, "lockup_unix_timestamp"),
    ],
)
def test_lockup_beyond_wire_width_rejected(
    builder: TransactionBuilder, field: str, value: int, match: str
) -> None:
    authority = Pubkey.new_unique()
    intent = CreateStakeAccount(
        funder=authority,
        stake_account=Pubkey.new_unique(),
        lamports=1_000_000_000,
        staker=authority,
        withdrawer=authority,
        **{field: value},
    )
    with pytest.raises(InvalidParameters, match=match):
        builder.validate(intent)


def test_split_prefund_beyond_u64_rejected(builder: TransactionBuilder) -> None:
    authority = Pubkey.new_unique()
    intent = SplitStake(
        stake_account=Pubkey.new_unique(),
        split_account=Pubkey.new_unique(),
        lamports=1_000_000_000,
        stake_authority=authority,
        prefund_lamports=2**64,
        funder=authority,
    )
    with pytest.raises(InvalidParameters, match="prefund_lamports"):
        builder.validate(intent)
    builder.validate(Memo(author=author, text="x" * 900))


def test_airdrop_is_not_buildable(builder: TransactionBuilder) -> None:
    intent = Airdrop(recipient=Pubkey.new_unique(), lamports=1_000_000_000)
    builder.validate(intent)
    with pytest.raises(InvalidParameters, match="faucet"):
        builder.build(intent, intent.recipient, Hash.new_unique())


def test_create_stake_account_layout(builder: TransactionBuilder) -> None:
    funder = Pubkey.new_unique()
    stake_account = Pubkey.new_unique()
    intent = CreateStakeAccount(
        funder=funder,
        stake_account=stake_account,
        lamports=2_000_000_000,
        staker=funder,
        withdrawer=funder,
    )

    create, initialize = builder.instructions(intent)

    assert create.program_id == SYSTEM_PROGRAM_ID
    assert initialize.program_id == programs.STAKE_PROGRAM
    assert struct.unpack_from("<I", initialize.data)[0] == 0
    assert initialize.data[4:36] == bytes(funder)
    assert initialize.data[36:68] == bytes(funder)
    assert len(initialize.data) == 4 + 32 + 32 + 16 + 32
    assert initialize.accounts[0].pubkey == stake_account

    unsigned = builder.build(intent, funder, Hash.new_unique())
    assert set(unsigned.required_signers) == {funder, stake_account}


def test_stake_instruction_variants(builder: TransactionBuilder) -> None:
    authority = Pubkey.new_unique()
    stake = Pubkey.new_unique()
    vote = Pubkey.new_unique()

    (delegate,) = builder.instructions(
        DelegateStake(stake_account=stake, vote_account=vote, stake_authority=authority)
    )
    (deactivate,) = builder.instructions(DeactivateStake(stake_account=stake, stake_authority=authority))
    (withdraw,) = builder.instructions(
        WithdrawStake(
            stake_account=stake, recipient=authority, lamports=42, withdraw_authority=authority
        )
    )
    (merge,) = builder.instructions(
        MergeStake(destination=stake, source=Pubkey.new_unique(), stake_authority=authority)
    )

    assert delegate.data == struct.pack("<I", 2)
    assert [meta.pubkey for meta in delegate.accounts][:2] == [stake, vote]
    assert delegate.accounts[-1].is_signer
    assert deactivate.data == struct.pack("<I", 5)
    assert withdraw.data == struct.pack("<IQ", 4, 42)
    assert merge.data == struct.pack("<I", 7)


def test_split_order_with_prefund(builder: TransactionBuilder) -> None:
    authority = Pubkey.new_unique()
    split_account = Pubkey.new_unique()
    intent = SplitStake(
        stake_account=Pubkey.new_unique(),
        split_account=split_account,
        lamports=1_000_000_000,
        stake_authority=authority,
        prefund_lamports=2_282_880,
        funder=authority,
    )

    prefund, allocate, assign, split = builder.instructions(intent)

    assert prefund.program_id == SYSTEM_PROGRAM_ID
    assert allocate.program_id == SYSTEM_PROGRAM_ID
    assert assign.program_id == SYSTEM_PROGRAM_ID
    assert split.program_id == programs.STAKE_PROGRAM
    assert split.data == struct.pack("<IQ", 3, 1_000_000_000)


def test_split_prefund_requires_funder(builder: TransactionBuilder) -> None:
    intent = SplitStake(
        stake_account=Pubkey.new_unique(),
        split_account=Pubkey.new_unique(),
        lamports=1,
        stake_authority=Pubkey.new_unique(),
        prefund_lamports=10,
    )
    with pytest.raises(InvalidParameters, match="funder"):
        builder.validate(intent)


def test_vote_instructions(builder: TransactionBuilder) -> None:
    vote = Pubkey.new_unique()
    authority = Pubkey.new_unique()
    new_key = Pubkey.new_unique()

    (voter,) = builder.instructions(
        AuthorizeVoter(vote_account=vote, authority=authority, new_voter=new_key)
    )
    (withdrawer,) = builder.instructions(
        AuthorizeWithdrawer(vote_account=vote, authority=authority, new_withdrawer=new_key)
    )
    (withdraw,) = builder.instructions(
        WithdrawVote(vote_account=vote, recipient=authority, lamports=9, withdraw_authority=authority)
    )

    assert voter.program_id == programs.VOTE_PROGRAM
    assert voter.data == struct.pack("<I", 1) + bytes(new_key) + struct.pack("<I", 0)
    assert withdrawer.data == struct.pack("<I", 1) + bytes(new_key) + struct.pack("<I", 1)
    assert withdraw.data == struct.pack("<IQ", 3, 9)


def test_create_vote_account_requires_identity_signature(builder: TransactionBuilder) -> None:
    funder = Pubkey.new_unique()
    vote = Pubkey.new_unique()
    identity = Pubkey.new_unique()
    intent = CreateVoteAccount(
        funder=funder,
        vote_account=vote,
        identity=identity,
        authorized_voter=funder,
        authorized_withdrawer=funder,
        commission=10,
        lamports=27_074_400,
    )

    unsigned = builder.build(intent, funder, Hash.new_unique())

    assert set(unsigned.required_signers) == {funder, vote, identity}
    create, initialize = unsigned.instructions
    assert initialize.data[-1] == 10


def test_memo_instruction(builder: TransactionBuilder) -> None:
    author = Pubkey.new_unique()
    (instruction,) = builder.instructions(Memo(author=author, text="gm ☀"))
    assert instruction.program_id == programs.MEMO_PROGRAM
    assert instruction.data == "gm ☀".encode()
    assert instruction.accounts[0].is_signer


def test_create_buffer_layout(builder: TransactionBuilder) -> None:
    payer = Pubkey.new_unique()
    buffer = Pubkey.new_unique()
    intent = CreateBuffer(
        payer=payer, buffer=buffer, authority=payer, program_len=2_000, lamports=14_810_880
    )

    unsigned = builder.build(intent, payer, Hash.new_unique())
    create, initialize = unsigned.instructions

    assert create.program_id == SYSTEM_PROGRAM_ID
    assert struct.unpack_from("<IQQ", create.data) == (0, 14_810_880, 37 + 2_000)
    assert create.data[20:52] == bytes(programs.BPF_LOADER_UPGRADEABLE)
    assert initialize.program_id == programs.BPF_LOADER_UPGRADEABLE
    assert initialize.data == struct.pack("<I", 0)
    assert [meta.pubkey for meta in initialize.accounts] == [buffer, payer]
    assert not initialize.accounts[1].is_signer
    assert set(unsigned.required_signers) == {payer, buffer}


def test_full_write_chunk_fits_in_a_packet(builder: TransactionBuilder) -> None:
    """Test that a maximal buffer write still serializes under 1232 bytes."""
    authority = Pubkey.new_unique()
    buffer = Pubkey.new_unique()
    chunk = bytes(range(256)) * 3 + bytes(132)
    intent = WriteBuffer(buffer=buffer, authority=authority, offset=1_800, data=chunk)

    unsigned = builder.build(intent, authority, Hash.new_unique())
    (write,) = unsigned.instructions

    assert write.data == struct.pack("<IIQ", 1, 1_800, 900) + chunk
    assert write.accounts[1].is_signer
    assert len(bytes(Transaction.new_unsigned(unsigned.message()))) <= 1232


@pytest.mark.parametrize(
    "offset,data,match",
    [
        (0, b"", "no data"),
        (0, bytes(901), "limit is 900"),
        (-1, b"\x01", "u32"),
        (2**32, b"\x01", "u32"),
    ],
)
def test_buffer_write_limits(
    builder: TransactionBuilder, offset: int, data: bytes, match: str
) -> None:
    intent = WriteBuffer(
        buffer=Pubkey.new_unique(), authority=Pubkey.new_unique(), offset=offset, data=data
    )
    with pytest.raises(InvalidParameters, match=match):
        builder.validate(intent)


def test_deploy_from_buffer_layout(builder: TransactionBuilder) -> None:
    payer = Pubkey.new_unique()
    program = Pubkey.new_unique()
    buffer = Pubkey.new_unique()
    authority = Pubkey.new_unique()
    intent = DeployFromBuffer(
        payer=payer,
        program=program,
        buffer=buffer,
        upgrade_authority=authority,
        lamports=1_141_440,
        max_data_len=4_096,
    )

    unsigned = builder.build(intent, payer, Hash.new_unique())
    create, deploy = unsigned.instructions

    assert struct.unpack_from("<IQQ", create.data) == (0, 1_141_440, 36)
    assert deploy.data == struct.pack("<IQ", 2, 4_096)
    assert [meta.pubkey for meta in deploy.accounts][:4] == [
        payer,
        programs.programdata_address(program),
        program,
        buffer,
    ]
    assert deploy.accounts[-1].pubkey == authority
    assert deploy.accounts[-1].is_signer
    assert set(unsigned.required_signers) == {payer, program, authority}


def test_program_deploy_is_not_one_transaction(builder: TransactionBuilder) -> None:
    payer = Pubkey.new_unique()
    intent = DeployProgram(
        payer=payer,
        program=Pubkey.new_unique(),
        program_path=Path("hello.so"),
        upgrade_authority=payer,
    )

    builder.validate(intent)
    with pytest.raises(InvalidParameters, match="buffer workflow"):
        builder.build(intent, payer, Hash.new_unique())
    with pytest.raises(InvalidParameters, match="different"):
        builder.validate(DeployProgram(payer, payer, Path("hello.so"), payer))
