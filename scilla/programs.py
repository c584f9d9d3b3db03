"""Instruction encoders for the native stake, vote, memo and loader programs.

Instruction data follows the programs' bincode layout: a little-endian u32
variant index followed by the variant's fields. System program instructions
come straight from :mod:`solders.system_program`.
"""

from __future__ import annotations

import struct

from solders import sysvar
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM
from solders.system_program import (
    AllocateParams,
    AssignParams,
    CreateAccountParams,
    TransferParams,
    allocate,
    assign,
    create_account,
    transfer,
)

from scilla.core.constants import (
    BPF_LOADER_UPGRADEABLE_ID,
    LOADER_BUFFER_METADATA_SIZE,
    LOADER_PROGRAM_SIZE,
    MEMO_PROGRAM_ID,
    STAKE_CONFIG_ID,
    STAKE_PROGRAM_ID,
    STAKE_STATE_SPACE,
    VOTE_PROGRAM_ID,
    VOTE_STATE_SPACE,
)

STAKE_PROGRAM = Pubkey.from_string(STAKE_PROGRAM_ID)
STAKE_CONFIG = Pubkey.from_string(STAKE_CONFIG_ID)
VOTE_PROGRAM = Pubkey.from_string(VOTE_PROGRAM_ID)
MEMO_PROGRAM = Pubkey.from_string(MEMO_PROGRAM_ID)
BPF_LOADER_UPGRADEABLE = Pubkey.from_string(BPF_LOADER_UPGRADEABLE_ID)

SYSTEM_DEFAULT = Pubkey.default()

# StakeInstruction variants
_STAKE_INITIALIZE = 0
_STAKE_DELEGATE = 2
_STAKE_SPLIT = 3
_STAKE_WITHDRAW = 4
_STAKE_DEACTIVATE = 5
_STAKE_MERGE = 7

# VoteInstruction variants
_VOTE_INITIALIZE_ACCOUNT = 0
_VOTE_AUTHORIZE = 1
_VOTE_WITHDRAW = 3

VOTE_AUTHORIZE_VOTER = 0
VOTE_AUTHORIZE_WITHDRAWER = 1

# UpgradeableLoaderInstruction variants
_LOADER_INITIALIZE_BUFFER = 0
_LOADER_WRITE = 1
_LOADER_DEPLOY_WITH_MAX_DATA_LEN = 2


def _writable(pubkey: Pubkey, signer: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=signer, is_writable=True)


def _readonly(pubkey: Pubkey, signer: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=signer, is_writable=False)


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------


def system_transfer(source: Pubkey, destination: Pubkey, lamports: int) -> Instruction:
    return transfer(TransferParams(from_pubkey=source, to_pubkey=destination, lamports=lamports))


def system_create_account(
    funder: Pubkey, new_account: Pubkey, lamports: int, space: int, owner: Pubkey
) -> Instruction:
    return create_account(
        CreateAccountParams(
            from_pubkey=funder,
            to_pubkey=new_account,
            lamports=lamports,
            space=space,
            owner=owner,
        )
    )


# ---------------------------------------------------------------------------
# Stake
# ---------------------------------------------------------------------------


def stake_initialize(
    stake_account: Pubkey,
    staker: Pubkey,
    withdrawer: Pubkey,
    lockup_unix_timestamp: int = 0,
    lockup_epoch: int = 0,
    custodian: Pubkey | None = None,
) -> Instruction:
    data = (
        struct.pack("<I", _STAKE_INITIALIZE)
        + bytes(staker)
        + bytes(withdrawer)
        + struct.pack("<qQ", lockup_unix_timestamp, lockup_epoch)
        + bytes(custodian or SYSTEM_DEFAULT)
    )
    return Instruction(
        STAKE_PROGRAM,
        data,
        [_writable(stake_account), _readonly(sysvar.RENT)],
    )


def create_stake_account(
    funder: Pubkey,
    stake_account: Pubkey,
    lamports: int,
    staker: Pubkey,
    withdrawer: Pubkey,
    lockup_unix_timestamp: int = 0,
    lockup_epoch: int = 0,
    custodian: Pubkey | None = None,
) -> list[Instruction]:
    return [
        system_create_account(funder, stake_account, lamports, STAKE_STATE_SPACE, STAKE_PROGRAM),
        stake_initialize(
            stake_account, staker, withdrawer, lockup_unix_timestamp, lockup_epoch, custodian
        ),
    ]


def stake_delegate(stake_account: Pubkey, vote_account: Pubkey, authority: Pubkey) -> Instruction:
    return Instruction(
        STAKE_PROGRAM,
        struct.pack("<I", _STAKE_DELEGATE),
        [
            _writable(stake_account),
            _readonly(vote_account),
            _readonly(sysvar.CLOCK),
            _readonly(sysvar.STAKE_HISTORY),
            _readonly(STAKE_CONFIG),
            _readonly(authority, signer=True),
        ],
    )


def stake_deactivate(stake_account: Pubkey, authority: Pubkey) -> Instruction:
    return Instruction(
        STAKE_PROGRAM,
        struct.pack("<I", _STAKE_DEACTIVATE),
        [
            _writable(stake_account),
            _readonly(sysvar.CLOCK),
            _readonly(authority, signer=True),
        ],
    )


def stake_withdraw(
    stake_account: Pubkey, recipient: Pubkey, lamports: int, authority: Pubkey
) -> Instruction:
    return Instruction(
        STAKE_PROGRAM,
        struct.pack("<IQ", _STAKE_WITHDRAW, lamports),
        [
            _writable(stake_account),
            _writable(recipient),
            _readonly(sysvar.CLOCK),
            _readonly(sysvar.STAKE_HISTORY),
            _readonly(authority, signer=True),
        ],
    )


def stake_merge(destination: Pubkey, source: Pubkey, authority: Pubkey) -> Instruction:
    return Instruction(
        STAKE_PROGRAM,
        struct.pack("<I", _STAKE_MERGE),
        [
            _writable(destination),
            _writable(source),
            _readonly(sysvar.CLOCK),
            _readonly(sysvar.STAKE_HISTORY),
            _readonly(authority, signer=True),
        ],
    )


def split_stake(
    stake_account: Pubkey, split_account: Pubkey, lamports: int, authority: Pubkey
) -> list[Instruction]:
    """Allocate and assign the split account, then move ``lamports`` into it."""
    return [
        allocate(AllocateParams(pubkey=split_account, space=STAKE_STATE_SPACE)),
        assign(AssignParams(pubkey=split_account, owner=STAKE_PROGRAM)),
        Instruction(
            STAKE_PROGRAM,
            struct.pack("<IQ", _STAKE_SPLIT, lamports),
            [
                _writable(stake_account),
                _writable(split_account),
                _readonly(authority, signer=True),
            ],
        ),
    ]


# ---------------------------------------------------------------------------
# Vote
# ---------------------------------------------------------------------------


def vote_initialize_account(
    vote_account: Pubkey,
    identity: Pubkey,
    authorized_voter: Pubkey,
    authorized_withdrawer: Pubkey,
    commission: int,
) -> Instruction:
    data = (
        struct.pack("<I", _VOTE_INITIALIZE_ACCOUNT)
        + bytes(identity)
        + bytes(authorized_voter)
        + bytes(authorized_withdrawer)
        + struct.pack("<B", commission)
    )
    return Instruction(
        VOTE_PROGRAM,
        data,
        [
            _writable(vote_account),
            _readonly(sysvar.RENT),
            _readonly(sysvar.CLOCK),
            _readonly(identity, signer=True),
        ],
    )


def create_vote_account(
    funder: Pubkey,
    vote_account: Pubkey,
    identity: Pubkey,
    authorized_voter: Pubkey,
    authorized_withdrawer: Pubkey,
    commission: int,
    lamports: int,
) -> list[Instruction]:
    return [
        system_create_account(funder, vote_account, lamports, VOTE_STATE_SPACE, VOTE_PROGRAM),
        vote_initialize_account(
            vote_account, identity, authorized_voter, authorized_withdrawer, commission
        ),
    ]


def vote_authorize(
    vote_account: Pubkey, authority: Pubkey, new_authority: Pubkey, vote_authorize: int
) -> Instruction:
    data = (
        struct.pack("<I", _VOTE_AUTHORIZE) + bytes(new_authority) + struct.pack("<I", vote_authorize)
    )
    return Instruction(
        VOTE_PROGRAM,
        data,
        [
            _writable(vote_account),
            _readonly(sysvar.CLOCK),
            _readonly(authority, signer=True),
        ],
    )


def vote_withdraw(
    vote_account: Pubkey, recipient: Pubkey, lamports: int, authority: Pubkey
) -> Instruction:
    return Instruction(
        VOTE_PROGRAM,
        struct.pack("<IQ", _VOTE_WITHDRAW, lamports),
        [
            _writable(vote_account),
            _writable(recipient),
            _readonly(authority, signer=True),
        ],
    )


# ---------------------------------------------------------------------------
# Memo
# ---------------------------------------------------------------------------


def memo(author: Pubkey, text: str) -> Instruction:
    return Instruction(MEMO_PROGRAM, text.encode("utf-8"), [_readonly(author, signer=True)])


# ---------------------------------------------------------------------------
# Upgradeable BPF loader
# ---------------------------------------------------------------------------


def programdata_address(program: Pubkey) -> Pubkey:
    address, _bump = Pubkey.find_program_address([bytes(program)], BPF_LOADER_UPGRADEABLE)
    return address


def create_buffer(
    payer: Pubkey, buffer: Pubkey, authority: Pubkey, lamports: int, program_len: int
) -> list[Instruction]:
    return [
        system_create_account(
            payer,
            buffer,
            lamports,
            LOADER_BUFFER_METADATA_SIZE + program_len,
            BPF_LOADER_UPGRADEABLE,
        ),
        Instruction(
            BPF_LOADER_UPGRADEABLE,
            struct.pack("<I", _LOADER_INITIALIZE_BUFFER),
            [_writable(buffer), _readonly(authority)],
        ),
    ]


def write_buffer(buffer: Pubkey, authority: Pubkey, offset: int, chunk: bytes) -> Instruction:
    data = struct.pack("<IIQ", _LOADER_WRITE, offset, len(chunk)) + chunk
    return Instruction(
        BPF_LOADER_UPGRADEABLE,
        data,
        [_writable(buffer), _readonly(authority, signer=True)],
    )


def deploy_with_max_data_len(
    payer: Pubkey,
    program: Pubkey,
    buffer: Pubkey,
    authority: Pubkey,
    program_lamports: int,
    max_data_len: int,
) -> list[Instruction]:
    """Create the program account, then move the buffer into its programdata account."""
    return [
        system_create_account(
            payer, program, program_lamports, LOADER_PROGRAM_SIZE, BPF_LOADER_UPGRADEABLE
        ),
        Instruction(
            BPF_LOADER_UPGRADEABLE,
            struct.pack("<IQ", _LOADER_DEPLOY_WITH_MAX_DATA_LEN, max_data_len),
            [
                _writable(payer, signer=True),
                _writable(programdata_address(program)),
                _writable(program),
                _writable(buffer),
                _readonly(sysvar.RENT),
                _readonly(sysvar.CLOCK),
                _readonly(SYSTEM_PROGRAM),
                _readonly(authority, signer=True),
            ],
        ),
    ]
