"""Tests for the buffer-based program deploy workflow."""

from __future__ import annotations

import pytest
from solders.pubkey import Pubkey

from scilla import programs
from scilla.core.errors import InvalidParameters
from scilla.models import AccountSummary, CreateBuffer, DeployFromBuffer, WriteBuffer
from scilla.workflows import ChainSnapshot, chunk_program, program_deploy

EPOCH = 100
ELF = b"\x7fELF" + bytes(range(256)) * 8


def loader_account(address: Pubkey, space: int | None, *, executable: bool = False) -> AccountSummary:
    return AccountSummary(
        address=address,
        lamports=1_000_000,
        owner=programs.BPF_LOADER_UPGRADEABLE,
        executable=executable,
        space=space,
    )


def accounts(*present: AccountSummary, missing: tuple[Pubkey, ...] = ()) -> ChainSnapshot:
    states: dict[Pubkey, AccountSummary | None] = {state.address: state for state in present}
    for pubkey in missing:
        states[pubkey] = None
    return ChainSnapshot(epoch=EPOCH, accounts=states)


@pytest.fixture
def keys() -> dict[str, Pubkey]:
    return {name: Pubkey.new_unique() for name in ("payer", "program", "buffer", "authority")}


def deploy(keys: dict[str, Pubkey], data: bytes = ELF, max_data_len: int = 0):
    return program_deploy(
        payer=keys["payer"],
        program=keys["program"],
        buffer=keys["buffer"],
        upgrade_authority=keys["authority"],
        program_data=data,
        buffer_lamports=15_000_000,
        program_lamports=1_141_440,
        max_data_len=max_data_len,
    )


def test_chunk_program_covers_every_byte() -> None:
    data = bytes(2_000)

    chunks = chunk_program(data)

    assert [(offset, len(chunk)) for offset, chunk in chunks] == [(0, 900), (900, 900), (1800, 200)]
    assert b"".join(chunk for _, chunk in chunks) == data
    assert chunk_program(b"") == []


def test_step_order_and_intents(keys: dict[str, Pubkey]) -> None:
    workflow = deploy(keys)

    assert workflow.name == "program_deploy"
    assert [step.name for step in workflow.steps] == [
        "create_buffer",
        "write_1",
        "write_2",
        "write_3",
        "deploy",
    ]
    create = workflow.steps[0].intent
    assert isinstance(create, CreateBuffer)
    assert create.authority == keys["authority"]
    assert create.program_len == len(ELF)
    writes = [step.intent for step in workflow.steps[1:-1]]
    assert all(isinstance(intent, WriteBuffer) for intent in writes)
    assert [intent.offset for intent in writes] == [0, 900, 1800]
    assert b"".join(intent.data for intent in writes) == ELF
    final = workflow.steps[-1].intent
    assert isinstance(final, DeployFromBuffer)
    assert final.max_data_len == len(ELF)
    assert final.lamports == 1_141_440


def test_larger_max_data_len_is_kept(keys: dict[str, Pubkey]) -> None:
    final = deploy(keys, max_data_len=10_000).steps[-1].intent

    assert final.max_data_len == 10_000


def test_max_data_len_smaller_than_program_is_refused(keys: dict[str, Pubkey]) -> None:
    with pytest.raises(InvalidParameters, match="smaller than"):
        deploy(keys, max_data_len=100)


def test_non_elf_binary_is_refused(keys: dict[str, Pubkey]) -> None:
    with pytest.raises(InvalidParameters, match="not an ELF"):
        deploy(keys, data=b"#!/bin/sh\necho hi\n")


def test_create_buffer_refuses_existing_program(keys: dict[str, Pubkey]) -> None:
    step = deploy(keys).steps[0]
    program = loader_account(keys["program"], 36, executable=True)

    detail = step.precondition(accounts(program, missing=(keys["buffer"],)))

    assert detail is not None
    assert "upgrades are not supported" in detail
    assert step.precondition(accounts(missing=(keys["program"], keys["buffer"]))) is None


def test_create_buffer_postcondition_checks_owner_and_size(keys: dict[str, Pubkey]) -> None:
    step = deploy(keys).steps[0]
    before = accounts(missing=(keys["program"], keys["buffer"]))
    buffer = keys["buffer"]

    assert step.postcondition(before, accounts(loader_account(buffer, 37 + len(ELF)))) is None
    assert step.postcondition(before, accounts(loader_account(buffer, None))) is None
    assert "expected" in step.postcondition(before, accounts(loader_account(buffer, len(ELF))))
    foreign = AccountSummary(address=buffer, lamports=1, owner=Pubkey.new_unique(), space=37 + len(ELF))
    assert "not the upgradeable loader" in step.postcondition(before, accounts(foreign))
    assert "does not exist" in step.postcondition(before, accounts(missing=(buffer,)))


def test_write_requires_the_buffer(keys: dict[str, Pubkey]) -> None:
    step = deploy(keys).steps[1]

    assert step.accounts == (keys["buffer"],)
    assert "does not exist" in step.precondition(accounts(missing=(keys["buffer"],)))
    assert step.precondition(accounts(loader_account(keys["buffer"], 37 + len(ELF)))) is None


def test_deploy_postcondition_expects_executable_program_and_closed_buffer(
    keys: dict[str, Pubkey],
) -> None:
    step = deploy(keys).steps[-1]
    buffer = loader_account(keys["buffer"], 37 + len(ELF))
    before = accounts(buffer, missing=(keys["program"],))
    program = loader_account(keys["program"], 36, executable=True)

    assert step.precondition(before) is None
    assert step.postcondition(before, accounts(program, missing=(keys["buffer"],))) is None
    assert "not closed" in step.postcondition(before, accounts(program, buffer))
    assert "was not created" in step.postcondition(
        before, accounts(missing=(keys["program"], keys["buffer"]))
    )
    inert = loader_account(keys["program"], 36)
    assert "not an executable" in step.postcondition(before, accounts(inert, missing=(keys["buffer"],)))
