"""Program deployment through an upgradeable loader buffer."""

from __future__ import annotations

from solders.pubkey import Pubkey

from scilla.core.constants import LOADER_BUFFER_METADATA_SIZE, PROGRAM_WRITE_CHUNK_SIZE
from scilla.core.errors import InvalidParameters
from scilla.models import AccountSummary, CreateBuffer, DeployFromBuffer, WriteBuffer
from scilla.programs import BPF_LOADER_UPGRADEABLE
from scilla.workflows.orchestrator import ChainSnapshot, Workflow, WorkflowStep

ELF_MAGIC = b"\x7fELF"


def chunk_program(
    data: bytes, chunk_size: int = PROGRAM_WRITE_CHUNK_SIZE
) -> list[tuple[int, bytes]]:
    """Split a program image into ``(offset, chunk)`` pairs for buffer writes."""
    return [(offset, data[offset : offset + chunk_size]) for offset in range(0, len(data), chunk_size)]


def _check_buffer(state: AccountSummary | None, buffer: Pubkey, program_len: int) -> str | None:
    if state is None:
        return f"buffer account {buffer} does not exist"
    if state.owner != BPF_LOADER_UPGRADEABLE:
        return f"buffer account {buffer} is owned by {state.owner}, not the upgradeable loader"
    expected = LOADER_BUFFER_METADATA_SIZE + program_len
    # Older nodes omit the account size.
    if state.space is not None and state.space != expected:
        return f"buffer account {buffer} holds {state.space} bytes, expected {expected}"
    return None


def create_buffer_step(intent: CreateBuffer, program: Pubkey) -> WorkflowStep:
    def precondition(snapshot: ChainSnapshot) -> str | None:
        if snapshot.account(program) is not None:
            return f"program account {program} already exists; upgrades are not supported"
        if snapshot.account(intent.buffer) is not None:
            return f"buffer account {intent.buffer} already exists"
        return None

    def postcondition(_before: ChainSnapshot, after: ChainSnapshot) -> str | None:
        return _check_buffer(after.account(intent.buffer), intent.buffer, intent.program_len)

    return WorkflowStep(
        name="create_buffer",
        intent=intent,
        accounts=(intent.buffer, program),
        precondition=precondition,
        postcondition=postcondition,
    )


def write_buffer_step(intent: WriteBuffer, index: int, program_len: int) -> WorkflowStep:
    def precondition(snapshot: ChainSnapshot) -> str | None:
        return _check_buffer(snapshot.account(intent.buffer), intent.buffer, program_len)

    return WorkflowStep(
        name=f"write_{index}",
        intent=intent,
        accounts=(intent.buffer,),
        precondition=precondition,
    )


def deploy_step(intent: DeployFromBuffer, program_len: int) -> WorkflowStep:
    def precondition(snapshot: ChainSnapshot) -> str | None:
        if snapshot.account(intent.program) is not None:
            return f"program account {intent.program} already exists"
        return _check_buffer(snapshot.account(intent.buffer), intent.buffer, program_len)

    def postcondition(_before: ChainSnapshot, after: ChainSnapshot) -> str | None:
        state = after.account(intent.program)
        if state is None:
            return "program account was not created"
        if state.owner != BPF_LOADER_UPGRADEABLE or not state.executable:
            return f"program account {intent.program} is not an executable upgradeable program"
        # The loader drains the buffer into the payer.
        if after.account(intent.buffer) is not None:
            return f"buffer account {intent.buffer} was not closed by the deploy"
        return None

    return WorkflowStep(
        name="deploy",
        intent=intent,
        accounts=(intent.program, intent.buffer),
        precondition=precondition,
        postcondition=postcondition,
    )


def program_deploy(
    *,
    payer: Pubkey,
    program: Pubkey,
    buffer: Pubkey,
    upgrade_authority: Pubkey,
    program_data: bytes,
    buffer_lamports: int,
    program_lamports: int,
    max_data_len: int = 0,
) -> Workflow:
    """Create buffer -> write every chunk -> deploy.

    Steps are named ``create_buffer``, ``write_1`` to ``write_N`` and
    ``deploy``. The upgrade authority also owns the buffer, since the loader
    only deploys buffers whose authority signs the deploy.

    Raises:
        InvalidParameters: If the binary is not an ELF image or does not fit
            in ``max_data_len``.
    """
    if not program_data.startswith(ELF_MAGIC):
        raise InvalidParameters("program binary is not an ELF shared object")
    program_len = len(program_data)
    data_len = max_data_len or program_len
    if data_len < program_len:
        raise InvalidParameters(
            f"max_data_len {data_len} is smaller than the {program_len} byte program"
        )

    create = CreateBuffer(
        payer=payer,
        buffer=buffer,
        authority=upgrade_authority,
        program_len=program_len,
        lamports=buffer_lamports,
    )
    writes = [
        write_buffer_step(
            WriteBuffer(buffer=buffer, authority=upgrade_authority, offset=offset, data=chunk),
            index,
            program_len,
        )
        for index, (offset, chunk) in enumerate(chunk_program(program_data), start=1)
    ]
    deploy = DeployFromBuffer(
        payer=payer,
        program=program,
        buffer=buffer,
        upgrade_authority=upgrade_authority,
        lamports=program_lamports,
        max_data_len=data_len,
    )
    return Workflow(
        name="program_deploy",
        steps=(
            create_buffer_step(create, program),
            *writes,
            deploy_step(deploy, program_len),
        ),
    )
