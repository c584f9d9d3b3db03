"""Tests for the workflow orchestrator."""

from __future__ import annotations

import struct
from unittest.mock import AsyncMock

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from scilla.core.config import Commitment
from scilla.core.errors import (
    ClusterRejected,
    Inconsistent,
    Indeterminate,
    PreconditionFailed,
    StepFailed,
)
from scilla.core.audit import AuditEntry, AuditTrail
from scilla.executor import TransactionExecutor
from scilla.models import (
    CreateStakeAccount,
    DeactivateStake,
    DelegateStake,
    SignatureStatus,
    TimedOut,
    Transfer,
    WithdrawStake,
)
from scilla.signer import KeypairSigner
from scilla.workflows import (
    LIFECYCLE_STEPS,
    Workflow,
    WorkflowOrchestrator,
    WorkflowStep,
    plan_for,
    stake_lifecycle,
)
from conftest import FakeClock, FakeCluster, make_stake


class RecordingSink:
    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    def write(self, entry: AuditEntry) -> None:
        self.entries.append(entry)


@pytest.fixture
def orchestrator(
    fake_cluster: FakeCluster, signer: KeypairSigner, clock: FakeClock
) -> WorkflowOrchestrator:
    executor = TransactionExecutor(
        fake_cluster,
        signer,
        poll_interval=1.0,
        confirm_timeout=3.0,
        sleep=clock.sleep,
        clock=clock,
    )
    return WorkflowOrchestrator(fake_cluster, executor)


def transfer_step(name: str, payer: Keypair, **kwargs: object) -> WorkflowStep:
    intent = Transfer(source=payer.pubkey(), destination=Pubkey.new_unique(), lamports=1_000)
    return WorkflowStep(name=name, intent=intent, **kwargs)


@pytest.mark.asyncio
async def test_runs_steps_in_order(
    orchestrator: WorkflowOrchestrator, fake_cluster: FakeCluster, payer: Keypair
) -> None:
    sink = RecordingSink()
    orchestrator.audit = AuditTrail(sink)
    workflow = Workflow(
        name="two_transfers",
        steps=(transfer_step("first", payer), transfer_step("second", payer)),
    )

    report = await orchestrator.run(workflow)

    assert report.workflow == "two_transfers"
    assert report.completed_steps == ["first", "second"]
    assert len(fake_cluster.sent) == 2
    assert [entry.fields["step"] for entry in sink.entries] == ["first", "second"]


@pytest.mark.asyncio
async def test_start_at_skips_earlier_steps(
    orchestrator: WorkflowOrchestrator, fake_cluster: FakeCluster, payer: Keypair
) -> None:
    workflow = Workflow(
        name="resume",
        steps=(transfer_step("first", payer), transfer_step("second", payer)),
    )

    report = await orchestrator.run(workflow, start_at=1)

    assert report.completed_steps == ["second"]
    assert len(fake_cluster.sent) == 1


@pytest.mark.asyncio
async def test_start_at_out_of_range(
    orchestrator: WorkflowOrchestrator, payer: Keypair
) -> None:
    workflow = Workflow(name="single", steps=(transfer_step("only", payer),))

    with pytest.raises(ValueError):
        await orchestrator.run(workflow, start_at=1)


@pytest.mark.asyncio
async def test_precondition_failure_stops_before_submission(
    orchestrator: WorkflowOrchestrator, fake_cluster: FakeCluster, payer: Keypair
) -> None:
    workflow = Workflow(
        name="guarded",
        steps=(transfer_step("blocked", payer, precondition=lambda _: "not yet"),),
    )

    with pytest.raises(PreconditionFailed) as exc_info:
        await orchestrator.run(workflow)

    assert exc_info.value.step == "blocked"
    assert exc_info.value.detail == "not yet"
    assert fake_cluster.sent == []


@pytest.mark.asyncio
async def test_timed_out_step_is_indeterminate(
    orchestrator: WorkflowOrchestrator, fake_cluster: FakeCluster, payer: Keypair
) -> None:
    """Test that an unknown outcome halts the workflow before later steps."""
    fake_cluster.statuses = [
        SignatureStatus(slot=1, confirmation_status=Commitment.PROCESSED)
    ]
    workflow = Workflow(
        name="halting",
        steps=(transfer_step("first", payer), transfer_step("second", payer)),
    )

    with pytest.raises(Indeterminate) as exc_info:
        await orchestrator.run(workflow)

    assert exc_info.value.step == "first"
    assert exc_info.value.signature == fake_cluster.sent[0].signatures[0]
    assert len(fake_cluster.sent) == 1


@pytest.mark.asyncio
async def test_interrupted_step_passes_fee_payer_and_halts(
    fake_cluster: FakeCluster, payer: Keypair
) -> None:
    signature = Signature.new_unique()
    executor = AsyncMock(spec=TransactionExecutor)
    executor.execute.return_value = TimedOut(signature=signature, interrupted=True)
    orchestrator = WorkflowOrchestrator(fake_cluster, executor)
    first = transfer_step("first", payer)
    workflow = Workflow(name="interrupted", steps=(first, transfer_step("second", payer)))

    with pytest.raises(Indeterminate) as exc_info:
        await orchestrator.run(workflow, fee_payer=payer.pubkey())

    assert exc_info.value.signature == signature
    executor.execute.assert_awaited_once_with(first.intent, payer.pubkey())


@pytest.mark.asyncio
async def test_failed_step_raises_step_failed(
    orchestrator: WorkflowOrchestrator, fake_cluster: FakeCluster, payer: Keypair
) -> None:
    fake_cluster.send_errors = [ClusterRejected(-32002, "insufficient funds")]
    workflow = Workflow(name="rejected", steps=(transfer_step("pay", payer),))

    with pytest.raises(StepFailed) as exc_info:
        await orchestrator.run(workflow)

    assert exc_info.value.reason == "insufficient funds"


@pytest.mark.asyncio
async def test_postcondition_violation_is_inconsistent(
    orchestrator: WorkflowOrchestrator, payer: Keypair
) -> None:
    workflow = Workflow(
        name="surprising",
        steps=(transfer_step("pay", payer, postcondition=lambda _b, _a: "balance unchanged"),),
    )

    with pytest.raises(Inconsistent) as exc_info:
        await orchestrator.run(workflow)

    assert exc_info.value.detail == "balance unchanged"


@pytest.mark.asyncio
async def test_unparseable_account_fails_precondition(
    orchestrator: WorkflowOrchestrator,
    fake_cluster: FakeCluster,
    payer: Keypair,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def _not_a_stake_account(pubkey: Pubkey) -> None:
        raise ValueError(f"{pubkey} is not a parsed stake account")

    monkeypatch.setattr(fake_cluster, "get_stake_account", _not_a_stake_account)
    workflow = Workflow(
        name="lookup",
        steps=(transfer_step("pay", payer, stake_accounts=(Pubkey.new_unique(),)),),
    )

    with pytest.raises(PreconditionFailed, match="not a parsed stake account"):
        await orchestrator.run(workflow)


@pytest.mark.asyncio
async def test_delegating_active_stake_to_another_validator_is_refused(
    orchestrator: WorkflowOrchestrator, fake_cluster: FakeCluster, payer: Keypair
) -> None:
    """Test that a stake already active elsewhere is never re-delegated."""
    stake = Pubkey.new_unique()
    current_validator = Pubkey.new_unique()
    fake_cluster.stake[stake] = make_stake(
        stake, payer.pubkey(), voter=current_validator, activation_epoch=90
    )
    intent = DelegateStake(
        stake_account=stake, vote_account=Pubkey.new_unique(), stake_authority=payer.pubkey()
    )

    with pytest.raises(PreconditionFailed) as exc_info:
        await orchestrator.run(plan_for(intent))

    assert f"already active with validator {current_validator}" in exc_info.value.detail
    assert fake_cluster.sent == []


@pytest.mark.asyncio
async def test_delegate_confirms_and_checks_new_state(
    orchestrator: WorkflowOrchestrator, fake_cluster: FakeCluster, payer: Keypair
) -> None:
    stake = Pubkey.new_unique()
    validator = Pubkey.new_unique()
    fake_cluster.stake[stake] = make_stake(stake, payer.pubkey())

    def _delegated() -> None:
        fake_cluster.stake[stake] = make_stake(
            stake, payer.pubkey(), voter=validator, activation_epoch=fake_cluster.epoch
        )

    fake_cluster.on_send = _delegated
    intent = DelegateStake(stake_account=stake, vote_account=validator, stake_authority=payer.pubkey())

    report = await orchestrator.run(plan_for(intent))

    assert report.workflow == "delegate_stake"
    assert report.completed_steps == ["delegate"]


@pytest.mark.asyncio
async def test_stake_lifecycle_resumes_across_epoch_boundaries(
    orchestrator: WorkflowOrchestrator,
    fake_cluster: FakeCluster,
    signer: KeypairSigner,
    payer: Keypair,
) -> None:
    """Test the full lifecycle, re-invoked after each epoch-boundary abort."""
    stake_keypair = Keypair()
    signer.add(stake_keypair)
    authority = payer.pubkey()
    stake = stake_keypair.pubkey()
    validator = Pubkey.new_unique()
    amount = 2_000_000_000

    workflow = stake_lifecycle(
        CreateStakeAccount(
            funder=authority,
            stake_account=stake,
            lamports=amount,
            staker=authority,
            withdrawer=authority,
        ),
        DelegateStake(stake_account=stake, vote_account=validator, stake_authority=authority),
        DeactivateStake(stake_account=stake, stake_authority=authority),
        WithdrawStake(
            stake_account=stake, recipient=authority, lamports=amount, withdraw_authority=authority
        ),
    )
    effects = [
        lambda: fake_cluster.stake.__setitem__(stake, make_stake(stake, authority, lamports=amount)),
        lambda: fake_cluster.stake.__setitem__(
            stake, make_stake(stake, authority, lamports=amount, voter=validator, activation_epoch=100)
        ),
        lambda: fake_cluster.stake.__setitem__(
            stake,
            make_stake(
                stake,
                authority,
                lamports=amount,
                voter=validator,
                activation_epoch=100,
                deactivation_epoch=101,
            ),
        ),
        lambda: fake_cluster.stake.pop(stake),
    ]
    fake_cluster.on_send = lambda: effects.pop(0)()

    with pytest.raises(PreconditionFailed) as first_abort:
        await orchestrator.run(workflow)
    assert first_abort.value.step == "deactivate"
    assert "activates after epoch 100" in first_abort.value.detail

    fake_cluster.epoch = 101
    with pytest.raises(PreconditionFailed) as second_abort:
        await orchestrator.run(workflow, start_at=workflow.index_of("deactivate"))
    assert second_abort.value.step == "withdraw"
    assert "deactivating until the end of epoch 101" in second_abort.value.detail

    fake_cluster.epoch = 102
    report = await orchestrator.run(workflow, start_at=workflow.index_of("withdraw"))

    assert report.completed_steps == ["withdraw"]
    assert stake not in fake_cluster.stake
    assert len(fake_cluster.sent) == 4
    assert tuple(step.name for step in workflow.steps) == LIFECYCLE_STEPS


@pytest.mark.asyncio
async def test_lifecycle_withdraw_includes_rewards(
    orchestrator: WorkflowOrchestrator,
    fake_cluster: FakeCluster,
    payer: Keypair,
) -> None:
    authority = payer.pubkey()
    stake = Pubkey.new_unique()
    amount = 2_000_000_000
    rewarded = amount + 500_000
    workflow = stake_lifecycle(
        CreateStakeAccount(
            funder=authority, stake_account=stake, lamports=amount, staker=authority, withdrawer=authority
        ),
        DelegateStake(stake_account=stake, vote_account=Pubkey.new_unique(), stake_authority=authority),
        DeactivateStake(stake_account=stake, stake_authority=authority),
        WithdrawStake(
            stake_account=stake, recipient=authority, lamports=amount, withdraw_authority=authority
        ),
    )
    fake_cluster.epoch = 102
    fake_cluster.stake[stake] = make_stake(
        stake,
        authority,
        lamports=rewarded,
        voter=Pubkey.new_unique(),
        activation_epoch=100,
        deactivation_epoch=101,
    )
    fake_cluster.on_send = lambda: fake_cluster.stake.pop(stake)

    report = await orchestrator.run(workflow, start_at=workflow.index_of("withdraw"))

    assert report.completed_steps == ["withdraw"]
    instruction = fake_cluster.sent[0].message.instructions[0]
    assert struct.unpack("<IQ", bytes(instruction.data)) == (4, rewarded)


def test_lifecycle_requires_a_single_stake_account() -> None:
    authority = Pubkey.new_unique()
    stake = Pubkey.new_unique()
    with pytest.raises(ValueError):
        stake_lifecycle(
            CreateStakeAccount(
                funder=authority,
                stake_account=stake,
                lamports=1,
                staker=authority,
                withdrawer=authority,
            ),
            DelegateStake(
                stake_account=stake, vote_account=Pubkey.new_unique(), stake_authority=authority
            ),
            DeactivateStake(stake_account=Pubkey.new_unique(), stake_authority=authority),
            WithdrawStake(
                stake_account=stake, recipient=authority, lamports=1, withdraw_authority=authority
            ),
        )


def test_plan_for_skips_plain_transfers(payer: Keypair) -> None:
    intent = Transfer(source=payer.pubkey(), destination=Pubkey.new_unique(), lamports=1)
    assert plan_for(intent) is None
