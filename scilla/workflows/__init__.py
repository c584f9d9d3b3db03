"""Multi-step workflows and the per-intent plan factory."""

from scilla.models import (
    AuthorizeVoter,
    AuthorizeWithdrawer,
    CreateStakeAccount,
    CreateVoteAccount,
    DeactivateStake,
    DelegateStake,
    Intent,
    MergeStake,
    SplitStake,
    WithdrawStake,
    WithdrawVote,
)
from scilla.workflows.orchestrator import (
    ChainSnapshot,
    StepResult,
    Workflow,
    WorkflowOrchestrator,
    WorkflowReport,
    WorkflowStep,
)
from scilla.workflows.program import (
    chunk_program,
    create_buffer_step,
    deploy_step,
    program_deploy,
    write_buffer_step,
)
from scilla.workflows.stake import (
    LIFECYCLE_STEPS,
    create_stake_step,
    deactivate_stake_step,
    delegate_stake_step,
    merge_stake_step,
    split_stake_step,
    stake_lifecycle,
    withdraw_stake_step,
)
from scilla.workflows.vote import (
    authorize_voter_step,
    authorize_withdrawer_step,
    create_vote_step,
    withdraw_vote_step,
)


def plan_for(intent: Intent) -> Workflow | None:
    """Return the single-step workflow guarding ``intent``.

    Intents that touch no stake or vote account state (transfers, airdrops
    and memos) have no plan and go straight to the executor. Program deploys
    need rent quotes first and are planned by the session with
    :func:`program_deploy`.
    """
    if isinstance(intent, CreateStakeAccount):
        step = create_stake_step(intent)
    elif isinstance(intent, DelegateStake):
        step = delegate_stake_step(intent)
    elif isinstance(intent, DeactivateStake):
        step = deactivate_stake_step(intent)
    elif isinstance(intent, WithdrawStake):
        step = withdraw_stake_step(intent)
    elif isinstance(intent, MergeStake):
        step = merge_stake_step(intent)
    elif isinstance(intent, SplitStake):
        step = split_stake_step(intent)
    elif isinstance(intent, CreateVoteAccount):
        step = create_vote_step(intent)
    elif isinstance(intent, AuthorizeVoter):
        step = authorize_voter_step(intent)
    elif isinstance(intent, AuthorizeWithdrawer):
        step = authorize_withdrawer_step(intent)
    elif isinstance(intent, WithdrawVote):
        step = withdraw_vote_step(intent)
    else:
        return None
    return Workflow(name=intent.kind, steps=(step,))


__all__ = [
    "ChainSnapshot",
    "LIFECYCLE_STEPS",
    "StepResult",
    "Workflow",
    "WorkflowOrchestrator",
    "WorkflowReport",
    "WorkflowStep",
    "authorize_voter_step",
    "authorize_withdrawer_step",
    "chunk_program",
    "create_buffer_step",
    "create_stake_step",
    "create_vote_step",
    "deactivate_stake_step",
    "delegate_stake_step",
    "deploy_step",
    "merge_stake_step",
    "plan_for",
    "program_deploy",
    "split_stake_step",
    "stake_lifecycle",
    "withdraw_stake_step",
    "withdraw_vote_step",
    "write_buffer_step",
]
