"""Generic step runner for multi-transaction workflows."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from loguru import logger
from solders.pubkey import Pubkey

from scilla.cluster import ClusterClient
from scilla.core.audit import AuditTrail
from scilla.core.errors import (
    Inconsistent,
    Indeterminate,
    PreconditionFailed,
    StepFailed,
)
from scilla.executor import TransactionExecutor
from scilla.models import (
    AccountSummary,
    Confirmed,
    Failed,
    Intent,
    StakeAccountState,
    TimedOut,
    VoteAccountState,
)


@dataclass(frozen=True, slots=True)
class ChainSnapshot:
    """On-chain state read immediately before (or after) a step."""

    epoch: int
    stake: Mapping[Pubkey, StakeAccountState | None] = field(default_factory=dict)
    vote: Mapping[Pubkey, VoteAccountState | None] = field(default_factory=dict)
    accounts: Mapping[Pubkey, AccountSummary | None] = field(default_factory=dict)

    def stake_account(self, pubkey: Pubkey) -> StakeAccountState | None:
        return self.stake.get(pubkey)

    def vote_account(self, pubkey: Pubkey) -> VoteAccountState | None:
        return self.vote.get(pubkey)

    def account(self, pubkey: Pubkey) -> AccountSummary | None:
        return self.accounts.get(pubkey)


Precondition = Callable[[ChainSnapshot], str | None]
Postcondition = Callable[[ChainSnapshot, ChainSnapshot], str | None]
IntentFactory = Callable[[ChainSnapshot], Intent]


def _no_precondition(_snapshot: ChainSnapshot) -> str | None:
    return None


def _no_postcondition(_before: ChainSnapshot, _after: ChainSnapshot) -> str | None:
    return None


@dataclass(frozen=True, slots=True)
class WorkflowStep:
    """One stage of a workflow.

    ``precondition`` returns a failure detail, or ``None`` when the step may
    run. ``postcondition`` receives the snapshots taken before and after the
    confirmed transaction and follows the same convention.

    ``intent_factory``, when set, derives the submitted intent from the
    snapshot that passed the precondition; ``intent`` is then the template
    it starts from.
    """

    name: str
    intent: Intent
    stake_accounts: tuple[Pubkey, ...] = ()
    vote_accounts: tuple[Pubkey, ...] = ()
    accounts: tuple[Pubkey, ...] = ()
    precondition: Precondition = _no_precondition
    postcondition: Postcondition = _no_postcondition
    intent_factory: IntentFactory | None = None

    def intent_for(self, snapshot: ChainSnapshot) -> Intent:
        if self.intent_factory is None:
            return self.intent
        return self.intent_factory(snapshot)


@dataclass(frozen=True, slots=True)
class Workflow:
    name: str
    steps: tuple[WorkflowStep, ...]

    def index_of(self, step_name: str) -> int:
        for index, step in enumerate(self.steps):
            if step.name == step_name:
                return index
        raise KeyError(step_name)


@dataclass(frozen=True, slots=True)
class StepResult:
    step: str
    outcome: Confirmed


@dataclass(slots=True)
class WorkflowReport:
    workflow: str
    results: list[StepResult] = field(default_factory=list)

    @property
    def completed_steps(self) -> list[str]:
        return [result.step for result in self.results]


class WorkflowOrchestrator:
    """Run workflow steps in order against freshly read chain state.

    The orchestrator holds no state between runs. After an abort, callers
    resume by passing ``start_at`` with the index of the failed step; the
    preconditions then re-derive everything from the chain.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        executor: TransactionExecutor,
        audit: AuditTrail | None = None,
    ) -> None:
        self.cluster = cluster
        self.executor = executor
        self.audit = audit

    async def snapshot(self, step: WorkflowStep) -> ChainSnapshot:
        """Fetch current epoch and every account the step inspects."""
        epoch_info = await self.cluster.get_epoch_info()
        stake: dict[Pubkey, StakeAccountState | None] = {}
        for pubkey in step.stake_accounts:
            stake[pubkey] = await self.cluster.get_stake_account(pubkey)
        vote: dict[Pubkey, VoteAccountState | None] = {}
        for pubkey in step.vote_accounts:
            vote[pubkey] = await self.cluster.get_vote_account(pubkey)
        accounts: dict[Pubkey, AccountSummary | None] = {}
        for pubkey in step.accounts:
            accounts[pubkey] = await self.cluster.get_account(pubkey)
        return ChainSnapshot(epoch=epoch_info.epoch, stake=stake, vote=vote, accounts=accounts)

    async def run(
        self,
        workflow: Workflow,
        *,
        start_at: int = 0,
        fee_payer: Pubkey | None = None,
    ) -> WorkflowReport:
        """Execute ``workflow`` from step ``start_at``.

        Raises:
            PreconditionFailed: Fresh state does not allow the next step.
            StepFailed: The cluster rejected a step's transaction.
            Indeterminate: A step's outcome is unknown; later steps are not run.
            Inconsistent: A confirmed step did not produce the expected state.
        """
        if not 0 <= start_at < len(workflow.steps):
            raise ValueError(f"start_at must index one of {len(workflow.steps)} step(s)")

        report = WorkflowReport(workflow=workflow.name)
        total = len(workflow.steps)
        for index in range(start_at, total):
            step = workflow.steps[index]
            logger.info("Workflow {} step {}/{}: {}", workflow.name, index + 1, total, step.name)

            before = await self._read(step)
            detail = step.precondition(before)
            if detail is not None:
                logger.warning("Precondition for {} failed: {}", step.name, detail)
                raise PreconditionFailed(step.name, detail)

            outcome = await self.executor.execute(step.intent_for(before), fee_payer)
            if isinstance(outcome, TimedOut):
                logger.warning(
                    "Step {} outcome unknown (signature {}); stopping before later steps",
                    step.name,
                    outcome.signature,
                )
                raise Indeterminate(step.name, outcome.signature)
            if isinstance(outcome, Failed):
                raise StepFailed(step.name, outcome.reason)

            after = await self._read(step, after=True)
            violation = step.postcondition(before, after)
            if violation is not None:
                logger.error(
                    "Step {} confirmed in slot {} but postcondition failed: {}",
                    step.name,
                    outcome.slot,
                    violation,
                )
                raise Inconsistent(step.name, violation)

            report.results.append(StepResult(step=step.name, outcome=outcome))
            if self.audit is not None:
                self.audit.step_completed(
                    workflow.name, step.name, signature=outcome.signature, slot=outcome.slot
                )

        logger.info("Workflow {} completed {} step(s)", workflow.name, len(report.results))
        return report

    async def _read(self, step: WorkflowStep, *, after: bool = False) -> ChainSnapshot:
        try:
            return await self.snapshot(step)
        except ValueError as exc:
            # An address given for a stake or vote account holds something else.
            if after:
                raise Inconsistent(step.name, str(exc)) from exc
            raise PreconditionFailed(step.name, str(exc)) from exc
