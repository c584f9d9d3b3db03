"""Explicit session context wiring the engine's collaborators together."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger
from solders.pubkey import Pubkey
from solders.signature import Signature

from scilla.builder import TransactionBuilder
from scilla.cluster import ClusterClient
from scilla.core.audit import AuditTrail
from scilla.core.config import ScillaConfig
from scilla.core.constants import (
    LOADER_BUFFER_METADATA_SIZE,
    LOADER_PROGRAM_SIZE,
    STAKE_STATE_SPACE,
)
from scilla.core.errors import (
    ClusterRejected,
    ClusterUnavailable,
    Inconsistent,
    Indeterminate,
    InvalidParameter,
    MissingParameter,
    PreconditionFailed,
    ScillaError,
    StepFailed,
)
from scilla.executor import TransactionExecutor
from scilla.models import (
    Confirmed,
    CreateStakeAccount,
    DeactivateStake,
    DelegateStake,
    DeployProgram,
    EpochInfo,
    Failed,
    Intent,
    SignatureStatus,
    SplitStake,
    StakeAccountState,
    TimedOut,
    TransactionOutcome,
    VoteAccountState,
    WithdrawStake,
)
from scilla.resolver import CommandResolver, parse_pubkey
from scilla.safety import ClusterGuard
from scilla.signer import KeypairSigner
from scilla.workflows import (
    Workflow,
    WorkflowOrchestrator,
    WorkflowReport,
    plan_for,
    program_deploy,
    stake_lifecycle,
)


@dataclass(slots=True)
class CommandResult:
    """What a command produced: a single outcome or a workflow report."""

    intent: Intent
    outcome: TransactionOutcome | None = None
    report: WorkflowReport | None = None


class Session:
    """Holds every collaborator for one operator session.

    Nothing here is global; the CLI builds one session per invocation and
    passes it explicitly.
    """

    def __init__(
        self,
        config: ScillaConfig,
        cluster: ClusterClient,
        signer: KeypairSigner,
        *,
        builder: TransactionBuilder | None = None,
        guard: ClusterGuard | None = None,
        audit: AuditTrail | None = None,
        executor: TransactionExecutor | None = None,
    ) -> None:
        self.config = config
        self.cluster = cluster
        self.signer = signer
        self.builder = builder or TransactionBuilder()
        self.guard = guard or ClusterGuard(config)
        self.audit = audit or AuditTrail.for_session(config.audit_log)
        self.executor = executor or TransactionExecutor.from_config(
            config,
            cluster,
            signer,
            self.builder,
            guard=self.guard,
            audit=self.audit,
        )
        self.orchestrator = WorkflowOrchestrator(cluster, self.executor, self.audit)
        self.resolver = CommandResolver(signer.default, load_keypair=signer.load)

    @classmethod
    def from_config(
        cls, config: ScillaConfig, *, http_client: httpx.AsyncClient | None = None
    ) -> Session:
        """Load the session keypair and connect to the configured cluster.

        Raises:
            SignerIOFailure: If the session keypair cannot be read.
        """
        signer = KeypairSigner.from_path(config.keypair_path)
        cluster = ClusterClient.from_config(config, http_client=http_client)
        logger.info(
            "Session {} on {} ({})",
            signer.default,
            config.rpc_url,
            config.commitment_level.value,
        )
        return cls(config, cluster, signer)

    @property
    def pubkey(self) -> Pubkey:
        return self.signer.default

    async def aclose(self) -> None:
        await self.cluster.aclose()

    async def __aenter__(self) -> Session:
        await self.identify_cluster()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def identify_cluster(self) -> None:
        """Pin the mainnet guard to the genesis hash the cluster reports."""
        try:
            genesis_hash = await self.cluster.get_genesis_hash()
        except (ClusterRejected, ClusterUnavailable) as exc:
            logger.warning(
                "Could not identify cluster {}: {}; judging by URL", self.config.rpc_url, exc
            )
            return
        self.guard.identify(genesis_hash)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def run_command(
        self, menu_path: tuple[str, ...], params: Mapping[str, str]
    ) -> CommandResult:
        """Resolve a menu selection and carry it out.

        Stake and vote intents run as single-step workflows so their
        preconditions are checked against fresh chain state. Other intents go
        straight to the executor.
        """
        intent = self.resolver.resolve(menu_path, params)
        return await self.run_intent(intent)

    async def run_intent(self, intent: Intent) -> CommandResult:
        if isinstance(intent, DeployProgram):
            workflow = await self.deploy_workflow(intent)
            report = await self.orchestrator.run(workflow, fee_payer=self.pubkey)
            return CommandResult(intent=intent, report=report)
        intent = await self._enrich(intent)
        workflow = plan_for(intent)
        if workflow is None:
            outcome = await self.executor.execute(intent, self.pubkey)
            return CommandResult(intent=intent, outcome=outcome)
        report = await self.orchestrator.run(workflow, fee_payer=self.pubkey)
        return CommandResult(intent=intent, report=report)

    async def run_stake_lifecycle(
        self, params: Mapping[str, str], *, start_at: int | str = 0
    ) -> WorkflowReport:
        """Run create, delegate, deactivate and withdraw for one stake account.

        ``params`` takes ``stake_account`` (keypair file or loaded pubkey),
        ``vote_account`` and ``amount`` in SOL. ``start_at`` is a step index or
        name, used to resume after an epoch-boundary precondition failure.
        """
        workflow = self.lifecycle_workflow(params)
        index = workflow.index_of(start_at) if isinstance(start_at, str) else start_at
        return await self.orchestrator.run(workflow, start_at=index, fee_payer=self.pubkey)

    def lifecycle_workflow(self, params: Mapping[str, str]) -> Workflow:
        """Plan the lifecycle; the final withdrawal closes the account.

        The withdraw amount is re-read from the chain when that step runs, so
        rewards earned while delegated are included.
        """
        create = self.resolver.resolve(("Stake", "Create"), params)
        if not isinstance(create, CreateStakeAccount):
            raise TypeError(f"expected a stake account creation, got {create.kind}")
        raw_vote = params.get("vote_account")
        if not raw_vote:
            raise MissingParameter("vote_account")
        raw_recipient = params.get("recipient")
        recipient = parse_pubkey("recipient", raw_recipient) if raw_recipient else self.pubkey
        return stake_lifecycle(
            create,
            DelegateStake(
                stake_account=create.stake_account,
                vote_account=parse_pubkey("vote_account", raw_vote),
                stake_authority=create.staker,
            ),
            DeactivateStake(stake_account=create.stake_account, stake_authority=create.staker),
            WithdrawStake(
                stake_account=create.stake_account,
                recipient=recipient,
                lamports=create.lamports,
                withdraw_authority=create.withdrawer,
            ),
        )

    async def deploy_workflow(self, intent: DeployProgram) -> Workflow:
        """Read the binary, quote rent and plan the buffered deploy.

        The buffer gets a throwaway keypair held by the session signer.

        Raises:
            InvalidParameter: If the program file cannot be read.
            InvalidParameters: If the binary or sizes are unusable.
        """
        self.builder.validate(intent)
        try:
            program_data = intent.program_path.read_bytes()
        except OSError as exc:
            raise InvalidParameter("program_file", exc.strerror or str(exc)) from exc
        buffer_rent = await self.cluster.get_minimum_balance_for_rent_exemption(
            LOADER_BUFFER_METADATA_SIZE + len(program_data)
        )
        program_rent = await self.cluster.get_minimum_balance_for_rent_exemption(
            LOADER_PROGRAM_SIZE
        )
        buffer = self.signer.ephemeral()
        logger.info(
            "Deploying {} ({} bytes) through buffer {}",
            intent.program,
            len(program_data),
            buffer,
        )
        return program_deploy(
            payer=intent.payer,
            program=intent.program,
            buffer=buffer,
            upgrade_authority=intent.upgrade_authority,
            program_data=program_data,
            buffer_lamports=buffer_rent,
            program_lamports=program_rent,
            max_data_len=intent.max_data_len,
        )

    async def _enrich(self, intent: Intent) -> Intent:
        # A split target must be rent exempt before the stake program accepts it.
        if isinstance(intent, SplitStake) and not intent.prefund_lamports:
            reserve = await self.cluster.get_minimum_balance_for_rent_exemption(STAKE_STATE_SPACE)
            return dataclasses.replace(intent, prefund_lamports=reserve, funder=self.pubkey)
        return intent

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    async def balance(self, pubkey: Pubkey | None = None) -> int:
        return await self.cluster.get_balance(pubkey or self.pubkey)

    async def epoch_info(self) -> EpochInfo:
        return await self.cluster.get_epoch_info()

    async def stake_account(self, pubkey: Pubkey) -> StakeAccountState | None:
        return await self.cluster.get_stake_account(pubkey)

    async def vote_account(self, pubkey: Pubkey) -> VoteAccountState | None:
        return await self.cluster.get_vote_account(pubkey)

    async def signature_status(self, signature: Signature) -> SignatureStatus | None:
        return await self.cluster.get_signature_status(signature)


def describe_outcome(outcome: TransactionOutcome) -> str:
    if isinstance(outcome, Confirmed):
        return f"Confirmed in slot {outcome.slot}: {outcome.signature}"
    if isinstance(outcome, Failed):
        suffix = f" (signature {outcome.signature})" if outcome.signature else ""
        return f"Failed: {outcome.reason}{suffix}"
    if isinstance(outcome, TimedOut):
        lead = "Interrupted" if outcome.interrupted else "Timed out"
        if outcome.signature is None:
            return f"{lead}: outcome unknown"
        return (
            f"{lead}: outcome unknown for {outcome.signature}. "
            "Re-check the signature before re-executing."
        )
    raise TypeError(f"unknown outcome: {outcome!r}")


def describe_error(error: ScillaError) -> str:
    """Render an engine error as operator-facing text."""
    if isinstance(error, Indeterminate):
        signature = f" {error.signature}" if error.signature else ""
        return (
            f"Step '{error.step}' outcome is unknown. Re-check signature{signature}; "
            "do not re-execute."
        )
    if isinstance(error, PreconditionFailed):
        return f"Cannot run '{error.step}': {error.detail}"
    if isinstance(error, StepFailed):
        return f"Step '{error.step}' was rejected: {error.reason}"
    if isinstance(error, Inconsistent):
        return f"Step '{error.step}' confirmed but left unexpected state: {error.detail}"
    if isinstance(error, ClusterRejected):
        return f"Cluster rejected the request: {error.message}"
    if isinstance(error, ClusterUnavailable):
        return f"Cluster unavailable ({error.method}): {error.detail}"
    return str(error)


def outcome_fields(outcome: TransactionOutcome) -> dict[str, Any]:
    """Flatten an outcome for tables and JSON output."""
    fields: dict[str, Any] = {"status": outcome.status}
    if isinstance(outcome, Confirmed):
        fields.update(slot=outcome.slot, signature=str(outcome.signature))
    elif isinstance(outcome, Failed):
        fields.update(reason=outcome.reason)
        if outcome.signature is not None:
            fields["signature"] = str(outcome.signature)
    else:
        fields.update(interrupted=outcome.interrupted)
        if outcome.signature is not None:
            fields["signature"] = str(outcome.signature)
    return fields


__all__ = [
    "CommandResult",
    "Session",
    "describe_error",
    "describe_outcome",
    "outcome_fields",
]
