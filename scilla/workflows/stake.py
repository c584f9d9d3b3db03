"""Stake account workflow steps and the stake lifecycle plan."""

from __future__ import annotations

import dataclasses
import time

from solders.pubkey import Pubkey

from scilla.core.constants import ACTIVE_STAKE_EPOCH_BOUND
from scilla.models import (
    CreateStakeAccount,
    DeactivateStake,
    DelegateStake,
    MergeStake,
    SplitStake,
    StakeAccountState,
    StakeActivation,
    WithdrawStake,
)
from scilla.workflows.orchestrator import ChainSnapshot, Workflow, WorkflowStep


def _missing(pubkey: Pubkey) -> str:
    return f"stake account {pubkey} does not exist"


def _check_staker(state: StakeAccountState, authority: Pubkey) -> str | None:
    if state.staker != authority:
        return f"{authority} is not the stake authority of {state.address} (expected {state.staker})"
    return None


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


def create_stake_step(intent: CreateStakeAccount) -> WorkflowStep:
    def precondition(snapshot: ChainSnapshot) -> str | None:
        if snapshot.stake_account(intent.stake_account) is not None:
            return f"stake account {intent.stake_account} already exists"
        return None

    def postcondition(_before: ChainSnapshot, after: ChainSnapshot) -> str | None:
        state = after.stake_account(intent.stake_account)
        if state is None:
            return "stake account was not created"
        if state.kind != "initialized":
            return f"expected an initialized stake account, found {state.kind}"
        if state.staker != intent.staker or state.withdrawer != intent.withdrawer:
            return "stake account authorities do not match the request"
        if state.lamports < intent.lamports:
            return f"stake account holds {state.lamports} lamports, expected {intent.lamports}"
        return None

    return WorkflowStep(
        name="create",
        intent=intent,
        stake_accounts=(intent.stake_account,),
        precondition=precondition,
        postcondition=postcondition,
    )


# ---------------------------------------------------------------------------
# Delegate
# ---------------------------------------------------------------------------


def delegate_stake_step(intent: DelegateStake) -> WorkflowStep:
    def precondition(snapshot: ChainSnapshot) -> str | None:
        state = snapshot.stake_account(intent.stake_account)
        if state is None:
            return _missing(intent.stake_account)
        if state.kind not in {"initialized", "delegated"}:
            return f"stake account is {state.kind}"
        mismatch = _check_staker(state, intent.stake_authority)
        if mismatch:
            return mismatch
        if state.is_delegated:
            status = state.activation(snapshot.epoch)
            if status in (StakeActivation.ACTIVE, StakeActivation.ACTIVATING):
                if state.voter != intent.vote_account:
                    return f"stake is already {status.value} with validator {state.voter}"
                return f"stake is already {status.value} with this validator"
            if status is StakeActivation.DEACTIVATING:
                return (
                    f"stake is deactivating until the end of epoch {state.deactivation_epoch}; "
                    f"current epoch is {snapshot.epoch}"
                )
        return None

    def postcondition(before: ChainSnapshot, after: ChainSnapshot) -> str | None:
        state = after.stake_account(intent.stake_account)
        if state is None:
            return "stake account disappeared"
        if state.voter != intent.vote_account:
            return f"stake is delegated to {state.voter}, expected {intent.vote_account}"
        if state.deactivation_epoch != ACTIVE_STAKE_EPOCH_BOUND:
            return "delegation is marked as deactivated"
        if state.activation_epoch is None or state.activation_epoch < before.epoch:
            return f"activation epoch {state.activation_epoch} predates the delegation"
        return None

    return WorkflowStep(
        name="delegate",
        intent=intent,
        stake_accounts=(intent.stake_account,),
        precondition=precondition,
        postcondition=postcondition,
    )


# ---------------------------------------------------------------------------
# Deactivate
# ---------------------------------------------------------------------------


def deactivate_stake_step(
    intent: DeactivateStake, *, wait_for_activation: bool = False
) -> WorkflowStep:
    """Deactivation step.

    With ``wait_for_activation`` the stake must have crossed its activation
    epoch boundary (fully active) before it can be deactivated. The lifecycle
    plan uses this to gate the step on the epoch boundary instead of sleeping.
    """

    def precondition(snapshot: ChainSnapshot) -> str | None:
        state = snapshot.stake_account(intent.stake_account)
        if state is None:
            return _missing(intent.stake_account)
        mismatch = _check_staker(state, intent.stake_authority)
        if mismatch:
            return mismatch
        if not state.is_delegated:
            return "stake account is not delegated"
        status = state.activation(snapshot.epoch)
        if status in (StakeActivation.DEACTIVATING, StakeActivation.INACTIVE):
            return f"stake is already {status.value} (deactivation epoch {state.deactivation_epoch})"
        if wait_for_activation and status is StakeActivation.ACTIVATING:
            return (
                f"stake activates after epoch {state.activation_epoch}; "
                f"current epoch is {snapshot.epoch}"
            )
        return None

    def postcondition(_before: ChainSnapshot, after: ChainSnapshot) -> str | None:
        state = after.stake_account(intent.stake_account)
        if state is None:
            return "stake account disappeared"
        if state.deactivation_epoch in (None, ACTIVE_STAKE_EPOCH_BOUND):
            return "stake still reports no deactivation epoch"
        return None

    return WorkflowStep(
        name="deactivate",
        intent=intent,
        stake_accounts=(intent.stake_account,),
        precondition=precondition,
        postcondition=postcondition,
    )


# ---------------------------------------------------------------------------
# Withdraw
# ---------------------------------------------------------------------------


def withdraw_stake_step(intent: WithdrawStake, *, close_account: bool = False) -> WorkflowStep:
    """Withdrawal step.

    With ``close_account`` the amount is taken from the balance read right
    before the step, so rewards earned while delegated are withdrawn too and
    the account is closed. ``intent.lamports`` is ignored in that mode.
    """

    def amount_for(state: StakeAccountState) -> int:
        return state.lamports if close_account else intent.lamports

    def precondition(snapshot: ChainSnapshot) -> str | None:
        state = snapshot.stake_account(intent.stake_account)
        if state is None:
            return _missing(intent.stake_account)
        if state.withdrawer != intent.withdraw_authority:
            return (
                f"{intent.withdraw_authority} is not the withdraw authority "
                f"(expected {state.withdrawer})"
            )
        status = state.activation(snapshot.epoch)
        if status is StakeActivation.DEACTIVATING:
            return (
                f"stake is deactivating until the end of epoch {state.deactivation_epoch}; "
                f"current epoch is {snapshot.epoch}"
            )
        if status is not StakeActivation.INACTIVE:
            return f"stake is {status.value}; deactivate it before withdrawing"
        if state.lockup.in_force(snapshot.epoch):
            return (
                f"lockup is in force until epoch {state.lockup.epoch} "
                f"/ unix time {state.lockup.unix_timestamp}"
            )
        amount = amount_for(state)
        if amount > state.lamports:
            return f"requested {amount} lamports but the account holds {state.lamports}"
        remaining = state.lamports - amount
        if 0 < remaining < state.rent_exempt_reserve:
            return (
                f"withdrawal would leave {remaining} lamports, below the rent-exempt "
                f"reserve of {state.rent_exempt_reserve}"
            )
        return None

    def withdraw_intent(snapshot: ChainSnapshot) -> WithdrawStake:
        state = snapshot.stake_account(intent.stake_account)
        if state is None:
            raise ValueError(_missing(intent.stake_account))
        return dataclasses.replace(intent, lamports=state.lamports)

    def postcondition(before: ChainSnapshot, after: ChainSnapshot) -> str | None:
        prior = before.stake_account(intent.stake_account)
        state = after.stake_account(intent.stake_account)
        if prior is None:
            return "stake account vanished before withdrawal"
        expected = prior.lamports - amount_for(prior)
        if expected == 0:
            if state is not None and state.lamports:
                return f"account should be closed but holds {state.lamports} lamports"
            return None
        if state is None:
            return f"account was closed, expected {expected} lamports to remain"
        # Deposits credited at an epoch boundary can raise the balance.
        if state.lamports > expected and after.epoch == before.epoch:
            return f"account holds {state.lamports} lamports, expected at most {expected}"
        return None

    return WorkflowStep(
        name="withdraw",
        intent=intent,
        stake_accounts=(intent.stake_account,),
        precondition=precondition,
        postcondition=postcondition,
        intent_factory=withdraw_intent if close_account else None,
    )


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def _merge_compatible(
    destination: StakeAccountState, source: StakeAccountState, epoch: int
) -> str | None:
    dest_status = destination.activation(epoch)
    src_status = source.activation(epoch)
    if StakeActivation.DEACTIVATING in (dest_status, src_status):
        return "cannot merge while either account is deactivating"
    if src_status is StakeActivation.INACTIVE and dest_status in (
        StakeActivation.INACTIVE,
        StakeActivation.ACTIVATING,
    ):
        return None
    if dest_status is src_status and src_status in (
        StakeActivation.ACTIVE,
        StakeActivation.ACTIVATING,
    ):
        if destination.voter != source.voter:
            return f"accounts are delegated to different validators ({destination.voter}, {source.voter})"
        if (
            src_status is StakeActivation.ACTIVATING
            and destination.activation_epoch != source.activation_epoch
        ):
            return "activating accounts must share the same activation epoch"
        return None
    return f"incompatible activation states ({dest_status.value}, {src_status.value})"


def merge_stake_step(intent: MergeStake, *, now: float | None = None) -> WorkflowStep:
    def precondition(snapshot: ChainSnapshot) -> str | None:
        destination = snapshot.stake_account(intent.destination)
        source = snapshot.stake_account(intent.source)
        if destination is None:
            return _missing(intent.destination)
        if source is None:
            return _missing(intent.source)
        if destination.staker != source.staker or destination.withdrawer != source.withdrawer:
            return "stake accounts have different authorities"
        mismatch = _check_staker(destination, intent.stake_authority)
        if mismatch:
            return mismatch
        current = time.time() if now is None else now
        locked = destination.lockup.in_force(snapshot.epoch, current) or source.lockup.in_force(
            snapshot.epoch, current
        )
        if locked and destination.lockup != source.lockup:
            return "stake accounts have different lockups in force"
        return _merge_compatible(destination, source, snapshot.epoch)

    def postcondition(before: ChainSnapshot, after: ChainSnapshot) -> str | None:
        if after.stake_account(intent.source) is not None:
            return "source stake account still exists after merge"
        prior_dest = before.stake_account(intent.destination)
        prior_src = before.stake_account(intent.source)
        merged = after.stake_account(intent.destination)
        if merged is None or prior_dest is None or prior_src is None:
            return "destination stake account missing after merge"
        if merged.lamports < prior_dest.lamports + prior_src.lamports:
            return "destination balance does not include the merged lamports"
        return None

    return WorkflowStep(
        name="merge",
        intent=intent,
        stake_accounts=(intent.destination, intent.source),
        precondition=precondition,
        postcondition=postcondition,
    )


# ---------------------------------------------------------------------------
# Split
# ---------------------------------------------------------------------------


def split_stake_step(intent: SplitStake) -> WorkflowStep:
    def precondition(snapshot: ChainSnapshot) -> str | None:
        source = snapshot.stake_account(intent.stake_account)
        if source is None:
            return _missing(intent.stake_account)
        if snapshot.stake_account(intent.split_account) is not None:
            return f"split target {intent.split_account} already exists"
        mismatch = _check_staker(source, intent.stake_authority)
        if mismatch:
            return mismatch
        if source.activation(snapshot.epoch) is StakeActivation.DEACTIVATING:
            return "cannot split a deactivating stake account"
        if intent.lamports >= source.lamports:
            return (
                f"split of {intent.lamports} lamports must leave a balance in the "
                f"source account ({source.lamports} lamports)"
            )
        if source.lamports - intent.lamports < source.rent_exempt_reserve:
            return "split would leave the source below its rent-exempt reserve"
        return None

    def postcondition(before: ChainSnapshot, after: ChainSnapshot) -> str | None:
        prior = before.stake_account(intent.stake_account)
        source = after.stake_account(intent.stake_account)
        split = after.stake_account(intent.split_account)
        if split is None:
            return "split stake account was not created"
        if split.lamports < intent.lamports:
            return f"split account holds {split.lamports} lamports, expected {intent.lamports}"
        if prior is not None and source is not None:
            if source.lamports > prior.lamports - intent.lamports:
                return "source balance did not decrease by the split amount"
        return None

    return WorkflowStep(
        name="split",
        intent=intent,
        stake_accounts=(intent.stake_account, intent.split_account),
        precondition=precondition,
        postcondition=postcondition,
    )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

LIFECYCLE_STEPS = ("create", "delegate", "deactivate", "withdraw")


def stake_lifecycle(
    create: CreateStakeAccount,
    delegate: DelegateStake,
    deactivate: DeactivateStake,
    withdraw: WithdrawStake,
) -> Workflow:
    """Create -> delegate -> (activation) -> deactivate -> (cooldown) -> withdraw.

    The epoch waits are preconditions: running the plan before a boundary
    has passed aborts with ``PreconditionFailed`` and the caller re-invokes
    from that step later.
    """
    accounts = {
        create.stake_account,
        delegate.stake_account,
        deactivate.stake_account,
        withdraw.stake_account,
    }
    if len(accounts) != 1:
        raise ValueError("all lifecycle steps must target the same stake account")
    return Workflow(
        name="stake_lifecycle",
        steps=(
            create_stake_step(create),
            delegate_stake_step(delegate),
            deactivate_stake_step(deactivate, wait_for_activation=True),
            withdraw_stake_step(withdraw, close_account=True),
        ),
    )
