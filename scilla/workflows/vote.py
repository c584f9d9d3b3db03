"""Vote account workflow steps."""

from __future__ import annotations

from solders.pubkey import Pubkey

from scilla.models import (
    AuthorizeVoter,
    AuthorizeWithdrawer,
    CreateVoteAccount,
    VoteAccountState,
    WithdrawVote,
)
from scilla.workflows.orchestrator import ChainSnapshot, WorkflowStep


def _missing(pubkey: Pubkey) -> str:
    return f"vote account {pubkey} does not exist"


def _check_withdrawer(state: VoteAccountState, authority: Pubkey) -> str | None:
    if state.authorized_withdrawer != authority:
        return (
            f"{authority} is not the withdraw authority of {state.address} "
            f"(expected {state.authorized_withdrawer})"
        )
    return None


def create_vote_step(intent: CreateVoteAccount) -> WorkflowStep:
    def precondition(snapshot: ChainSnapshot) -> str | None:
        if snapshot.vote_account(intent.vote_account) is not None:
            return f"vote account {intent.vote_account} already exists"
        return None

    def postcondition(_before: ChainSnapshot, after: ChainSnapshot) -> str | None:
        state = after.vote_account(intent.vote_account)
        if state is None:
            return "vote account was not created"
        if state.node_pubkey != intent.identity:
            return f"vote account identity is {state.node_pubkey}, expected {intent.identity}"
        if state.authorized_withdrawer != intent.authorized_withdrawer:
            return "vote account withdraw authority does not match the request"
        if state.commission != intent.commission:
            return f"commission is {state.commission}, expected {intent.commission}"
        return None

    return WorkflowStep(
        name="create_vote",
        intent=intent,
        vote_accounts=(intent.vote_account,),
        precondition=precondition,
        postcondition=postcondition,
    )


def authorize_voter_step(intent: AuthorizeVoter) -> WorkflowStep:
    def precondition(snapshot: ChainSnapshot) -> str | None:
        state = snapshot.vote_account(intent.vote_account)
        if state is None:
            return _missing(intent.vote_account)
        # Either the current voter or the withdrawer may reassign the voter.
        if intent.authority not in (state.authorized_voter, state.authorized_withdrawer):
            return f"{intent.authority} is neither the voter nor the withdrawer of {state.address}"
        return None

    # The new voter takes effect at a later epoch, so only existence is checked.
    def postcondition(_before: ChainSnapshot, after: ChainSnapshot) -> str | None:
        if after.vote_account(intent.vote_account) is None:
            return "vote account disappeared"
        return None

    return WorkflowStep(
        name="authorize_voter",
        intent=intent,
        vote_accounts=(intent.vote_account,),
        precondition=precondition,
        postcondition=postcondition,
    )


def authorize_withdrawer_step(intent: AuthorizeWithdrawer) -> WorkflowStep:
    def precondition(snapshot: ChainSnapshot) -> str | None:
        state = snapshot.vote_account(intent.vote_account)
        if state is None:
            return _missing(intent.vote_account)
        return _check_withdrawer(state, intent.authority)

    def postcondition(_before: ChainSnapshot, after: ChainSnapshot) -> str | None:
        state = after.vote_account(intent.vote_account)
        if state is None:
            return "vote account disappeared"
        if state.authorized_withdrawer != intent.new_withdrawer:
            return (
                f"withdraw authority is {state.authorized_withdrawer}, "
                f"expected {intent.new_withdrawer}"
            )
        return None

    return WorkflowStep(
        name="authorize_withdrawer",
        intent=intent,
        vote_accounts=(intent.vote_account,),
        precondition=precondition,
        postcondition=postcondition,
    )


def withdraw_vote_step(intent: WithdrawVote) -> WorkflowStep:
    def precondition(snapshot: ChainSnapshot) -> str | None:
        state = snapshot.vote_account(intent.vote_account)
        if state is None:
            return _missing(intent.vote_account)
        mismatch = _check_withdrawer(state, intent.withdraw_authority)
        if mismatch:
            return mismatch
        if intent.lamports > state.lamports:
            return f"requested {intent.lamports} lamports but the account holds {state.lamports}"
        return None

    def postcondition(before: ChainSnapshot, after: ChainSnapshot) -> str | None:
        prior = before.vote_account(intent.vote_account)
        state = after.vote_account(intent.vote_account)
        if prior is None:
            return "vote account vanished before withdrawal"
        expected = prior.lamports - intent.lamports
        held = 0 if state is None else state.lamports
        # Commission is credited at epoch boundaries.
        if held > expected and after.epoch == before.epoch:
            return f"account holds {held} lamports, expected at most {expected}"
        return None

    return WorkflowStep(
        name="withdraw_vote",
        intent=intent,
        vote_accounts=(intent.vote_account,),
        precondition=precondition,
        postcondition=postcondition,
    )
