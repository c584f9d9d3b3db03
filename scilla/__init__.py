"""scilla - Interactive Solana operations shell."""

__version__ = "0.1.0"

from scilla.builder import TransactionBuilder, UnsignedTransaction
from scilla.cluster import ClusterClient
from scilla.core.config import ClusterEndpoint, Commitment, ScillaConfig, load_config
from scilla.executor import TransactionExecutor
from scilla.models import (
    Airdrop,
    AuthorizeVoter,
    AuthorizeWithdrawer,
    Confirmed,
    CreateStakeAccount,
    CreateVoteAccount,
    DeactivateStake,
    DelegateStake,
    Failed,
    Intent,
    Memo,
    MergeStake,
    SplitStake,
    StakeAccountState,
    TimedOut,
    TransactionOutcome,
    Transfer,
    VoteAccountState,
    WithdrawStake,
    WithdrawVote,
)
from scilla.resolver import CommandResolver
from scilla.safety import ClusterGuard
from scilla.session import Session
from scilla.signer import KeypairSigner
from scilla.workflows import Workflow, WorkflowOrchestrator, WorkflowStep

__all__ = [
    "ClusterClient",
    "ClusterEndpoint",
    "Commitment",
    "ScillaConfig",
    "load_config",
    "KeypairSigner",
    "TransactionBuilder",
    "UnsignedTransaction",
    "TransactionExecutor",
    "WorkflowOrchestrator",
    "Workflow",
    "WorkflowStep",
    "CommandResolver",
    "ClusterGuard",
    "Session",
    "Intent",
    "Transfer",
    "Airdrop",
    "CreateStakeAccount",
    "DelegateStake",
    "DeactivateStake",
    "WithdrawStake",
    "MergeStake",
    "SplitStake",
    "CreateVoteAccount",
    "AuthorizeVoter",
    "AuthorizeWithdrawer",
    "WithdrawVote",
    "Memo",
    "TransactionOutcome",
    "Confirmed",
    "Failed",
    "TimedOut",
    "StakeAccountState",
    "VoteAccountState",
]
