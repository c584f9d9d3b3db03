"""Core infrastructure modules for scilla."""

from .config import ClusterEndpoint, Commitment, ScillaConfig, load_config
from .constants import (
    ACTIVE_STAKE_EPOCH_BOUND,
    DEVNET_RPC,
    LAMPORTS_PER_SOL,
    MAINNET_RPC,
    TESTNET_RPC,
)
from .audit import AuditEntry, AuditSink, AuditTrail, JsonLinesAuditSink, LogAuditSink

__all__ = [
    "ClusterEndpoint",
    "Commitment",
    "ScillaConfig",
    "load_config",
    "ACTIVE_STAKE_EPOCH_BOUND",
    "DEVNET_RPC",
    "LAMPORTS_PER_SOL",
    "MAINNET_RPC",
    "TESTNET_RPC",
    "AuditEntry",
    "AuditSink",
    "AuditTrail",
    "JsonLinesAuditSink",
    "LogAuditSink",
]
