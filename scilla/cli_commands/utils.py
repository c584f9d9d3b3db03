"""Shared utility functions for CLI commands."""

import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from scilla.core.audit import AuditEntry
from scilla.models import Confirmed, StakeAccountState, TransactionOutcome, VoteAccountState
from scilla.resolver import lamports_to_sol
from scilla.safety import ClusterGuard
from scilla.session import outcome_fields
from scilla.workflows import WorkflowReport


def setup_logging(log_dir: Path, verbose: bool = False) -> None:
    """Configure loguru logging.

    Args:
        log_dir: Directory for log files
        verbose: Enable verbose debug logging
    """
    # Remove default handler
    logger.remove()

    # Console handler
    log_level = "DEBUG" if verbose else "INFO"
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
        "<level>{message}</level>",
        level=log_level,
    )

    # File handler
    logger.add(
        log_dir / "scilla_{time}.log",
        rotation="1 day",
        retention="7 days",
        level="DEBUG",
    )


def parse_params(values: list[str] | None) -> dict[str, str]:
    """Turn repeated ``key=value`` options into a parameter mapping."""
    params: dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"expected key=value, got {item!r}", param_hint="--param")
        params[key.strip()] = value.strip()
    return params


def confirm_mainnet(guard: ClusterGuard, *, assume_yes: bool = False) -> None:
    """Ask for mainnet acknowledgement when the session points at mainnet."""
    if not guard.is_mainnet:
        return
    logger.warning("=" * 70)
    logger.warning("MAINNET CLUSTER DETECTED")
    logger.warning("Transactions will move real funds")
    logger.warning("=" * 70)
    if not assume_yes and not typer.confirm(
        "Do you acknowledge the risks and want to send mainnet transactions?"
    ):
        logger.info("Mainnet operation cancelled by user")
        raise typer.Exit()
    guard.acknowledge_mainnet()


def outcome_table(outcome: TransactionOutcome, title: str | None = None) -> Table:
    table = Table(show_header=True, header_style="bold cyan", title=title)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key, value in outcome_fields(outcome).items():
        table.add_row(key, str(value))
    return table


def report_table(report: WorkflowReport) -> Table:
    table = Table(show_header=True, header_style="bold cyan", title=report.workflow)
    table.add_column("Step", style="bold")
    table.add_column("Slot", justify="right")
    table.add_column("Signature")
    for result in report.results:
        outcome: Confirmed = result.outcome
        table.add_row(result.step, str(outcome.slot), str(outcome.signature))
    return table


def stake_table(state: StakeAccountState, epoch: int) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(style="bold")
    table.add_column()
    table.add_row("Address", str(state.address))
    table.add_row("Balance", f"{lamports_to_sol(state.lamports)} SOL")
    table.add_row("State", state.kind)
    table.add_row("Activation", state.activation(epoch).value)
    table.add_row("Staker", str(state.staker))
    table.add_row("Withdrawer", str(state.withdrawer))
    if state.voter is not None:
        table.add_row("Delegated to", str(state.voter))
        table.add_row("Delegated stake", f"{lamports_to_sol(state.delegated_stake)} SOL")
        table.add_row("Activation epoch", str(state.activation_epoch))
    if state.lockup.epoch or state.lockup.unix_timestamp:
        table.add_row(
            "Lockup", f"epoch {state.lockup.epoch}, unix {state.lockup.unix_timestamp}"
        )
    return table


def vote_table(state: VoteAccountState) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(style="bold")
    table.add_column()
    table.add_row("Address", str(state.address))
    table.add_row("Balance", f"{lamports_to_sol(state.lamports)} SOL")
    table.add_row("Identity", str(state.node_pubkey))
    table.add_row("Authorized voter", str(state.authorized_voter))
    table.add_row("Authorized withdrawer", str(state.authorized_withdrawer))
    table.add_row("Commission", f"{state.commission}%")
    return table


def format_audit_entry(entry: AuditEntry | str) -> str:
    """Render one audit entry as a single line; unparsed lines pass through."""
    if isinstance(entry, str):
        return entry
    stamp = entry.timestamp.isoformat(timespec="seconds")
    fields = " ".join(f"{key}={value}" for key, value in entry.fields.items())
    return f"{stamp} {entry.level:<7} {entry.event} {fields}".rstrip()


console = Console()
