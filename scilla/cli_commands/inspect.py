"""Read-only cluster queries and audit log inspection."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer
from solders.pubkey import Pubkey
from solders.signature import Signature

from scilla.core.audit import read_audit_log
from scilla.core.config import ScillaConfig, load_config
from scilla.core.errors import ScillaError
from scilla.models import StakeAccountState
from scilla.resolver import lamports_to_sol, parse_pubkey
from scilla.session import Session, describe_error

from .operations import open_session
from .utils import console, format_audit_entry, setup_logging, stake_table, vote_table

inspect_app = typer.Typer(
    name="inspect",
    help="Read-only cluster queries",
)

T = TypeVar("T")


def _query(config: ScillaConfig, fetch: Callable[[Session], Awaitable[T]]) -> T:
    async def _run() -> T:
        async with open_session(config) as session:
            return await fetch(session)

    try:
        return asyncio.run(_run())
    except ScillaError as exc:
        console.print(f"[red]{describe_error(exc)}[/red]")
        raise typer.Exit(code=1) from None


def _pubkey_argument(name: str, raw: str) -> Pubkey:
    try:
        return parse_pubkey(name, raw)
    except ScillaError as exc:
        raise typer.BadParameter(str(exc), param_hint=name) from None


@inspect_app.command()
def balance(
    address: str = typer.Argument("", help="Account address (default: session wallet)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Show the SOL balance of an account."""
    config = load_config()
    setup_logging(config.log_dir, verbose)

    pubkey = _pubkey_argument("address", address) if address else None
    lamports = _query(config, lambda session: session.balance(pubkey))
    console.print(f"{lamports_to_sol(lamports)} SOL")


@inspect_app.command()
def epoch(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Show the current epoch and progress through it."""
    config = load_config()
    setup_logging(config.log_dir, verbose)

    info = _query(config, lambda session: session.epoch_info())
    progress = info.slot_index / info.slots_in_epoch * 100 if info.slots_in_epoch else 0.0
    console.print(
        f"Epoch {info.epoch}: slot {info.slot_index}/{info.slots_in_epoch} "
        f"({progress:.1f}%), absolute slot {info.absolute_slot}"
    )


@inspect_app.command("stake")
def show_stake(
    address: str = typer.Argument(..., help="Stake account address"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Show a stake account and its activation status."""
    config = load_config()
    setup_logging(config.log_dir, verbose)

    pubkey = _pubkey_argument("address", address)

    async def fetch(session: Session) -> tuple[StakeAccountState | None, int]:
        info = await session.epoch_info()
        return await session.stake_account(pubkey), info.epoch

    state, current_epoch = _query(config, fetch)
    if state is None:
        console.print(f"No stake account at {pubkey}")
        raise typer.Exit(code=1)
    console.print(stake_table(state, current_epoch))


@inspect_app.command("vote")
def show_vote(
    address: str = typer.Argument(..., help="Vote account address"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Show a vote account."""
    config = load_config()
    setup_logging(config.log_dir, verbose)

    pubkey = _pubkey_argument("address", address)
    state = _query(config, lambda session: session.vote_account(pubkey))
    if state is None:
        console.print(f"No vote account at {pubkey}")
        raise typer.Exit(code=1)
    console.print(vote_table(state))


@inspect_app.command()
def status(
    signature: str = typer.Argument(..., help="Transaction signature"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Check whether a transaction landed and at which commitment."""
    config = load_config()
    setup_logging(config.log_dir, verbose)

    try:
        parsed = Signature.from_string(signature)
    except ValueError:
        raise typer.BadParameter("not a valid signature", param_hint="signature") from None

    result = _query(config, lambda session: session.signature_status(parsed))
    if result is None:
        console.print(f"{parsed}: not found")
        raise typer.Exit(code=1)
    level = result.confirmation_status.value if result.confirmation_status else "unknown"
    outcome = "failed" if result.err is not None else "succeeded"
    console.print(f"{parsed}: {outcome} in slot {result.slot} ({level})")


@inspect_app.command()
def audit(
    tail: int = typer.Option(
        20,
        "--tail",
        min=0,
        help="Number of most recent entries to display (0 = show all)",
    ),
) -> None:
    """Print the transaction audit log."""
    config = load_config()
    if config.audit_log is None:
        console.print("No audit log configured (set SCILLA_AUDIT_LOG)")
        raise typer.Exit()

    entries = read_audit_log(config.audit_log, tail)
    if not entries:
        console.print(f"No audit entries found at {config.audit_log}")
        return
    for entry in entries:
        console.print(format_audit_entry(entry), markup=False)
