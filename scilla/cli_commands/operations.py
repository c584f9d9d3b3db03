"""One-shot operation commands: run a menu command or the stake lifecycle."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

import typer
from loguru import logger

from scilla.core.config import ScillaConfig, load_config
from scilla.core.errors import Indeterminate, ScillaError
from scilla.models import Failed, TimedOut
from scilla.session import CommandResult, Session, describe_error, describe_outcome
from scilla.workflows import LIFECYCLE_STEPS

from .utils import confirm_mainnet, console, outcome_table, parse_params, report_table, setup_logging

operations_app = typer.Typer(
    name="operations",
    help="Build, sign and submit operations",
)

# Exit code for outcomes that are neither success nor failure.
EXIT_INDETERMINATE = 2


def open_session(config: ScillaConfig) -> Session:
    return Session.from_config(config)


def exit_code_for_error(error: ScillaError) -> int:
    return EXIT_INDETERMINATE if isinstance(error, Indeterminate) else 1


def render_result(result: CommandResult) -> int:
    """Print a command result and return the process exit code."""
    if result.report is not None:
        console.print(report_table(result.report))
        return 0
    outcome = result.outcome
    if outcome is None:
        return 0
    console.print(outcome_table(outcome, title=result.intent.kind))
    console.print(describe_outcome(outcome))
    if isinstance(outcome, Failed):
        return 1
    if isinstance(outcome, TimedOut):
        return EXIT_INDETERMINATE
    return 0


async def _run_command(
    config: ScillaConfig,
    menu_path: tuple[str, str],
    params: Mapping[str, str],
    assume_yes: bool,
) -> int:
    try:
        session = open_session(config)
    except ScillaError as exc:
        console.print(f"[red]{describe_error(exc)}[/red]")
        return 1
    async with session:
        confirm_mainnet(session.guard, assume_yes=assume_yes)
        try:
            result = await session.run_command(menu_path, params)
        except ScillaError as exc:
            console.print(f"[red]{describe_error(exc)}[/red]")
            return exit_code_for_error(exc)
    return render_result(result)


async def _run_lifecycle(
    config: ScillaConfig,
    params: Mapping[str, str],
    start_at: str,
    assume_yes: bool,
) -> int:
    try:
        session = open_session(config)
    except ScillaError as exc:
        console.print(f"[red]{describe_error(exc)}[/red]")
        return 1
    async with session:
        confirm_mainnet(session.guard, assume_yes=assume_yes)
        try:
            report = await session.run_stake_lifecycle(params, start_at=start_at)
        except ScillaError as exc:
            console.print(f"[red]{describe_error(exc)}[/red]")
            step = getattr(exc, "step", None)
            if step in LIFECYCLE_STEPS:
                console.print(f"Resume later with --start-at {step}")
            return exit_code_for_error(exc)
    console.print(report_table(report))
    return 0


@operations_app.command("run")
def run(
    group: str = typer.Argument(..., help="Menu group, e.g. Stake"),
    command: str = typer.Argument(..., help="Command in the group, e.g. Delegate"),
    param: list[str] = typer.Option(
        None, "--param", "-p", help="Command parameter as key=value (repeatable)"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the mainnet confirmation"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Run a single menu command non-interactively."""
    config = load_config()
    setup_logging(config.log_dir, verbose)

    params = parse_params(param)
    logger.debug("Running {} > {} with {}", group, command, sorted(params))
    exit_code = asyncio.run(_run_command(config, (group, command), params, yes))
    if exit_code:
        raise typer.Exit(code=exit_code)


@operations_app.command("lifecycle")
def lifecycle(
    stake_account: str = typer.Option(
        ..., "--stake-account", help="Keypair file for the new stake account"
    ),
    vote_account: str = typer.Option(..., "--vote-account", help="Validator vote account"),
    amount: str = typer.Option(..., "--amount", help="Amount to stake in SOL"),
    recipient: str = typer.Option(
        "", "--recipient", help="Where the final withdrawal goes (default: session wallet)"
    ),
    start_at: str = typer.Option(
        LIFECYCLE_STEPS[0],
        "--start-at",
        help=f"Step to resume from ({', '.join(LIFECYCLE_STEPS)})",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the mainnet confirmation"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Create, delegate, deactivate and withdraw a stake account.

    Epoch boundaries are not waited out: a step whose boundary has not passed
    stops with a precondition failure, and the command is re-run later with
    ``--start-at``.
    """
    if start_at not in LIFECYCLE_STEPS:
        raise typer.BadParameter(
            f"choose one of {', '.join(LIFECYCLE_STEPS)}", param_hint="--start-at"
        )
    config = load_config()
    setup_logging(config.log_dir, verbose)

    params = {
        "stake_account": stake_account,
        "vote_account": vote_account,
        "amount": amount,
        "recipient": recipient,
    }
    exit_code = asyncio.run(_run_lifecycle(config, params, start_at, yes))
    if exit_code:
        raise typer.Exit(code=exit_code)
