"""Interactive menu shell driven by the resolver's command table."""

from __future__ import annotations

import asyncio
from typing import Protocol

import typer
from loguru import logger
from rich.console import Console, RenderableType
from rich.prompt import IntPrompt, Prompt

from scilla.core.config import load_config
from scilla.core.errors import ScillaError
from scilla.resolver import CommandSpec
from scilla.session import Session, describe_error

from .operations import open_session, render_result
from .utils import confirm_mainnet, console, setup_logging

EXIT = "Exit"
GO_BACK = "Go Back"


class ShellIO(Protocol):
    def choose(self, title: str, options: list[str]) -> str: ...

    def ask(self, prompt: str, default: str | None = None) -> str: ...

    def show(self, renderable: RenderableType) -> None: ...


class RichShellIO:
    """Numbered menus and prompts on a rich console."""

    def __init__(self, output: Console | None = None) -> None:
        self.console = output or console

    def choose(self, title: str, options: list[str]) -> str:
        self.console.print(f"\n[bold cyan]{title}[/bold cyan]")
        for index, option in enumerate(options, start=1):
            self.console.print(f"  {index}. {option}")
        choice = IntPrompt.ask(
            "Select",
            console=self.console,
            choices=[str(index) for index in range(1, len(options) + 1)],
            show_choices=False,
        )
        return options[choice - 1]

    def ask(self, prompt: str, default: str | None = None) -> str:
        if default is None:
            return Prompt.ask(prompt, console=self.console, default="")
        return Prompt.ask(prompt, console=self.console, default=default)

    def show(self, renderable: RenderableType) -> None:
        self.console.print(renderable)


class InteractiveShell:
    """Walks the command menus, prompting for each parameter.

    Errors from a command are shown and the shell returns to the main menu;
    only choosing Exit (or end of input) leaves the loop.
    """

    def __init__(self, session: Session, io: ShellIO) -> None:
        self.session = session
        self.io = io

    async def run(self) -> None:
        resolver = self.session.resolver
        while True:
            group = self.io.choose("Main menu", [*resolver.groups(), EXIT])
            if group == EXIT:
                return
            commands = resolver.commands_in(group)
            name = self.io.choose(group, [spec.path[1] for spec in commands] + [GO_BACK])
            if name == GO_BACK:
                continue
            spec = resolver.lookup((group, name))
            await self.execute(spec, self.prompt_params(spec))

    def prompt_params(self, spec: CommandSpec) -> dict[str, str]:
        self.io.show(f"[dim]{spec.description}[/dim]")
        params: dict[str, str] = {}
        for param in spec.params:
            value = self.io.ask(param.prompt, param.default)
            if value:
                params[param.name] = value
        return params

    async def execute(self, spec: CommandSpec, params: dict[str, str]) -> None:
        try:
            result = await self.session.run_command(spec.path, params)
        except ScillaError as exc:
            logger.debug("{} > {} aborted: {!r}", *spec.path, exc)
            self.io.show(f"[red]{describe_error(exc)}[/red]")
            return
        render_result(result)


async def _run_shell(assume_yes: bool, verbose: bool) -> None:
    config = load_config()
    setup_logging(config.log_dir, verbose)
    try:
        session = open_session(config)
    except ScillaError as exc:
        console.print(f"[red]{describe_error(exc)}[/red]")
        raise typer.Exit(code=1) from None
    async with session:
        confirm_mainnet(session.guard, assume_yes=assume_yes)
        console.print(
            f"[bold]scilla[/bold] {session.pubkey} on {config.rpc_url} "
            f"({config.commitment_level.value})"
        )
        try:
            await InteractiveShell(session, RichShellIO()).run()
        except EOFError:
            console.print()
    logger.info("Shell closed")


def shell(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the mainnet confirmation"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Start the interactive menu shell."""
    asyncio.run(_run_shell(yes, verbose))
