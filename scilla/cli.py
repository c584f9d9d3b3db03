"""CLI entry point for scilla."""

import typer

from scilla.cli_commands.inspect import inspect_app
from scilla.cli_commands.operations import operations_app
from scilla.cli_commands.shell import shell

app = typer.Typer(
    name="scilla",
    help="Interactive Solana operations shell",
)

# Add subcommand groups (namespaces)
app.add_typer(operations_app, name="operations")
app.add_typer(inspect_app, name="inspect")

app.command(name="shell")(shell)


def _register_root_aliases(source_app: typer.Typer) -> None:
    """Register commands from source_app at the root level."""

    for cmd in source_app.registered_commands:
        callback = cmd.callback
        if callback is None:
            continue
        command_name = cmd.name or callback.__name__.replace("_", "-")
        decorator = app.command(  # type: ignore[misc]
            name=command_name,
            help=cmd.help,
            short_help=cmd.short_help,
            add_help_option=cmd.add_help_option,
            hidden=cmd.hidden,
            deprecated=cmd.deprecated,
            rich_help_panel=cmd.rich_help_panel,
            no_args_is_help=cmd.no_args_is_help,
            context_settings=cmd.context_settings,
        )
        decorator(callback)


_register_root_aliases(operations_app)


if __name__ == "__main__":
    app()
