"""Typer command groups for the scilla CLI."""
