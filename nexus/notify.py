"""Channels for surfacing notices and confirmations to the user."""

from __future__ import annotations

import logging
from typing import Protocol

import typer


class Notifier(Protocol):
    def alert(self, message: str) -> None:
        """Show a blocking notice."""

    def confirm(self, message: str) -> bool:
        """Ask the user to approve a destructive action."""


class ConsoleNotifier:
    """Notices on stderr and confirmations via a terminal prompt."""

    def __init__(self, assume_yes: bool = False) -> None:
        self.assume_yes = assume_yes

    def alert(self, message: str) -> None:
        logging.getLogger("nexus.notify").info("Notice: %s", message)
        typer.secho(message, fg=typer.colors.YELLOW, err=True)

    def confirm(self, message: str) -> bool:
        if self.assume_yes:
            return True
        return typer.confirm(message, default=False)
