"""Interactive remediation for bad URLs and missing credentials."""

from __future__ import annotations

from typing import Optional

import click

from .utils import is_valid_url

__all__ = [
    "DEFAULT_SOURCE_URL",
    "ClickPrompter",
    "Prompter",
]

DEFAULT_SOURCE_URL = "http://localhost:8090/fdb/ledger/name"


class Prompter:
    """Synchronous "give me a corrected value" contract.

    The base class answers nothing, which is what unattended runs use:
    a request that needs a prompt ends in the ``FATAL`` state instead.
    """

    def ask_url(self, current: Optional[str] = None) -> Optional[str]:
        return None

    def ask_credential(self) -> Optional[str]:
        return None


class ClickPrompter(Prompter):
    """Prompt on the terminal with :func:`click.prompt`."""

    def __init__(self, url_label: str = "Ledger URL", credential_label: str = "API Key") -> None:
        self.url_label = url_label
        self.credential_label = credential_label

    def ask_url(self, current: Optional[str] = None) -> Optional[str]:
        while True:
            value = click.prompt(
                self.url_label,
                default=current or DEFAULT_SOURCE_URL,
                show_default=True,
            ).strip()
            if is_valid_url(value):
                return value
            click.echo("Please provide a valid URL", err=True)

    def ask_credential(self) -> Optional[str]:
        value = click.prompt(self.credential_label, hide_input=True).strip()
        return value or None
