"""Interactive prompts (menu choice, plain input, masked input)."""

from __future__ import annotations

from typing import Optional, Sequence

from rich.console import Console as RichConsole
from rich.prompt import IntPrompt, Prompt


class Prompter:
    def __init__(self, console: Optional[RichConsole] = None):
        self.console = console or RichConsole(highlight=False)

    def ask_choice(self, message: str, options: Sequence[str]) -> str:
        """Show a numbered menu and return the chosen option text."""
        if not options:
            raise ValueError("ask_choice needs at least one option")
        if len(options) == 1:
            self.console.print(f"{message} [bold]{options[0]}[/bold]")
            return options[0]
        self.console.print(message)
        for i, option in enumerate(options, 1):
            self.console.print(f"  [cyan]{i}[/cyan]) {option}")
        choices = [str(i) for i in range(1, len(options) + 1)]
        index = IntPrompt.ask("Choose", choices=choices, default=1, console=self.console)
        return options[index - 1]

    def ask_visible(self, prompt: str) -> str:
        return Prompt.ask(prompt, console=self.console).strip()

    def ask_masked(self, prompt: str) -> str:
        return Prompt.ask(prompt, password=True, console=self.console)
