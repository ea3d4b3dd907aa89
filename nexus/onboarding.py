from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from .app import NexusApp
from .config import CONFIG_PATH, save_config
from .models import LANGUAGES, ModelProvider


def run_onboarding(nexus: NexusApp) -> bool:
    console = Console()

    welcome_text = Text()
    welcome_text.append("Welcome to Nexus!\n\n", style="bold cyan")
    welcome_text.append("Your recordings, agents and web tools in one place\n", style="dim")

    console.print(Panel(welcome_text, border_style="cyan", expand=False))
    console.print()

    config = nexus.config

    console.print("[bold]Google Gemini[/bold]")
    console.print()
    console.print("Recordings and chats are processed by Gemini.")
    console.print("(Get a key at https://aistudio.google.com/apikey)")
    current = nexus.settings.credential(ModelProvider.GOOGLE)
    api_key = Prompt.ask("API Key", password=True, default=current or "", show_default=False)

    console.print()
    console.print("[bold]Recording Language[/bold]")
    console.print()
    for code, label in LANGUAGES.items():
        console.print(f"  {code:<6} {label}")
    console.print()
    config.default_language = Prompt.ask(
        "Language", choices=list(LANGUAGES), default=config.default_language
    )

    console.print()
    console.print("[bold]Agent[/bold]")
    console.print()
    agents = nexus.settings.agents()
    for agent in agents:
        console.print(f"  {agent.icon} {agent.id:<12} {agent.description}")
    console.print()
    agent_id = Prompt.ask(
        "Active agent", choices=[a.id for a in agents], default=nexus.settings.active_agent().id
    )

    console.print()
    summary = Table(show_header=False, box=None, padding=(0, 2))
    summary.add_column(style="cyan")
    summary.add_column()
    summary.add_row("Gemini key:", "configured" if api_key else "[red]missing[/red]")
    summary.add_row("Language:", LANGUAGES[config.default_language])
    summary.add_row("Agent:", agent_id)
    console.print(Panel(summary, title="Your Configuration", border_style="green"))
    console.print()

    if not Confirm.ask("Save this configuration?", default=True):
        console.print("[yellow]Configuration not saved. Run 'nexus setup' to try again.[/yellow]")
        return False

    save_config(config)
    nexus.settings.set_api_key(ModelProvider.GOOGLE, api_key)
    nexus.settings.select_agent(agent_id)
    console.print("[green]Configuration saved to[/green]", CONFIG_PATH)
    console.print()
    console.print("[bold]To process a recording, run:[/bold]")
    console.print("  [cyan]nexus process <audio-file>[/cyan]")
    console.print()
    console.print("[bold]To chat with your agent, run:[/bold]")
    console.print("  [cyan]nexus chat[/cyan]")
    console.print()
    return True
