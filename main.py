#!/usr/bin/env python3
"""Entry point for the ``streamwatch`` command."""

import sys

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

load_dotenv()
console = Console()


def welcome_panel() -> Panel:
    text = Text("Stream Watch", style="bold magenta")
    text.append(" - go-live notifications for Twitch channels", style="magenta")
    return Panel(text, title="Welcome", border_style="magenta")


def main():
    """Run the CLI, turning Ctrl-C and uncaught errors into exit codes."""
    from streamwatch.services.errors import StreamWatchError

    try:
        console.print(welcome_panel())
        from streamwatch.presentation.cli.commands import app

        app()
    except KeyboardInterrupt:
        console.print("\nStopped watching.", style="yellow")
        sys.exit(0)
    except StreamWatchError as e:
        console.print(f"Stream Watch error: {e}", style="bold red")
        sys.exit(1)
    except Exception as e:
        console.print(f"Unexpected error: {e}", style="bold red")
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover
    main()
