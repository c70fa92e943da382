"""
Voice Tutor CLI: study Anki decks by talking to a realtime tutor.

Commands:
- voice-tutor check         - Check AnkiConnect and API key
- voice-tutor decks         - List decks available for study
- voice-tutor study [DECK]  - Run a voice study session

During a session, type a command and press Enter:
- p / r / e   pause, resume, end (same as notification buttons)
- f- / f+     simulate losing / regaining audio focus
"""
from __future__ import annotations

import asyncio
import sys
from typing import Callable, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import get_settings
from src.anki.anki_client import AnkiClient
from src.anki.item_source import AnkiItemSource
from src.presence.base import AUDIO_FOCUS_CHANGE, NOTIFICATION_ACTION
from src.presence.local import LocalPresence
from src.realtime.credentials import SettingsCredentialStore, StaticCredentialStore
from src.realtime.transport import RealtimeTransport
from src.session.exceptions import EmptyQueueError, TransportConnectionError
from src.session.models import SessionPhase, SessionStats, SessionTransition
from src.session.orchestrator import SessionOrchestrator

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="voice-tutor",
    help="Voice Tutor: study Anki decks out loud",
    no_args_is_help=True,
)
console = Console()

PHASE_STYLES = {
    SessionPhase.ASKING_QUESTION: "bold cyan",
    SessionPhase.AWAITING_ANSWER: "bold green",
    SessionPhase.EVALUATING: "yellow",
    SessionPhase.GIVING_FEEDBACK: "magenta",
    SessionPhase.PAUSED: "bold yellow",
    SessionPhase.RECONNECTING: "bold yellow",
    SessionPhase.SESSION_COMPLETE: "bold green",
    SessionPhase.ERROR: "bold red",
}

KEY_COMMANDS = {
    "p": (NOTIFICATION_ACTION, "pause"),
    "r": (NOTIFICATION_ACTION, "resume"),
    "e": (NOTIFICATION_ACTION, "end"),
    "q": (NOTIFICATION_ACTION, "end"),
    "f-": (AUDIO_FOCUS_CHANGE, "loss_transient"),
    "f+": (AUDIO_FOCUS_CHANGE, "gain"),
}


# =============================================================================
# Display Helpers
# =============================================================================


def print_transition(transition: SessionTransition) -> None:
    style = PHASE_STYLES.get(transition.to_phase, "dim")
    console.print(f"[{style}]{transition.to_phase.value}[/{style}] [dim]({transition.trigger})[/dim]")


def print_summary(stats: SessionStats) -> None:
    table = Table(title="Session Summary")
    table.add_column("Reviewed", justify="right")
    table.add_column("Correct", justify="right", style="green")
    table.add_column("Incorrect", justify="right", style="red")
    table.add_column("Accuracy", justify="right")
    table.add_row(
        str(stats.total),
        str(stats.correct),
        str(stats.incorrect),
        f"{stats.accuracy_percent}%",
    )
    console.print(table)


def configure_logging(level: str, log_file: str | None) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if log_file:
        logger.add(log_file, level="DEBUG", rotation="5 MB", retention=3)


# =============================================================================
# Commands
# =============================================================================


@app.command()
def check() -> None:
    """Check AnkiConnect and realtime API configuration."""
    settings = get_settings()
    anki_ok = AnkiClient(timeout=5).check_connection(cache_seconds=0)

    table = Table(show_header=False)
    table.add_row("AnkiConnect", settings.anki_connect_url, "[green]ok[/green]" if anki_ok else "[red]unreachable[/red]")
    table.add_row(
        "Realtime API key",
        settings.realtime_model,
        "[green]configured[/green]" if settings.has_ai_configured() else "[red]missing[/red]",
    )
    console.print(table)

    if not (anki_ok and settings.has_ai_configured()):
        raise typer.Exit(1)


@app.command()
def decks() -> None:
    """List decks available for study."""
    client = AnkiClient()
    client.require_connection()

    table = Table(title="Decks")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Deck")
    for index, name in enumerate(client.get_deck_names(), start=1):
        table.add_row(str(index), name)
    console.print(table)


@app.command()
def study(
    deck: Optional[str] = typer.Argument(None, help="Deck to study (default from config)"),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Realtime API key (overrides .env)"),
) -> None:
    """Run a voice study session for a deck."""
    settings = get_settings()
    deck_name = deck or settings.anki_deck_name
    exit_code = asyncio.run(run_study(deck_name, api_key))
    if exit_code:
        raise typer.Exit(exit_code)


# =============================================================================
# Session Runner
# =============================================================================


async def run_study(deck_name: str, api_key: str | None = None) -> int:
    settings = get_settings()
    credentials = StaticCredentialStore(api_key) if api_key else SettingsCredentialStore(settings)
    presence = LocalPresence(
        on_change=lambda body: console.print(f"[dim]♪ {body}[/dim]") if body else None,
    )
    orchestrator = SessionOrchestrator(
        transport=RealtimeTransport(settings=settings, credentials=credentials),
        item_source=AnkiItemSource(),
        presence=presence,
        settings=settings,
    )
    orchestrator.context.phases.subscribe(print_transition)

    console.print(Panel(f"Studying [bold]{deck_name}[/bold]", title="Voice Tutor"))

    try:
        await orchestrator.start_session(deck_name)
    except EmptyQueueError as exc:
        console.print(f"[yellow]{exc}[/yellow]")
        await orchestrator.end_session("start_failed")
        return 0
    except TransportConnectionError as exc:
        console.print(f"[red]Could not connect to the tutor:[/red] {exc}")
        await orchestrator.end_session("start_failed")
        return 1

    console.print("[dim]Commands: p pause, r resume, e end, f-/f+ audio focus[/dim]")
    detach = attach_keyboard_controls(presence)
    try:
        await orchestrator.wait_until_ended()
    finally:
        detach()
        await orchestrator.end_session("interrupted")

    print_summary(orchestrator.stats)
    return 0


def attach_keyboard_controls(presence: LocalPresence) -> Callable[[], None]:
    """Feed typed commands into the presence as notification/focus events."""
    loop = asyncio.get_running_loop()
    pending: set[asyncio.Task[None]] = set()

    def on_input() -> None:
        line = sys.stdin.readline().strip().lower()
        command = KEY_COMMANDS.get(line)
        if command is None:
            if line:
                console.print(f"[dim]Unknown command '{line}'[/dim]")
            return

        event, value = command
        if event == NOTIFICATION_ACTION:
            task = loop.create_task(presence.emit_notification_action(value))
        else:
            task = loop.create_task(presence.emit_audio_focus_change(value))
        pending.add(task)
        task.add_done_callback(pending.discard)

    try:
        fd = sys.stdin.fileno()
        loop.add_reader(fd, on_input)
    except (NotImplementedError, OSError, ValueError) as exc:
        logger.warning("Keyboard controls unavailable: {}", exc)
        return lambda: None

    return lambda: loop.remove_reader(fd)


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_file)
    app()


if __name__ == "__main__":
    main()
