#!/usr/bin/env python3
"""
FAIRDICE - Console Game

Usage:
    python -m tools.dice_cli 2,2,4,4,9,9 1,1,6,6,8,8 3,3,5,5,7,7
    python -m tools.dice_cli 1,2,3,4,5,6 1,2,3,4,5,6 1,2,3,4,5,6 --table
    python -m tools.dice_cli 1,2,3,4 2,3,4,5 3,4,5,6 --faces 4 --first-pick turn_loser --audit

At any prompt: "?" shows the win-probability table, "x" quits.

Exit codes: 0 finished, 1 integrity/protocol abort, 2 invalid configuration.
"""

import argparse
import logging
import sys

from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from config.dice_schema import DiceSet, parse_dice_set
from config.settings import FirstPickRule, configure_logging, load_settings
from flows.dice_game import GameOrchestrator, GameReporter, GameResult, InputCollector, Outcome, Party
from sim_engine.dice import DIAGONAL_BASELINE, ProbabilityMatrix
from tools.fair_errors import FairDiceError, InvalidDiceConfiguration
from tools.fair_rng import SeededEntropy
from tools.fair_session import SessionTranscript

logger = logging.getLogger("fairdice.cli")

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_CONFIG = 2

USAGE_EXAMPLE = "python -m tools.dice_cli 2,2,4,4,9,9 1,1,6,6,8,8 3,3,5,5,7,7"


class UserExit(Exception):
    """User typed the exit command at a prompt."""


def render_matrix(dice: DiceSet, matrix: ProbabilityMatrix) -> Table:
    table = Table(title="Probability of the win for the user",
                  caption="Each cell: wins/total (percentage) for the row die against the column die")
    table.add_column("User dice \\ Against", style="bold")
    for i, die in enumerate(dice):
        table.add_column(f"Dice {i + 1}: {die.label()}", justify="center")
    for i, row in enumerate(matrix):
        cells = [f"Dice {i + 1}: {dice[i].label()}"]
        for cell in row:
            if cell is None:
                cells.append(f"- ({DIAGONAL_BASELINE:.2f})")
            else:
                cells.append(f"{cell.fraction} ({cell.percentage:.2f}%)")
        table.add_row(*cells)
    return table


class ConsoleCollector(InputCollector):
    """Prompts on the terminal, re-asking until the answer is in range."""

    def __init__(self, console: Console, show_table):
        self.console = console
        self.show_table = show_table

    def _ask_index(self, question: str, allowed: list[int]) -> int:
        while True:
            answer = Prompt.ask(question, console=self.console).strip().lower()
            if answer == "x":
                raise UserExit()
            if answer == "?":
                self.show_table()
                continue
            try:
                value = int(answer)
            except ValueError:
                value = None
            if value in allowed:
                return value
            self.console.print(f"[yellow]Please enter one of {allowed}, '?' for help or 'x' to exit.[/yellow]")

    def choose_number(self, purpose: str, range_max: int, commitment: str) -> int:
        if purpose == "turn_order":
            question = "Guess the computer's selection (0 or 1)"
        else:
            question = f"Add your number modulo {range_max} (0..{range_max - 1})"
        return self._ask_index(question, list(range(range_max)))

    def choose_die(self, dice: DiceSet, available: list[int]) -> int:
        for i in available:
            self.console.print(f"  {i} - {dice[i].label()}")
        return self._ask_index("Choose your dice", available)


class ConsoleReporter(GameReporter):
    def __init__(self, console: Console):
        self.console = console

    def commitment_published(self, purpose: str, range_max: int, commitment: str) -> None:
        if purpose == "turn_order":
            self.console.print("Let's determine who makes the first move.")
        self.console.print(f"I selected a random value in the range 0..{range_max - 1} "
                           f"(HMAC={commitment}).")

    def session_finalized(self, transcript: SessionTranscript) -> None:
        self.console.print(f"My selection: {transcript.secret_value} (KEY={transcript.key_hex}).")
        if transcript.purpose != "turn_order":
            self.console.print(
                f"The fair number generation result is {transcript.secret_value} + "
                f"{transcript.counterpart_input} = {transcript.combined_result} "
                f"(mod {transcript.range_max})."
            )

    def turn_order_decided(self, first_mover: Party) -> None:
        if first_mover is Party.USER:
            self.console.print("[green]You guessed right, you make the first move.[/green]")
        else:
            self.console.print("I make the first move.")

    def die_selected(self, party: Party, index: int, die) -> None:
        if party is Party.COMPUTER:
            self.console.print(f"I choose the {die.label()} dice.")
        else:
            self.console.print(f"You choose the {die.label()} dice.")

    def roll_started(self, party: Party, die) -> None:
        owner = "my" if party is Party.COMPUTER else "your"
        self.console.print(f"\nTime for {owner} roll with the {die.label()} dice.")

    def roll_resolved(self, party: Party, face_index: int, face: int) -> None:
        owner = "My" if party is Party.COMPUTER else "Your"
        self.console.print(f"{owner} roll result is {face}.")

    def game_finished(self, result: GameResult) -> None:
        if result.outcome is Outcome.USER_WINS:
            msg = f"[bold green]You win ({result.user_roll} > {result.computer_roll})![/bold green]"
        elif result.outcome is Outcome.COMPUTER_WINS:
            msg = f"[bold red]I win ({result.computer_roll} > {result.user_roll})![/bold red]"
        else:
            msg = f"[bold]It's a draw ({result.user_roll} = {result.computer_roll}).[/bold]"
        self.console.print(Panel(msg, title="Result", border_style="cyan"))

    def game_aborted(self, error: Exception) -> None:
        self.console.print(Panel(f"[red]{error}[/red]", title="Game aborted", border_style="red"))


def get_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Provably fair non-transitive dice game")
    parser.add_argument("dice", nargs="*", help="Comma-separated faces per die, e.g. 2,2,4,4,9,9")
    parser.add_argument("--faces", type=int, default=None, help="Faces per die (default from settings)")
    parser.add_argument("--first-pick", choices=[r.value for r in FirstPickRule], default=None)
    parser.add_argument("--algorithm", type=str, default=None, help="HMAC hash, e.g. sha3_256")
    parser.add_argument("--table", action="store_true", help="Print the probability table and exit")
    parser.add_argument("--audit", action="store_true", help="Print the JSON audit log after the game")
    parser.add_argument("--seed", type=int, default=None,
                        help="Deterministic entropy for demos (not secure)")
    parser.add_argument("--log-level", type=str, default=None)
    return parser


def main(argv=None, console: Console = None) -> int:
    args = get_parser().parse_args(argv)
    console = console or Console()

    try:
        settings = load_settings(face_count=args.faces, first_pick=args.first_pick,
                                 hmac_algorithm=args.algorithm, log_level=args.log_level)
    except ValidationError as e:
        console.print(f"[red]Invalid settings:[/red] {e}")
        return EXIT_CONFIG
    configure_logging(settings.log_level)

    try:
        dice = parse_dice_set(args.dice, settings.face_count)
    except InvalidDiceConfiguration as e:
        console.print(f"[red]Error:[/red] {e}")
        console.print(f"Example: {USAGE_EXAMPLE}")
        return EXIT_CONFIG

    entropy = None
    if args.seed is not None:
        logger.warning("Seeded entropy in use: outcomes are predictable")
        entropy = SeededEntropy(args.seed)

    orchestrator = GameOrchestrator(
        dice, collector=None, reporter=ConsoleReporter(console),
        entropy=entropy, first_pick=settings.first_pick, algorithm=settings.hmac_algorithm,
    )

    def show_table():
        console.print(render_matrix(dice, orchestrator.probability_matrix()))

    if args.table:
        show_table()
        return EXIT_OK

    orchestrator.collector = ConsoleCollector(console, show_table)
    try:
        result = orchestrator.play()
    except UserExit:
        console.print("Bye.")
        return EXIT_OK
    except FairDiceError:
        return EXIT_ABORTED

    if args.audit:
        console.print_json(result.to_audit_json())
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
