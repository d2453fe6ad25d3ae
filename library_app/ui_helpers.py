import json
import os
from typing import Any, Dict, List, Sequence, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()

BOOK_COLUMNS: Sequence[Tuple[str, str]] = (
    ("id", "ID"), ("title", "Title"), ("author", "Author"), ("available", "Available"), ("quantity", "Quantity"),
)
USER_COLUMNS: Sequence[Tuple[str, str]] = (("id", "ID"), ("name", "Name"), ("email", "Email"), ("role", "Role"))
LOAN_COLUMNS: Sequence[Tuple[str, str]] = (
    ("id", "ID"), ("title", "Title"), ("user_email", "User"), ("status", "Status"),
    ("loan_date", "Loaned"), ("due_date", "Due"), ("return_date", "Returned"), ("fine", "Fine"),
)


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def format_money(amount: int) -> str:
    return f"Rp {amount:,}"


def print_rows(rows: List[Dict[str, Any]], columns: Sequence[Tuple[str, str]], title: str, empty_message: str) -> None:
    """Print records in the current output mode.

    - plain: one ``key=value`` line per record, or ``empty_message``
    - json: JSON array of the selected columns
    - rich: Rich table
    """
    mode = get_output_mode()

    if not rows:
        print(empty_message)
        return

    selected = [{key: row.get(key) for key, _ in columns} for row in rows]
    if mode == "json":
        print(json.dumps(selected, ensure_ascii=False, default=str))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for _, label in columns:
            table.add_column(label)
        for row in selected:
            table.add_row(*["" if value is None else str(value) for value in row.values()])
        _console.print(table)
    else:
        for row in selected:
            print(" ".join(f"{key}={'-' if value is None else value}" for key, value in row.items()))


def print_loan(loan: Dict[str, Any], headline: str) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(loan, ensure_ascii=False, default=str))
        return
    if mode == "rich":
        lines = [f"[bold]{key}:[/] {value}" for key, value in loan.items() if value is not None]
        _console.print(Panel.fit("\n".join(lines), title=headline, border_style="green"))
        return
    print(headline)
    print(f"Loan #{loan['id']} status={loan['status']} due={loan['due_date']} fine={loan['fine']}")


def print_stats_result(stats: Dict[str, Any], title: str = "Stats") -> None:
    """Print a flat mapping of statistics in the current output mode."""
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False, default=str))
    elif mode == "rich":
        content = "\n".join(f"[bold]{key.replace('_', ' ').title()}:[/] {value}" for key, value in stats.items())
        _console.print(Panel.fit(content, title=title, border_style="blue"))
    else:
        for key, value in stats.items():
            print(f"{key.replace('_', ' ').title()}: {value}")
