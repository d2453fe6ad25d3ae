import os
import subprocess
import sys
import webbrowser
from datetime import date, datetime
from typing import NoReturn, Optional

import typer

from library_app import database
from library_app.config import settings
from library_app.errors import LendingError
from library_app.fines import compute_fine, days_overdue
from library_app.ledger import LoanLedger
from library_app.models import LoanStatus, Role
from library_app.services.catalog import CatalogStore
from library_app.services.identity import IdentityStore
from library_app.services.reports import ReportService
from library_app.ui_helpers import (
    BOOK_COLUMNS,
    LOAN_COLUMNS,
    USER_COLUMNS,
    format_money,
    print_loan,
    print_rows,
    print_stats_result,
    set_output_mode,
)

DATE_FORMATS = ["%Y-%m-%d"]

app = typer.Typer(help="Library lending CLI")


def _as_date(value: Optional[datetime]) -> Optional[date]:
    return value.date() if value else None


def _fail(exc: LendingError) -> NoReturn:
    print(f"Error ({exc.kind}): {exc.message}")
    raise typer.Exit(code=1)


def _ledger() -> LoanLedger:
    return LoanLedger(database.DATABASE_FILE)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output format: plain | json | rich (default: plain)"
    ),
    db: Optional[str] = typer.Option(None, "--db", envvar="LIBRARY_DB_FILE", help="SQLite database file"),
):
    """Global CLI options (output mode, database file)."""
    if output:
        set_output_mode(output)
    if db:
        database.DATABASE_FILE = db


@app.command("init-db")
def cli_init_db():
    """Create the database tables."""
    database.initialize_database()
    print(f"Database ready: {database.DATABASE_FILE}")


# ------------------------- Catalog ------------------------- #
@app.command("add-book")
def cli_add_book(
    title: str,
    author: str,
    quantity: int = typer.Option(1, "--quantity", "-q", min=1),
    category: Optional[str] = typer.Option(None, "--category"),
    isbn: Optional[str] = typer.Option(None, "--isbn"),
):
    """Add a book to the catalog."""
    database.initialize_database()
    try:
        book = CatalogStore(database.DATABASE_FILE).add_book(
            {"title": title, "author": author, "quantity": quantity, "category": category, "isbn": isbn}
        )
    except LendingError as exc:
        _fail(exc)
    print(f"Added book #{book.id}: {book.title} by {book.author} ({book.quantity} copies)")


@app.command("books")
def cli_books(search: Optional[str] = typer.Option(None, "--search", "-s")):
    """List books in the catalog."""
    database.initialize_database()
    books = CatalogStore(database.DATABASE_FILE).list_books(search=search)
    print_rows([b.to_dict() for b in books], BOOK_COLUMNS, "Books", "No books in library.")


# ------------------------- Users ------------------------- #
@app.command("add-user")
def cli_add_user(
    name: str,
    email: str,
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
    role: Role = typer.Option(Role.USER, "--role"),
):
    """Create a user account."""
    database.initialize_database()
    try:
        user = IdentityStore(database.DATABASE_FILE).create_user(
            {"name": name, "email": email, "password": password, "role": role.value}
        )
    except LendingError as exc:
        _fail(exc)
    print(f"Created {user.role.value} #{user.id}: {user.name} <{user.email}>")


@app.command("users")
def cli_users():
    """List user accounts."""
    database.initialize_database()
    users = IdentityStore(database.DATABASE_FILE).list_users()
    print_rows([u.to_dict() for u in users], USER_COLUMNS, "Users", "No users.")


# ------------------------- Loans ------------------------- #
@app.command("request")
def cli_request(
    user: str = typer.Argument(..., help="Borrower email or id"),
    book_id: int = typer.Argument(...),
    loan_date: Optional[datetime] = typer.Option(None, "--loan-date", formats=DATE_FORMATS),
    due_date: Optional[datetime] = typer.Option(None, "--due-date", formats=DATE_FORMATS),
):
    """Request a loan; it stays pending until approved."""
    try:
        loan = _ledger().request_loan(user, book_id, _as_date(loan_date), _as_date(due_date))
    except LendingError as exc:
        _fail(exc)
    print_loan(loan.to_dict(), "Loan requested")


@app.command("approve")
def cli_approve(loan_id: int):
    """Approve a pending loan."""
    try:
        loan = _ledger().approve(loan_id)
    except LendingError as exc:
        _fail(exc)
    print_loan(loan.to_dict(), "Loan approved")


@app.command("reject")
def cli_reject(loan_id: int, reason: str = typer.Option(..., "--reason", "-r")):
    """Reject a pending loan or cancel an approved one."""
    try:
        loan = _ledger().reject(loan_id, reason)
    except LendingError as exc:
        _fail(exc)
    print_loan(loan.to_dict(), "Loan rejected")


@app.command("return")
def cli_return(
    loan_id: int,
    return_date: Optional[datetime] = typer.Option(None, "--date", formats=DATE_FORMATS),
    fine: Optional[int] = typer.Option(None, "--fine", min=0, help="Override the computed fine"),
):
    """Mark an approved loan as returned."""
    try:
        loan = _ledger().return_loan(loan_id, _as_date(return_date), fine)
    except LendingError as exc:
        _fail(exc)
    print_loan(loan.to_dict(), f"Loan returned, fine {format_money(loan.fine)}")


@app.command("loans")
def cli_loans(
    user: Optional[str] = typer.Option(None, "--user", "-u"),
    status: Optional[LoanStatus] = typer.Option(None, "--status"),
):
    """List loans, newest first."""
    try:
        loans = _ledger().list_loans(user=user, status=status)
    except LendingError as exc:
        _fail(exc)
    for loan in loans:
        if loan["is_overdue"]:
            loan["fine"] = f"{loan['projected_fine']} (overdue)"
    print_rows(loans, LOAN_COLUMNS, "Loans", "No loans.")


@app.command("fine")
def cli_fine(
    due_date: datetime = typer.Argument(..., formats=DATE_FORMATS),
    return_date: Optional[datetime] = typer.Argument(None, formats=DATE_FORMATS),
):
    """Preview the fine for returning on RETURN_DATE (default today)."""
    returned = _as_date(return_date) or date.today()
    days = days_overdue(due_date.date(), returned)
    amount = compute_fine(due_date.date(), returned)
    print(f"Days late: {days}")
    print(f"Fine: {format_money(amount)}")


# ------------------------- Reporting ------------------------- #
@app.command("stats")
def cli_stats(user: Optional[str] = typer.Option(None, "--user", "-u", help="Show one member's numbers")):
    """Show dashboard statistics."""
    database.initialize_database()
    reports = ReportService(database.DATABASE_FILE)
    try:
        stats = reports.user_stats(user) if user else reports.admin_stats()
    except LendingError as exc:
        _fail(exc)
    print_stats_result(stats)


@app.command("report")
def cli_report():
    """Show the admin report: top books, top users, fines and overdue loans."""
    database.initialize_database()
    report = ReportService(database.DATABASE_FILE).report()
    print_stats_result(
        {"total_fines": format_money(report["total_fines"]), "overdue_count": report["overdue_count"]},
        title="Report",
    )
    print_rows(
        report["top_books"], (("id", "ID"), ("title", "Title"), ("borrow_count", "Borrowed")),
        "Most borrowed books", "No borrowed books yet.",
    )
    print_rows(
        report["top_users"], (("id", "ID"), ("name", "Name"), ("loan_count", "Loans")),
        "Most active users", "No members yet.",
    )


@app.command("serve")
def cli_serve(
    open_browser: bool = typer.Option(False, "--open", help="Open the API docs in a browser"),
):
    """Start the JSON API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    url = f"http://{host}:{port}/docs"
    print(f"Starting API on {url}")
    if open_browser:
        webbrowser.open(url)
    env = dict(os.environ, LIBRARY_DB_FILE=database.DATABASE_FILE)
    args = [
        sys.executable,
        "-m", "uvicorn",
        "library_app.api:create_app",
        "--factory",
        "--host", host,
        "--port", str(port),
    ]
    try:
        subprocess.run(args, check=False, env=env)
    except FileNotFoundError:
        print("Error: uvicorn could not be started. Make sure it is installed.")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
