import json

import pytest
from typer.testing import CliRunner

from library_app.cli import app
from library_app.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture
def cli(db_file, monkeypatch):
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")

    def invoke(*args):
        return runner.invoke(app, ["--db", db_file, *args])

    return invoke


def test_list_no_books(cli):
    result = cli("books")
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_add_book_and_list(cli):
    result = cli("add-book", "Laskar Pelangi", "Andrea Hirata", "--quantity", "2")
    assert result.exit_code == 0
    assert "Added book #1: Laskar Pelangi by Andrea Hirata (2 copies)" in result.stdout

    result = cli("books")
    assert "id=1 title=Laskar Pelangi author=Andrea Hirata available=2 quantity=2" in result.stdout


def test_add_user(cli):
    result = cli("add-user", "Budi Santoso", "budi@perpus.id", "--password", "rahasia1")
    assert result.exit_code == 0
    assert "Created user #1: Budi Santoso <budi@perpus.id>" in result.stdout

    result = cli("add-user", "Budi Lagi", "budi@perpus.id", "--password", "rahasia1")
    assert result.exit_code == 1
    assert "Error (Conflict): Email already exists" in result.stdout


def test_loan_workflow(cli, member, book):
    result = cli("request", member.email, str(book.id), "--loan-date", "2024-01-01", "--due-date", "2024-01-15")
    assert result.exit_code == 0
    assert "Loan requested" in result.stdout
    assert "Loan #1 status=pending due=2024-01-15 fine=0" in result.stdout

    result = cli("approve", "1")
    assert result.exit_code == 0
    assert "Loan #1 status=approved" in result.stdout

    result = cli("return", "1", "--date", "2024-01-18")
    assert result.exit_code == 0
    assert "Loan returned, fine Rp 15,000" in result.stdout

    result = cli("loans", "--user", member.email)
    assert "status=returned" in result.stdout
    assert "fine=15000" in result.stdout


def test_reject_with_reason(cli, member, book):
    cli("request", member.email, str(book.id), "--loan-date", "2024-01-01", "--due-date", "2024-01-15")

    result = cli("reject", "1", "--reason", "Sedang diperbaiki")
    assert result.exit_code == 0
    assert "Loan #1 status=rejected" in result.stdout


def test_invalid_transition_exits_with_error(cli, member, book):
    cli("request", member.email, str(book.id), "--loan-date", "2024-01-01", "--due-date", "2024-01-15")

    result = cli("return", "1", "--date", "2024-01-10")
    assert result.exit_code == 1
    assert "Error (InvalidTransition): Cannot return a loan that is pending" in result.stdout


def test_approve_unknown_loan(cli):
    result = cli("approve", "99")
    assert result.exit_code == 1
    assert "Error (NotFound): Loan 99 not found" in result.stdout


def test_no_loans(cli):
    result = cli("loans")
    assert result.exit_code == 0
    assert "No loans." in result.stdout


def test_fine_preview(cli):
    result = cli("fine", "2024-01-15", "2024-01-18")
    assert result.exit_code == 0
    assert "Days late: 3" in result.stdout
    assert "Fine: Rp 15,000" in result.stdout


def test_stats_plain_and_json(cli, book):
    result = cli("stats")
    assert result.exit_code == 0
    assert "Total Books: 1" in result.stdout

    result = cli("--output", "json", "books")
    assert json.loads(result.stdout)[0]["title"] == "Laskar Pelangi"


def test_report(cli, ledger, member, book):
    loan = ledger.request_loan(member.email, book.id)
    ledger.approve(loan.id)

    result = cli("report")
    assert result.exit_code == 0
    assert "Total Fines: Rp 0" in result.stdout
    assert "title=Laskar Pelangi borrow_count=1" in result.stdout
