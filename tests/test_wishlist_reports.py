from datetime import date

import pytest

from library_app.errors import Conflict, NotFound
from library_app.services.reports import ReportService
from library_app.services.wishlist import WishlistStore


@pytest.fixture
def wishlist(db_file, identity, catalog):
    return WishlistStore(db_file, identity=identity, catalog=catalog)


@pytest.fixture
def reports(db_file, identity):
    return ReportService(db_file, identity=identity)


def test_wishlist_add_list_remove(wishlist, member, book, single_copy):
    wishlist.add(member.email, book.id)
    wishlist.add(member.id, single_copy.id)

    items = wishlist.list(member.email)
    assert [item["book_id"] for item in items] == [single_copy.id, book.id]
    assert items[1]["title"] == "Laskar Pelangi"

    wishlist.remove(member.email, book.id)
    assert [item["book_id"] for item in wishlist.list(member.id)] == [single_copy.id]


def test_wishlist_duplicate_and_missing(wishlist, member, book):
    wishlist.add(member.email, book.id)
    with pytest.raises(Conflict):
        wishlist.add(member.email, book.id)
    with pytest.raises(NotFound):
        wishlist.add(member.email, 999)
    with pytest.raises(NotFound):
        wishlist.remove(member.email, 999)


def test_wishlists_are_per_user(wishlist, member, other_member, book):
    wishlist.add(member.email, book.id)
    assert wishlist.list(other_member.email) == []


def test_admin_stats(reports, ledger, admin, member, other_member, book):
    first = ledger.request_loan(member.email, book.id, date(2024, 1, 1), date(2024, 1, 15))
    ledger.request_loan(other_member.email, book.id, date(2024, 1, 2), date(2024, 1, 16))
    ledger.approve(first.id)

    assert reports.admin_stats() == {
        "total_books": 1,
        "total_users": 2,
        "active_loans": 2,
        "pending_loans": 1,
    }


def test_user_stats(reports, ledger, wishlist, member, book):
    loan = ledger.request_loan(member.email, book.id, date(2024, 1, 1), date(2024, 1, 15))
    ledger.approve(loan.id)
    ledger.return_loan(loan.id, date(2024, 1, 17))
    ledger.request_loan(member.email, book.id, date(2024, 2, 1), date(2024, 2, 15))
    wishlist.add(member.email, book.id)

    assert reports.user_stats(member.email) == {
        "active_loans": 1,
        "total_loans": 2,
        "wishlist_count": 1,
        "total_fines": 10000,
    }


def test_report(reports, ledger, member, other_member, book, single_copy):
    a = ledger.request_loan(member.email, book.id, date(2024, 1, 1), date(2024, 1, 15))
    b = ledger.request_loan(other_member.email, book.id, date(2024, 1, 5), date(2024, 1, 19))
    c = ledger.request_loan(member.email, single_copy.id, date(2024, 2, 1), date(2024, 2, 15))
    for loan in (a, b, c):
        ledger.approve(loan.id)
    ledger.return_loan(a.id, date(2024, 1, 16))

    report = reports.report(today=date(2024, 2, 20))

    assert report["top_books"][0]["title"] == "Laskar Pelangi"
    assert report["top_books"][0]["borrow_count"] == 2
    assert report["top_users"][0]["email"] == member.email
    assert report["top_users"][0]["loan_count"] == 2
    assert report["total_fines"] == 5000
    # b is due 2024-01-19 and c 2024-02-15, both still out
    assert report["overdue_count"] == 2
    months = {row["month"]: row for row in report["monthly_stats"]}
    assert months["2024-01"]["total_loans"] == 2
    assert months["2024-01"]["returned"] == 1
    assert months["2024-02"]["approved"] == 1
