"""Loan ledger: the borrowing workflow.

Status transitions::

    pending  --approve--> approved --return--> returned
    pending  --reject-->  rejected
    approved --reject-->  rejected   (cancels an active loan)

``returned`` and ``rejected`` are terminal. Every transition reads the loan and
the book counter, validates, and writes both inside one ``BEGIN IMMEDIATE``
transaction, so either the status and the counter change together or neither
does.
"""
import logging
import sqlite3
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Union

from library_app.config import settings
from library_app.database import get_db_connection, initialize_database, transaction
from library_app.errors import InvalidTransition, NotFound, Unavailable, ValidationError
from library_app.fines import compute_fine, is_overdue, projected_fine
from library_app.models import Loan, LoanStatus
from library_app.schemas import LoanRequestInput, RejectInput, ReturnInput, validate
from library_app.services.catalog import CatalogStore
from library_app.services.identity import IdentityStore

logger = logging.getLogger(__name__)

LOAN_COLUMNS = (
    "loans.id, loans.user_id, loans.book_id, loans.loan_date, loans.due_date, loans.return_date, "
    "loans.fine, loans.status, loans.rejection_reason, loans.created_at"
)

# Status a loan must be in for each action
ALLOWED_FROM = {
    "approve": (LoanStatus.PENDING,),
    "reject": (LoanStatus.PENDING, LoanStatus.APPROVED),
    "return": (LoanStatus.APPROVED,),
}


class LoanLedger:
    """Owns loan records and every change to their status."""

    def __init__(self, db_file: Optional[str] = None, catalog: Optional[CatalogStore] = None,
                 identity: Optional[IdentityStore] = None, unit_rate: Optional[int] = None) -> None:
        self.db_file = db_file
        initialize_database(db_file)
        self.catalog = catalog or CatalogStore(db_file)
        self.identity = identity or IdentityStore(db_file)
        self.unit_rate = settings.fine_per_day if unit_rate is None else unit_rate

    # ------------------------- Transitions ------------------------- #
    def request_loan(self, user: Union[int, str], book_id: int, loan_date: Optional[date] = None,
                     due_date: Optional[date] = None) -> Loan:
        """Create a ``pending`` loan. Availability is checked but not consumed."""
        payload = validate(LoanRequestInput, {
            "book_id": book_id,
            "loan_date": loan_date,
            "due_date": due_date,
        })
        loan_date = payload.loan_date or date.today()
        due_date = payload.due_date or loan_date + timedelta(days=settings.loan_period_days)
        if due_date < loan_date:
            raise ValidationError("due_date cannot be before loan_date")

        with transaction(db_file=self.db_file) as conn:
            user_id = self.identity.resolve_user(user, conn=conn)
            counter = self.catalog.get_availability(payload.book_id, conn=conn)
            if counter["status"] != "active":
                logger.warning(f"Loan request by user {user_id} refused: book {payload.book_id} is inactive")
                raise Unavailable("Book is not lendable")
            if counter["available"] <= 0:
                logger.warning(f"Loan request by user {user_id} refused: book {payload.book_id} unavailable")
                raise Unavailable("Book not available")
            cursor = conn.execute(
                "INSERT INTO loans (user_id, book_id, loan_date, due_date, status) VALUES (?, ?, ?, ?, ?)",
                (user_id, payload.book_id, loan_date.isoformat(), due_date.isoformat(), LoanStatus.PENDING.value),
            )
            loan_id = cursor.lastrowid
        logger.info(f"Loan {loan_id} requested: user {user_id} book {payload.book_id} due {due_date}")
        return self.get_loan(loan_id)

    def approve(self, loan_id: int) -> Loan:
        """pending -> approved, taking one copy off the shelf.

        Availability is checked again here; if the last copy went to another
        loan in the meantime the loan stays ``pending``.
        """
        with transaction(db_file=self.db_file) as conn:
            loan = self._load_for_action(conn, loan_id, "approve")
            counter = self.catalog.get_availability(loan.book_id, conn=conn)
            if counter["status"] != "active":
                logger.warning(f"Loan {loan_id} approval refused: book {loan.book_id} is inactive")
                raise Unavailable("Book is not lendable")
            if counter["available"] <= 0:
                logger.warning(f"Loan {loan_id} approval refused: book {loan.book_id} unavailable")
                raise Unavailable("Book is not available")
            self._set_status(conn, loan_id, LoanStatus.APPROVED)
            self.catalog.adjust_availability(loan.book_id, -1, conn=conn)
        logger.info(f"Loan {loan_id} approved")
        return self.get_loan(loan_id)

    def reject(self, loan_id: int, reason: str) -> Loan:
        """Reject a pending request, or cancel an approved loan.

        Cancelling an approved loan puts its copy back on the shelf.
        """
        payload = validate(RejectInput, {"reason": reason if reason is not None else ""})
        with transaction(db_file=self.db_file) as conn:
            loan = self._load_for_action(conn, loan_id, "reject")
            self._set_status(conn, loan_id, LoanStatus.REJECTED, rejection_reason=payload.reason)
            if loan.status is LoanStatus.APPROVED:
                self.catalog.adjust_availability(loan.book_id, +1, conn=conn)
                logger.info(f"Loan {loan_id} cancelled after approval; copy restored")
        logger.info(f"Loan {loan_id} rejected: {payload.reason}")
        return self.get_loan(loan_id)

    def return_loan(self, loan_id: int, return_date: Optional[date] = None, fine: Optional[int] = None) -> Loan:
        """approved -> returned, putting the copy back and recording the fine.

        ``fine`` defaults to the computed late fee. A supplied fine must be
        non-negative and can only be non-zero for a late return.
        """
        payload = validate(ReturnInput, {"return_date": return_date, "fine": fine})
        return_date = payload.return_date or date.today()

        with transaction(db_file=self.db_file) as conn:
            loan = self._load_for_action(conn, loan_id, "return")
            if return_date < loan.loan_date:
                raise ValidationError("return_date cannot be before loan_date")
            computed = compute_fine(loan.due_date, return_date, self.unit_rate)
            if payload.fine is None:
                amount = computed
            elif payload.fine > 0 and return_date <= loan.due_date:
                raise ValidationError("A fine can only be charged for a late return")
            else:
                amount = payload.fine
            self._set_status(conn, loan_id, LoanStatus.RETURNED, return_date=return_date.isoformat(), fine=amount)
            self.catalog.adjust_availability(loan.book_id, +1, conn=conn)
        if payload.fine is not None and payload.fine != computed:
            logger.info(f"Loan {loan_id} fine overridden: computed {computed}, charged {amount}")
        logger.info(f"Loan {loan_id} returned on {return_date}, fine {amount}")
        return self.get_loan(loan_id)

    def update_status(self, loan_id: int, status: Union[LoanStatus, str], return_date: Optional[date] = None,
                      fine: Optional[int] = None, rejection_reason: Optional[str] = None) -> Loan:
        """Dispatch a single status form to the matching transition."""
        status = LoanStatus(status)
        if status is LoanStatus.APPROVED:
            return self.approve(loan_id)
        if status is LoanStatus.REJECTED:
            return self.reject(loan_id, rejection_reason)
        if status is LoanStatus.RETURNED:
            return self.return_loan(loan_id, return_date=return_date, fine=fine)
        raise InvalidTransition(f"Loan {loan_id} cannot be moved back to {status.value}")

    # ------------------------- Reads ------------------------- #
    def get_loan(self, loan_id: int) -> Loan:
        conn = get_db_connection(self.db_file)
        try:
            return self._fetch(conn, loan_id)
        finally:
            conn.close()

    def list_loans(self, user: Optional[Union[int, str]] = None, status: Optional[Union[LoanStatus, str]] = None,
                   today: Optional[date] = None) -> List[Dict[str, Any]]:
        """Loans joined with book and user display fields, newest first.

        Each row carries ``is_overdue`` and ``projected_fine``; these are
        computed for display and never written back.
        """
        today = today or date.today()
        sql = f"""
            SELECT {LOAN_COLUMNS},
                   books.title, books.author, books.cover_image,
                   users.name AS user_name, users.email AS user_email
            FROM loans
            JOIN books ON loans.book_id = books.id
            JOIN users ON loans.user_id = users.id
            WHERE 1=1
        """
        params: List[Any] = []
        conn = get_db_connection(self.db_file)
        try:
            if user is not None:
                sql += " AND loans.user_id = ?"
                params.append(self.identity.resolve_user(user, conn=conn))
            if status:
                sql += " AND loans.status = ?"
                params.append(LoanStatus(status).value)
            sql += " ORDER BY loans.created_at DESC, loans.id DESC"
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()

        views = []
        for row in rows:
            data = dict(row)
            loan = Loan.from_dict(data)
            view = loan.to_dict()
            view.update({
                "title": data["title"],
                "author": data["author"],
                "cover_image": data["cover_image"],
                "user_name": data["user_name"],
                "user_email": data["user_email"],
                "is_overdue": is_overdue(loan, today),
                "projected_fine": projected_fine(loan, today, self.unit_rate),
            })
            views.append(view)
        return views

    # ------------------------- Helpers ------------------------- #
    def _fetch(self, conn: sqlite3.Connection, loan_id: int) -> Loan:
        row = conn.execute(f"SELECT {LOAN_COLUMNS} FROM loans WHERE loans.id = ?", (loan_id,)).fetchone()
        if row is None:
            raise NotFound(f"Loan {loan_id} not found")
        return Loan.from_dict(dict(row))

    def _load_for_action(self, conn: sqlite3.Connection, loan_id: int, action: str) -> Loan:
        loan = self._fetch(conn, loan_id)
        if loan.status.is_terminal:
            logger.warning(f"Loan {loan_id}: cannot {action}, already {loan.status.value}")
            raise InvalidTransition(f"Loan {loan_id} is already {loan.status.value}")
        if loan.status not in ALLOWED_FROM[action]:
            logger.warning(f"Loan {loan_id}: cannot {action} from {loan.status.value}")
            raise InvalidTransition(f"Cannot {action} a loan that is {loan.status.value}")
        return loan

    @staticmethod
    def _set_status(conn: sqlite3.Connection, loan_id: int, status: LoanStatus, **fields: Any) -> None:
        columns = {"status": status.value, **fields}
        assignments = ", ".join(f"{column} = ?" for column in columns)
        conn.execute(f"UPDATE loans SET {assignments} WHERE id = ?", (*columns.values(), loan_id))
