from datetime import date
from typing import Any, Dict, Optional, Union

from library_app.database import get_db_connection
from library_app.services.identity import IdentityStore


class ReportService:
    """Read-only aggregates for the dashboards and the admin report page."""

    def __init__(self, db_file: Optional[str] = None, identity: Optional[IdentityStore] = None) -> None:
        self.db_file = db_file
        self.identity = identity or IdentityStore(db_file)

    def admin_stats(self) -> Dict[str, int]:
        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.cursor()
            total_books = cursor.execute("SELECT COUNT(*) FROM books").fetchone()[0]
            total_users = cursor.execute("SELECT COUNT(*) FROM users WHERE role = 'user'").fetchone()[0]
            active_loans = cursor.execute(
                "SELECT COUNT(*) FROM loans WHERE status IN ('pending', 'approved')"
            ).fetchone()[0]
            pending_loans = cursor.execute("SELECT COUNT(*) FROM loans WHERE status = 'pending'").fetchone()[0]
            return {
                "total_books": total_books,
                "total_users": total_users,
                "active_loans": active_loans,
                "pending_loans": pending_loans,
            }
        finally:
            conn.close()

    def user_stats(self, user: Union[int, str]) -> Dict[str, int]:
        conn = get_db_connection(self.db_file)
        try:
            user_id = self.identity.resolve_user(user, conn=conn)
            cursor = conn.cursor()
            active_loans = cursor.execute(
                "SELECT COUNT(*) FROM loans WHERE user_id = ? AND status IN ('pending', 'approved')", (user_id,)
            ).fetchone()[0]
            total_loans = cursor.execute("SELECT COUNT(*) FROM loans WHERE user_id = ?", (user_id,)).fetchone()[0]
            wishlist_count = cursor.execute(
                "SELECT COUNT(*) FROM wishlist WHERE user_id = ?", (user_id,)
            ).fetchone()[0]
            total_fines = cursor.execute(
                "SELECT COALESCE(SUM(fine), 0) FROM loans WHERE user_id = ? AND fine > 0", (user_id,)
            ).fetchone()[0]
            return {
                "active_loans": active_loans,
                "total_loans": total_loans,
                "wishlist_count": wishlist_count,
                "total_fines": total_fines,
            }
        finally:
            conn.close()

    def report(self, today: Optional[date] = None, limit: int = 10) -> Dict[str, Any]:
        """Most borrowed books, most active users, monthly activity, fines and overdue count."""
        today = today or date.today()
        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.cursor()
            top_books = cursor.execute(
                """SELECT books.id, books.title, books.author, COUNT(loans.id) AS borrow_count
                   FROM books
                   JOIN loans ON books.id = loans.book_id
                   WHERE loans.status IN ('approved', 'returned')
                   GROUP BY books.id
                   ORDER BY borrow_count DESC, books.title ASC
                   LIMIT ?""",
                (limit,),
            ).fetchall()
            top_users = cursor.execute(
                """SELECT users.id, users.name, users.email, COUNT(loans.id) AS loan_count
                   FROM users
                   LEFT JOIN loans ON users.id = loans.user_id
                   WHERE users.role = 'user'
                   GROUP BY users.id
                   ORDER BY loan_count DESC, users.name ASC
                   LIMIT ?""",
                (limit,),
            ).fetchall()
            monthly_stats = cursor.execute(
                """SELECT strftime('%Y-%m', loan_date) AS month,
                          COUNT(*) AS total_loans,
                          SUM(CASE WHEN status = 'approved' THEN 1 ELSE 0 END) AS approved,
                          SUM(CASE WHEN status = 'returned' THEN 1 ELSE 0 END) AS returned,
                          SUM(CASE WHEN status = 'rejected' THEN 1 ELSE 0 END) AS rejected
                   FROM loans
                   GROUP BY month
                   ORDER BY month DESC
                   LIMIT 12"""
            ).fetchall()
            total_fines = cursor.execute("SELECT COALESCE(SUM(fine), 0) FROM loans WHERE fine > 0").fetchone()[0]
            overdue_count = cursor.execute(
                "SELECT COUNT(*) FROM loans WHERE status = 'approved' AND due_date < ?", (today.isoformat(),)
            ).fetchone()[0]
            return {
                "top_books": [dict(row) for row in top_books],
                "top_users": [dict(row) for row in top_users],
                "monthly_stats": [dict(row) for row in monthly_stats],
                "total_fines": total_fines,
                "overdue_count": overdue_count,
            }
        finally:
            conn.close()
