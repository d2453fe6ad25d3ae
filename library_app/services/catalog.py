import logging
import sqlite3
from typing import Any, Dict, List, Optional

from library_app.config import settings
from library_app.database import get_db_connection, transaction
from library_app.errors import Conflict, NotFound, Unavailable, ValidationError
from library_app.models import Book, LoanStatus
from library_app.schemas import BookCreate, BookUpdate, validate

logger = logging.getLogger(__name__)

BOOK_COLUMNS = (
    "id, title, author, isbn, publisher, published_year, category, pages, language, "
    "description, cover_image, quantity, available, status, created_at"
)


class CatalogStore:
    """Books and the availability counters the loan ledger mutates."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    # ------------------------- Availability ------------------------- #
    def get_availability(self, book_id: int, conn: Optional[sqlite3.Connection] = None) -> Dict[str, Any]:
        own = conn is None
        conn = conn or get_db_connection(self.db_file)
        try:
            row = conn.execute("SELECT available, quantity, status FROM books WHERE id = ?", (book_id,)).fetchone()
        finally:
            if own:
                conn.close()
        if row is None:
            raise NotFound(f"Book {book_id} not found")
        return {"available": row["available"], "quantity": row["quantity"], "status": row["status"]}

    def adjust_availability(self, book_id: int, delta: int, conn: Optional[sqlite3.Connection] = None) -> None:
        """Shift ``available`` by ``delta`` keeping ``0 <= available <= quantity``.

        When ``conn`` is given the update joins the caller's transaction,
        otherwise it runs in its own.
        """
        if conn is None:
            with transaction(db_file=self.db_file) as own_conn:
                self._adjust(own_conn, book_id, delta)
        else:
            self._adjust(conn, book_id, delta)

    def _adjust(self, conn: sqlite3.Connection, book_id: int, delta: int) -> None:
        counter = self.get_availability(book_id, conn=conn)
        new_available = counter["available"] + delta
        if new_available < 0:
            raise Unavailable(f"Book {book_id} has no copies available")
        if new_available > counter["quantity"]:
            raise ValidationError(
                f"Book {book_id} cannot have more than {counter['quantity']} copies available"
            )
        conn.execute("UPDATE books SET available = ? WHERE id = ?", (new_available, book_id))
        logger.debug(f"Book {book_id} availability {counter['available']} -> {new_available}")

    # ------------------------- Core operations ------------------------- #
    def add_book(self, data: Dict[str, Any]) -> Book:
        """Validate and insert a book. Every copy starts on the shelf."""
        payload = validate(BookCreate, data)
        book = Book(
            title=payload.title,
            author=payload.author,
            isbn=payload.isbn,
            publisher=payload.publisher,
            published_year=payload.published_year,
            category=payload.category,
            pages=payload.pages,
            language=payload.language or settings.default_language,
            description=payload.description,
            cover_image=payload.cover_image,
            quantity=payload.quantity,
            status=payload.status,
        )
        with transaction(db_file=self.db_file) as conn:
            cursor = conn.execute(
                """INSERT INTO books
                (title, author, isbn, publisher, published_year, category, pages, language,
                 description, cover_image, quantity, available, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (book.title, book.author, book.isbn, book.publisher, book.published_year, book.category,
                 book.pages, book.language, book.description, book.cover_image, book.quantity,
                 book.available, book.status),
            )
            book_id = cursor.lastrowid
        logger.info(f"Added book {book_id}: {book.title}")
        return self.get_book(book_id)

    def get_book(self, book_id: int) -> Book:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(f"SELECT {BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFound(f"Book {book_id} not found")
        return Book.from_dict(dict(row))

    def update_book(self, book_id: int, data: Dict[str, Any]) -> Book:
        """Update the given fields of a book.

        Changing ``quantity`` keeps the copies on approved loans off the shelf:
        ``available`` becomes the new quantity minus those loans.
        """
        payload = validate(BookUpdate, data)
        changes = payload.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("Nothing to update.")
        if "title" in changes and not (changes["title"] or "").strip():
            raise ValidationError("title: must not be blank")
        if "author" in changes and not (changes["author"] or "").strip():
            raise ValidationError("author: must not be blank")

        with transaction(db_file=self.db_file) as conn:
            self.get_availability(book_id, conn=conn)
            if "quantity" in changes:
                on_loan = conn.execute(
                    "SELECT COUNT(*) FROM loans WHERE book_id = ? AND status = ?",
                    (book_id, LoanStatus.APPROVED.value),
                ).fetchone()[0]
                if changes["quantity"] < on_loan:
                    raise Conflict(
                        f"Book {book_id} has {on_loan} copies on loan; quantity cannot drop below that"
                    )
                changes["available"] = changes["quantity"] - on_loan
            assignments = ", ".join(f"{column} = ?" for column in changes)
            conn.execute(
                f"UPDATE books SET {assignments} WHERE id = ?",
                (*[v.strip() if isinstance(v, str) else v for v in changes.values()], book_id),
            )
        logger.info(f"Updated book {book_id}: {', '.join(changes)}")
        return self.get_book(book_id)

    def remove_book(self, book_id: int) -> None:
        """Delete a book that has never been lent.

        Books with pending or approved loans are refused; books with only
        finished loans are refused too because loans are never deleted, mark
        them inactive instead.
        """
        with transaction(db_file=self.db_file) as conn:
            self.get_availability(book_id, conn=conn)
            active = conn.execute(
                "SELECT COUNT(*) FROM loans WHERE book_id = ? AND status IN ('pending', 'approved')",
                (book_id,),
            ).fetchone()[0]
            if active:
                raise Conflict("Cannot delete book with active loans")
            history = conn.execute("SELECT COUNT(*) FROM loans WHERE book_id = ?", (book_id,)).fetchone()[0]
            if history:
                raise Conflict("Cannot delete book with loan history; set its status to inactive")
            conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        logger.info(f"Removed book {book_id}")

    def list_books(self, search: Optional[str] = None, category: Optional[str] = None,
                   status: Optional[str] = None) -> List[Book]:
        """List books newest first, optionally filtered by text, category and status."""
        sql = f"SELECT {BOOK_COLUMNS} FROM books WHERE 1=1"
        params: List[Any] = []
        if search:
            sql += " AND (title LIKE ? OR author LIKE ? OR publisher LIKE ?)"
            params.extend([f"%{search}%"] * 3)
        if category:
            sql += " AND category = ?"
            params.append(category)
        if status:
            sql += " AND status = ?"
            params.append(status)
        sql += " ORDER BY created_at DESC, id DESC"

        conn = get_db_connection(self.db_file)
        try:
            rows = conn.execute(sql, params).fetchall()
            return [Book.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()

    def list_categories(self) -> List[str]:
        conn = get_db_connection(self.db_file)
        try:
            rows = conn.execute(
                "SELECT DISTINCT category FROM books "
                "WHERE category IS NOT NULL AND category != '' ORDER BY category ASC"
            ).fetchall()
            return [row["category"] for row in rows]
        finally:
            conn.close()
